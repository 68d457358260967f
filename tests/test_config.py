import pytest

from coreresolver.config import Config, ZoneConfig, load_config, parse_config
from coreresolver.plugins.base import SharedState
from coreresolver.plugins.cache import CachePlugin, CacheStore
from coreresolver.plugins.log import LogPlugin


def _names(zone):
    return [plugin.name for plugin in zone.plugins]


def test_plugins_are_ordered_by_priority_not_file_order():
    text = ". {\n    dummy\n    cache\n    whoami\n    log\n    errors\n}\n"
    config = parse_config(text, SharedState(CacheStore()))
    assert _names(config.zones[0]) == ["log", "errors", "whoami", "cache", "dummy"]


def test_priorities_never_increase_along_the_chain():
    text = ". {\n    health\n    forward 8.8.8.8\n    log\n    cache\n    reload 5s\n}\n"
    config = parse_config(text, SharedState(CacheStore(), "missing-file"))
    priorities = [plugin.priority for plugin in config.zones[0].plugins]
    assert priorities == sorted(priorities, reverse=True)
    assert len(priorities) == 5


def test_unknown_plugins_are_skipped():
    config = parse_config(". {\n    nosuch\n    log\n}\n", SharedState())
    assert _names(config.zones[0]) == ["log"]


def test_zone_names_sharing_a_block_each_get_plugins():
    config = parse_config("a.com b.com:1053 {\n    log\n}\n", SharedState())
    assert [zone.name for zone in config.zones] == ["a.com", "b.com:1053"]
    first, second = config.zones
    assert isinstance(first.plugins[0], LogPlugin)
    assert first.plugins[0] is not second.plugins[0]


def test_cache_plugins_share_the_preserved_store():
    store = CacheStore()
    config = parse_config(". {\n    cache\n}\n.:1053 {\n    cache\n}\n", SharedState(store))
    stores = [zone.plugins[0].store for zone in config.zones]
    assert all(isinstance(zone.plugins[0], CachePlugin) for zone in config.zones)
    assert stores == [store, store]


def test_empty_text_gives_no_zones():
    assert parse_config("# only a comment\n", SharedState()) == Config([])


def test_load_config_reads_a_file(tmp_path):
    path = tmp_path / "Corefile"
    path.write_text(".:1053 {\n    whoami\n    log\n}\n", encoding="utf-8")
    config = load_config(str(path), SharedState())
    assert [zone.name for zone in config.zones] == [".:1053"]
    assert _names(config.zones[0]) == ["log", "whoami"]


def test_load_config_missing_file(tmp_path):
    missing = tmp_path / "nothing"
    with pytest.raises(OSError, match="Failed to read config file"):
        load_config(str(missing), SharedState())


def test_zone_config_defaults_to_no_plugins():
    assert ZoneConfig(".").plugins == []