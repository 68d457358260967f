"""Construction of plugins by their Corefile directive name."""

from __future__ import annotations

from coreresolver.corefile import PluginConfig
from coreresolver.plugins.base import Plugin, SharedState
from coreresolver.plugins.cache import CachePlugin
from coreresolver.plugins.dummy import DummyPlugin
from coreresolver.plugins.errors import ErrorsPlugin
from coreresolver.plugins.forward import ForwardPlugin
from coreresolver.plugins.health import HealthPlugin
from coreresolver.plugins.log import LogPlugin
from coreresolver.plugins.prometheus import PrometheusPlugin
from coreresolver.plugins.reload import ReloadPlugin
from coreresolver.plugins.whoami import WhoamiPlugin

_FACTORIES: dict[str, type[Plugin]] = {
    "cache": CachePlugin,
    "forward": ForwardPlugin,
    "prometheus": PrometheusPlugin,
    "log": LogPlugin,
    "errors": ErrorsPlugin,
    "reload": ReloadPlugin,
    "health": HealthPlugin,
    "whoami": WhoamiPlugin,
    "dummy": DummyPlugin,
}


def create_plugin(config: PluginConfig, shared: SharedState) -> Plugin:
    """Build the plugin named by a directive; raises ValueError for unknown names."""
    try:
        factory = _FACTORIES[config.name]
    except KeyError:
        raise ValueError(f"Unknown plugin: {config.name}") from None
    return factory(config, shared)