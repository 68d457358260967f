"""Building zone configurations with live plugin chains from a Corefile."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from coreresolver.corefile import parse_corefile
from coreresolver.plugins.base import Plugin, SharedState
from coreresolver.plugins.registry import create_plugin

logger = logging.getLogger(__name__)


@dataclass
class ZoneConfig:
    """A zone (server block) and its plugins, ordered by descending priority."""

    name: str
    plugins: list[Plugin] = field(default_factory=list)


@dataclass
class Config:
    """Every zone of a loaded configuration."""

    zones: list[ZoneConfig] = field(default_factory=list)


def parse_config(content: str, shared: SharedState) -> Config:
    """Parse Corefile text and build each zone's plugin chain.

    Directives that fail to build a plugin are skipped. Plugins run in the
    order of their built-in priority, highest first, whatever the file order.
    """
    zones: list[ZoneConfig] = []
    for raw in parse_corefile(content):
        plugins: list[Plugin] = []
        for directive in raw.plugins:
            try:
                plugins.append(create_plugin(directive, shared))
            except Exception as exc:  # a broken directive never stops the load
                logger.warning("Skipping plugin %r in zone %s: %s", directive.name, raw.name, exc)
        plugins.sort(key=lambda plugin: plugin.priority, reverse=True)
        zones.append(ZoneConfig(raw.name, plugins))
    return Config(zones)


def load_config(path: str, shared: SharedState) -> Config:
    """Read and parse a Corefile; raises OSError when it cannot be read."""
    try:
        with open(path, encoding="utf-8") as handle:
            content = handle.read()
    except (OSError, UnicodeDecodeError) as exc:
        raise OSError(f"Failed to read config file '{path}': {exc}") from exc
    return parse_config(content, shared)