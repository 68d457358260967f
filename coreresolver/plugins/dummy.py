"""The dummy plugin: a no-op step in the chain."""

from __future__ import annotations

from coreresolver.plugins.base import Plugin
from coreresolver.types import DnsMessage


class DummyPlugin(Plugin):
    """Does nothing and passes every query on."""

    name = "dummy"
    priority = 0

    async def process(self, msg: DnsMessage) -> DnsMessage:
        return msg