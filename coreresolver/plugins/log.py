"""The log plugin: logs every incoming query."""

from __future__ import annotations

import logging

from coreresolver.corefile import PluginConfig
from coreresolver.plugins.base import Plugin, SharedState
from coreresolver.types import DnsMessage

logger = logging.getLogger(__name__)


class LogPlugin(Plugin):
    """Logs the transaction id of each query and passes it on."""

    name = "log"
    priority = 255

    def __init__(self, config: PluginConfig, shared: SharedState) -> None:
        super().__init__(config, shared)
        logger.info("[log] Initialized for zones: %s", config.args)

    async def process(self, msg: DnsMessage) -> DnsMessage:
        logger.info("=> [Incoming Query] TxID: %#06x", msg.header.id)
        return msg