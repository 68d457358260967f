"""The health plugin: a minimal HTTP endpoint that always answers OK."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from coreresolver.corefile import PluginConfig
from coreresolver.plugins.base import Plugin, SharedState
from coreresolver.types import DnsMessage

logger = logging.getLogger(__name__)

HEALTH_RESPONSE = b"HTTP/1.1 200 OK\r\nContent-Type: text/plain\r\nContent-Length: 2\r\n\r\nOK"


class HealthPlugin(Plugin):
    """Serves a fixed '200 OK' to any TCP client on its port."""

    name = "health"
    priority = 10

    def __init__(self, config: PluginConfig, shared: SharedState) -> None:
        super().__init__(config, shared)
        port = config.args[0] if config.args else ":8080"
        if ":" not in port:
            port = f":{port}"
        self.address = f"0.0.0.0{port}"
        self._server: Optional[asyncio.AbstractServer] = None

    @property
    def bound_port(self) -> Optional[int]:
        """Port the listener is bound to, once started."""
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        host, _, port_text = self.address.rpartition(":")
        try:
            self._server = await asyncio.start_server(self._serve_client, host, int(port_text))
        except (OSError, ValueError):
            logger.info("[health] Port %s is already active (shared with another zone).", self.address)
            return
        logger.info("[health] Successfully bound listener on %s", self.address)

    @staticmethod
    async def _serve_client(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            await reader.read(1024)
            writer.write(HEALTH_RESPONSE)
            await writer.drain()
        except OSError:
            pass
        finally:
            writer.close()

    async def process(self, msg: DnsMessage) -> DnsMessage:
        return msg

    def close(self) -> None:
        if self._server is not None:
            self._server.close()
            self._server = None
        super().close()