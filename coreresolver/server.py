"""The DNS server: UDP and TCP listeners feeding queries through plugin chains."""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Coroutine, Iterator, Optional, Sequence, Tuple

from coreresolver.config import Config, ZoneConfig
from coreresolver.plugins.base import Plugin, SharedState
from coreresolver.types import DnsMessage

logger = logging.getLogger(__name__)

DEFAULT_PORT = 53
UDP_RESPONSE_LIMIT = 1232
UDP_RECEIVE_LIMIT = 4096
_TC_FLAG = 0x02


def _zone_port_text(name: str) -> str:
    _, sep, port = name.rpartition(":")
    return port if sep else str(DEFAULT_PORT)


def _zone_port(name: str) -> int:
    try:
        return int(_zone_port_text(name))
    except ValueError:
        return DEFAULT_PORT


def group_zones_by_port(zones: Sequence[ZoneConfig], base_ip: str) -> dict[str, list[int]]:
    """Map each listen address to the indexes of the zones served on it."""
    groups: dict[str, list[int]] = {}
    for index, zone in enumerate(zones):
        groups.setdefault(f"{base_ip}:{_zone_port_text(zone.name)}", []).append(index)
    return groups


class _UdpListener(asyncio.DatagramProtocol):
    def __init__(self, server: "DnsServer", port: int) -> None:
        self._server = server
        self._port = port
        self._transport: Optional[asyncio.DatagramTransport] = None

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._transport = transport  # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: Tuple[Any, ...]) -> None:
        self._server._spawn(self._answer(data[:UDP_RECEIVE_LIMIT], addr))

    async def _answer(self, data: bytes, addr: Tuple[Any, ...]) -> None:
        response = await self._server.handle_query(data, (addr[0], addr[1]), "udp", self._port)
        if response is not None and self._transport is not None and not self._transport.is_closing():
            self._transport.sendto(response, addr)


class DnsServer:
    """Serves one configuration until a reload is requested."""

    def __init__(self, config: Config, shared: SharedState) -> None:
        self.config = config
        self.shared = shared
        self._pending: set[asyncio.Task[Any]] = set()

    def _plugins(self) -> Iterator[Plugin]:
        for zone in self.config.zones:
            yield from zone.plugins

    def _zone_for_port(self, port: int) -> Optional[ZoneConfig]:
        return next((zone for zone in self.config.zones if _zone_port(zone.name) == port), None)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def handle_query(
        self,
        raw: bytes,
        client_addr: Optional[Tuple[str, int]],
        protocol: str,
        port: int,
    ) -> Optional[bytes]:
        """Run one query through the first zone bound to the port; return the wire response."""
        zone = self._zone_for_port(port)
        if zone is None:
            return None
        msg = DnsMessage(
            raw_query=bytes(raw),
            client_addr=client_addr,
            protocol=protocol,
            server_port=port,
        )
        if len(msg.raw_query) >= 12:
            msg.header.id = int.from_bytes(msg.raw_query[0:2], "big")

        for plugin in zone.plugins:
            if msg.halt_chain:
                break
            try:
                msg = await plugin.process(msg)
            except Exception as exc:  # one failing plugin must not drop the query
                logger.debug("Plugin %s failed in process: %s", plugin.name, exc)
        for plugin in reversed(zone.plugins):
            try:
                await plugin.post_process(msg)
            except Exception as exc:
                logger.debug("Plugin %s failed in post_process: %s", plugin.name, exc)

        response = msg.raw_response
        if response is None:
            return None
        if protocol == "udp" and len(response) > UDP_RESPONSE_LIMIT:
            truncated = bytearray(response[:UDP_RESPONSE_LIMIT])
            truncated[2] |= _TC_FLAG
            response = bytes(truncated)
        return response

    async def _serve_tcp(
        self, port: int, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        try:
            header = await reader.readexactly(2)
            query = await reader.readexactly(int.from_bytes(header, "big"))
            peer = writer.get_extra_info("peername")
            client = (peer[0], peer[1]) if peer else None
            response = await self.handle_query(query, client, "tcp", port)
            if response is not None:
                writer.write((len(response) & 0xFFFF).to_bytes(2, "big") + response)
                await writer.drain()
        except (asyncio.IncompleteReadError, OSError):
            pass
        finally:
            writer.close()

    async def run(self, default_address: str) -> bool:
        """Listen on every configured port until a reload is requested; returns True then."""
        reload_event = self.shared.take_reload_event()
        base_ip = default_address.split(":")[0]
        loop = asyncio.get_running_loop()
        transports: list[asyncio.BaseTransport] = []
        servers: list[asyncio.AbstractServer] = []
        try:
            for plugin in self._plugins():
                await plugin.start()

            for bind_addr, indexes in group_zones_by_port(self.config.zones, base_ip).items():
                host, _, port_text = bind_addr.rpartition(":")
                try:
                    port = int(port_text)
                    transport, _ = await loop.create_datagram_endpoint(
                        functools.partial(_UdpListener, self, port), local_addr=(host, port)
                    )
                except (OSError, ValueError, OverflowError) as exc:
                    logger.error("Failed to bind UDP %s: %s", bind_addr, exc)
                    continue
                try:
                    tcp_server = await asyncio.start_server(
                        functools.partial(self._serve_tcp, port), host, port
                    )
                except (OSError, ValueError, OverflowError) as exc:
                    logger.error("Failed to bind TCP %s: %s", bind_addr, exc)
                    transport.close()
                    continue
                transports.append(transport)
                servers.append(tcp_server)
                logger.info(
                    "Server successfully bound to TCP & UDP on %s for %d zone(s)",
                    bind_addr, len(indexes),
                )

            await reload_event.wait()
            return True
        finally:
            for server in servers:
                server.close()
            for transport in transports:
                transport.close()
            for task in list(self._pending):
                task.cancel()
            self._pending.clear()
            for plugin in self._plugins():
                plugin.close()