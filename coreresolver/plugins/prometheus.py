"""The prometheus plugin: request metrics and an HTTP endpoint that exposes them."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import platform
import time
from typing import Optional

from coreresolver.corefile import PluginConfig
from coreresolver.metrics import (
    BUILD_INFO,
    DNS_REQUEST_DURATION,
    DNS_REQUEST_SIZE,
    DNS_REQUESTS_TOTAL,
    DNS_RESPONSE_SIZE,
    DNS_RESPONSES_TOTAL,
    PLUGIN_ENABLED,
    REGISTRY,
)
from coreresolver.plugins.base import Plugin, SharedState
from coreresolver.types import DnsMessage

logger = logging.getLogger(__name__)

_VERSION = "0.1.2"
_IO_TIMEOUT = 2.0
_ENABLED_PLUGINS = ("cache", "errors", "forward", "log", "prometheus")

_RCODE_NAMES = {
    0: "NOERROR",
    1: "FORMERR",
    2: "SERVFAIL",
    3: "NXDOMAIN",
    4: "NOTIMP",
    5: "REFUSED",
}

_QTYPE_NAMES = {
    1: "A",
    28: "AAAA",
    33: "SRV",
    5: "CNAME",
    15: "MX",
    16: "TXT",
    2: "NS",
    6: "SOA",
    12: "PTR",
    255: "ANY",
}


def rcode_to_str(rcode: int) -> str:
    """Name of a response code, or 'UNKNOWN'."""
    return _RCODE_NAMES.get(rcode, "UNKNOWN")


def qtype_name(query: bytes) -> str:
    """Name of the question type in a raw query ('OTHER' or 'UNKNOWN' if not known)."""
    if len(query) < 12:
        return "UNKNOWN"
    offset = 12
    while offset < len(query):
        length = query[offset]
        if length == 0:
            offset += 1
            break
        offset += length + 1
    if offset + 2 > len(query):
        return "UNKNOWN"
    code = int.from_bytes(query[offset:offset + 2], "big")
    return _QTYPE_NAMES.get(code, "OTHER")


def _server_label(msg: DnsMessage) -> str:
    port = msg.server_port if msg.server_port is not None else 53
    return f"dns://:{port}"


def _family(msg: DnsMessage) -> str:
    if msg.client_addr is not None:
        try:
            if ipaddress.ip_address(msg.client_addr[0]).version == 6:
                return "2"
        except ValueError:
            pass
    return "1"


class PrometheusPlugin(Plugin):
    """Records per-request metrics and serves them over HTTP."""

    name = "prometheus"
    priority = 150

    def __init__(self, config: PluginConfig, shared: SharedState) -> None:
        super().__init__(config, shared)
        port = config.args[0] if config.args else ":9153"
        if ":" not in port:
            port = f":{port}"
        self.address = f"0.0.0.0{port}"
        self._server: Optional[asyncio.AbstractServer] = None
        BUILD_INFO.labels(platform.python_version(), "unknown", _VERSION).set(1.0)

    @property
    def bound_port(self) -> Optional[int]:
        """Port the metrics listener is bound to, once started."""
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        host, _, port_text = self.address.rpartition(":")
        try:
            self._server = await asyncio.start_server(self._serve_client, host, int(port_text))
        except (OSError, ValueError):
            logger.info("[prometheus] Port %s is already active (shared with another zone).", self.address)
            return
        logger.info("[prometheus] Successfully bound metrics listener on %s", self.address)

    async def _serve_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            request = await asyncio.wait_for(reader.read(8192), _IO_TIMEOUT)
            if request.startswith(b"GET "):
                body = REGISTRY.render().encode()
                header = (
                    "HTTP/1.1 200 OK\r\n"
                    "Content-Type: text/plain; version=0.0.4\r\n"
                    f"Content-Length: {len(body)}\r\n"
                    "Connection: close\r\n\r\n"
                ).encode()
                writer.write(header + body)
                await asyncio.wait_for(writer.drain(), _IO_TIMEOUT)
        except (OSError, asyncio.TimeoutError):
            pass
        finally:
            writer.close()

    async def process(self, msg: DnsMessage) -> DnsMessage:
        server = _server_label(msg)
        DNS_REQUESTS_TOTAL.labels(_family(msg), "udp", server, qtype_name(msg.raw_query), "", ".").inc()
        DNS_REQUEST_SIZE.labels("udp", server, "", ".").observe(float(len(msg.raw_query)))
        for plugin_name in _ENABLED_PLUGINS:
            PLUGIN_ENABLED.labels(plugin_name, server, "", ".").set(1.0)
        msg.start_time = time.monotonic()
        return msg

    async def post_process(self, msg: DnsMessage) -> None:
        server = _server_label(msg)
        if msg.start_time is not None:
            DNS_REQUEST_DURATION.labels(server, "", ".").observe(time.monotonic() - msg.start_time)
        response = msg.raw_response
        if response is not None:
            DNS_RESPONSE_SIZE.labels("udp", server, "", ".").observe(float(len(response)))
            if len(response) >= 4:
                rcode = rcode_to_str(response[3] & 0x0F)
                answered_by = msg.answered_by or "unknown"
                DNS_RESPONSES_TOTAL.labels(answered_by, rcode, server, "", ".").inc()

    def close(self) -> None:
        if self._server is not None:
            self._server.close()
            self._server = None
        super().close()