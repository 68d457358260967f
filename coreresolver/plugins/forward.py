"""The forward plugin: sends queries to upstream resolvers over UDP or DNS-over-TLS."""

from __future__ import annotations

import asyncio
import enum
import logging
import random
import re
import ssl
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from coreresolver.corefile import PluginConfig
from coreresolver.durations import parse_duration
from coreresolver.metrics import (
    FORWARD_MAX_CONCURRENT_REJECTS,
    PROXY_CONN_CACHE_HITS,
    PROXY_CONN_CACHE_MISSES,
    PROXY_REQUEST_DURATION,
)
from coreresolver.plugins.base import Plugin, SharedState
from coreresolver.plugins.prometheus import rcode_to_str
from coreresolver.types import DnsMessage

logger = logging.getLogger(__name__)

_UNSIGNED = re.compile(r"\+?[0-9]+")
_MAX_U16 = 0xFFFF
_MAX_USIZE = 2**64 - 1

_REQUEST_TIMEOUT = 2.0
_PROBE_TIMEOUT = 1.5
_UDP_BUFFER = 4096
_PROBE_BUFFER = 512

_DEFAULT_MAX_FAILS = 2
_DEFAULT_HEALTH_INTERVAL = timedelta(milliseconds=500)
_DEFAULT_EXPIRE = timedelta(seconds=10)
_DEFAULT_IDLE_LIMIT = 1000

_RCODES = {
    "NOERROR": 0,
    "FORMERR": 1,
    "SERVFAIL": 2,
    "NXDOMAIN": 3,
    "NOTIMP": 4,
    "REFUSED": 5,
}

_EXCHANGE_ERRORS = (OSError, asyncio.TimeoutError, asyncio.IncompleteReadError, ValueError)


class Policy(enum.Enum):
    """Order in which upstreams are tried."""

    SEQUENTIAL = "sequential"
    RANDOM = "random"
    ROUND_ROBIN = "round_robin"


@dataclass
class _IdleConnection:
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    expires_at: float


@dataclass
class Upstream:
    """One upstream resolver and its health state."""

    ip: str
    port: int
    is_tls: bool = False
    healthy: bool = True
    fails: int = 0
    idle: list[_IdleConnection] = field(default_factory=list, repr=False, compare=False)

    @property
    def address(self) -> str:
        return f"{self.ip}:{self.port}"

    def mark_success(self) -> None:
        """Record a passed health probe."""
        self.fails = 0
        self.healthy = True

    def mark_failure(self, limit: int) -> bool:
        """Record a failed probe; returns True when this marks the upstream unhealthy."""
        self.fails += 1
        if self.fails >= limit and self.healthy:
            self.healthy = False
            logger.warning(
                "Upstream %s marked as UNHEALTHY (Failed %d times)", self.address, self.fails
            )
            return True
        return False

    def close_idle(self) -> None:
        """Close every pooled connection."""
        for conn in self.idle:
            conn.writer.close()
        self.idle.clear()


def _parse_unsigned(text: str, limit: int) -> Optional[int]:
    if _UNSIGNED.fullmatch(text) and int(text) <= limit:
        return int(text)
    return None


def parse_rcode(text: str) -> int:
    """Response code for a name such as 'NXDOMAIN'; unknown names give SERVFAIL (2)."""
    return _RCODES.get(text.upper(), 2)


def parse_upstream(text: str) -> Upstream:
    """Build an upstream from 'ip', 'ip:port' or 'tls://ip[:port]'."""
    is_tls = text.startswith("tls://")
    clean = text.replace("tls://", "")
    default_port = 853 if is_tls else 53
    if ":" in clean:
        parts = clean.split(":")
        port = _parse_unsigned(parts[1], _MAX_U16)
        return Upstream(parts[0], default_port if port is None else port, is_tls)
    return Upstream(clean, default_port, is_tls)


def build_health_probe() -> bytes:
    """A query for the root NS records, used to probe upstream health."""
    return bytes((
        0x12, 0x34, 0x01, 0x00, 0x00, 0x01, 0x00, 0x00, 0x00,
        0x00, 0x00, 0x00, 0x00, 0x00, 0x02, 0x00, 0x01,
    ))


def build_error_response(query: bytes, rcode: int) -> bytes:
    """Turn a query into a response carrying the given response code."""
    response = bytearray(query)
    if len(response) >= 4:
        response[2] |= 0x80
        response[3] |= rcode & 0x0F
    return bytes(response)


def extract_qname(query: bytes) -> Optional[str]:
    """The question name of a raw query in dotted form, '.' for the root."""
    if len(query) < 12:
        return None
    offset = 12
    parts: list[str] = []
    while offset < len(query):
        length = query[offset]
        offset += 1
        if length == 0:
            break
        if offset + length > len(query):
            break
        try:
            parts.append(query[offset:offset + length].decode("utf-8"))
        except UnicodeDecodeError:
            pass
        offset += length
    return ".".join(parts) if parts else "."


class _UdpExchange(asyncio.DatagramProtocol):
    def __init__(self) -> None:
        self.response: asyncio.Future[bytes] = asyncio.get_running_loop().create_future()

    def datagram_received(self, data: bytes, addr: object) -> None:
        if not self.response.done():
            self.response.set_result(data)

    def error_received(self, exc: Exception) -> None:
        if not self.response.done():
            self.response.set_exception(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc is not None and not self.response.done():
            self.response.set_exception(exc)


async def _udp_exchange(host: str, port: int, query: bytes, timeout: float, limit: int) -> bytes:
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.create_datagram_endpoint(
        _UdpExchange, remote_addr=(host, port)
    )
    try:
        transport.sendto(query)
        data = await asyncio.wait_for(protocol.response, timeout)
    finally:
        transport.close()
    return data[:limit]


def _framed(query: bytes) -> bytes:
    return (len(query) & _MAX_U16).to_bytes(2, "big") + query


class ForwardPlugin(Plugin):
    """Proxies queries to a set of upstreams with health checks and failover."""

    name = "forward"
    priority = 100

    def __init__(self, config: PluginConfig, shared: SharedState) -> None:
        super().__init__(config, shared)
        self.upstreams = [
            parse_upstream(arg) for arg in config.args if arg not in (".", "{}")
        ]
        self.tls_servername: Optional[str] = None
        self.failover_rcodes: list[int] = []
        self.next_rcodes: list[int] = []
        self.policy = Policy.RANDOM
        self.except_domains: list[str] = []
        self.force_tcp = False
        self.failfast = False
        self.max_fails = _DEFAULT_MAX_FAILS
        self.health_check_interval = _DEFAULT_HEALTH_INTERVAL
        self.max_concurrent: Optional[int] = None
        max_idle = 0
        self.expire = _DEFAULT_EXPIRE

        for sub in config.block:
            first = sub.args[0] if sub.args else None
            if sub.name == "tls_servername":
                self.tls_servername = first
            elif sub.name == "failover":
                self.failover_rcodes.extend(parse_rcode(arg) for arg in sub.args)
            elif sub.name == "next":
                self.next_rcodes.extend(parse_rcode(arg) for arg in sub.args)
            elif sub.name == "except":
                self.except_domains = list(sub.args)
            elif sub.name == "force_tcp":
                self.force_tcp = True
            elif sub.name == "failfast_all_unhealthy_upstreams":
                self.failfast = True
            elif sub.name == "max_fails" and first is not None:
                value = _parse_unsigned(first, _MAX_USIZE)
                self.max_fails = _DEFAULT_MAX_FAILS if value is None else value
            elif sub.name == "max_idle_conns" and first is not None:
                value = _parse_unsigned(first, _MAX_USIZE)
                max_idle = 0 if value is None else value
            elif sub.name == "expire" and first is not None:
                self.expire = self._duration_or(first, _DEFAULT_EXPIRE)
            elif sub.name == "max_concurrent" and first is not None:
                value = _parse_unsigned(first, _MAX_USIZE)
                if value is not None:
                    self.max_concurrent = value
            elif sub.name == "health_check" and first is not None:
                self.health_check_interval = self._duration_or(first, _DEFAULT_HEALTH_INTERVAL)
            elif sub.name == "policy" and first is not None:
                self.policy = {
                    "sequential": Policy.SEQUENTIAL,
                    "round_robin": Policy.ROUND_ROBIN,
                }.get(first, Policy.RANDOM)

        self.max_idle_conns = max_idle or _DEFAULT_IDLE_LIMIT
        self._rr_counter = 0
        self._in_flight = 0
        self._ssl_context = ssl.create_default_context()

    @staticmethod
    def _duration_or(text: str, default: timedelta) -> timedelta:
        try:
            return parse_duration(text, allow_hours=False)
        except ValueError:
            return default

    async def start(self) -> None:
        if self.max_fails > 0:
            for upstream in self.upstreams:
                self._spawn(self._health_loop(upstream))

    async def _health_loop(self, upstream: Upstream) -> None:
        probe = build_health_probe()
        while True:
            await asyncio.sleep(self.health_check_interval.total_seconds())
            try:
                if upstream.is_tls:
                    await self._ping_tls(upstream, probe)
                else:
                    await _udp_exchange(
                        upstream.ip, upstream.port, probe, _PROBE_TIMEOUT, _PROBE_BUFFER
                    )
            except _EXCHANGE_ERRORS:
                upstream.mark_failure(self.max_fails)
            else:
                upstream.mark_success()

    async def _ping_tls(self, upstream: Upstream, probe: bytes) -> None:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(
                upstream.ip,
                upstream.port,
                ssl=self._ssl_context,
                server_hostname=self.tls_servername or upstream.ip,
            ),
            _PROBE_TIMEOUT,
        )
        try:
            writer.write(_framed(probe))
            await writer.drain()
            await asyncio.wait_for(reader.readexactly(2), _PROBE_TIMEOUT)
        finally:
            writer.close()

    def order_upstreams(self) -> list[Upstream]:
        """Upstreams to try, in order; empty when all are down and failfast is set."""
        candidates = [up for up in self.upstreams if up.healthy]
        if not candidates:
            if self.failfast:
                return []
            candidates = list(self.upstreams)
        if self.policy is Policy.RANDOM:
            random.shuffle(candidates)
        elif self.policy is Policy.ROUND_ROBIN and candidates:
            start = self._rr_counter % len(candidates)
            self._rr_counter += 1
            candidates = candidates[start:] + candidates[:start]
        return candidates

    async def process(self, msg: DnsMessage) -> DnsMessage:
        if msg.halt_chain or not self.upstreams or not msg.raw_query:
            return msg
        qname = extract_qname(msg.raw_query) or "."

        for domain in self.except_domains:
            if qname.endswith(domain):
                logger.debug("Domain '%s' matches except rule %s, skipping forward.", qname, domain)
                return msg

        if self.max_concurrent is not None and self._in_flight >= self.max_concurrent:
            logger.warning("Max concurrent queries reached! Rejecting '%s' with REFUSED.", qname)
            FORWARD_MAX_CONCURRENT_REJECTS.inc()
            return self._reply(msg, build_error_response(msg.raw_query, 5))

        self._in_flight += 1
        try:
            return await self._forward(msg, qname)
        finally:
            self._in_flight -= 1

    @staticmethod
    def _reply(msg: DnsMessage, response: bytes) -> DnsMessage:
        msg.raw_response = response
        msg.halt_chain = True
        msg.answered_by = "forward"
        return msg

    async def _forward(self, msg: DnsMessage, qname: str) -> DnsMessage:
        order = self.order_upstreams()
        if not order:
            logger.warning(
                "failfast triggered: all upstreams are unhealthy, returning SERVFAIL for '%s'", qname
            )
            return self._reply(msg, build_error_response(msg.raw_query, 2))

        for upstream in order:
            address = upstream.address
            logger.debug(
                "TxID: %#06x -> Trying %s://%s for '%s' (Policy: %s)",
                msg.header.id, "tls" if upstream.is_tls else "udp", address, qname, self.policy.value,
            )
            started = time.monotonic()
            try:
                if upstream.is_tls or self.force_tcp:
                    response = await self._send_tls(upstream, msg.raw_query)
                else:
                    PROXY_CONN_CACHE_MISSES.labels("udp", "forward", address).inc()
                    response = await _udp_exchange(
                        upstream.ip, upstream.port, msg.raw_query, _REQUEST_TIMEOUT, _UDP_BUFFER
                    )
                if len(response) < 4:
                    raise ValueError("short response")
            except _EXCHANGE_ERRORS as exc:
                elapsed = time.monotonic() - started
                PROXY_REQUEST_DURATION.labels("forward", "SERVFAIL", address).observe(elapsed)
                self.shared.report_error(f"Failed to connect to {address} for '{qname}': {exc!r}")
                logger.debug(
                    "Upstream %s timeout or failed for '%s' in %.4fs, trying next...",
                    address, qname, elapsed,
                )
                continue

            elapsed = time.monotonic() - started
            rcode = response[3] & 0x0F
            rcode_name = rcode_to_str(rcode)
            PROXY_REQUEST_DURATION.labels("forward", rcode_name, address).observe(elapsed)

            if rcode in self.failover_rcodes:
                logger.warning(
                    "Upstream %s returned failover RCODE %s for '%s' in %.4fs, triggering retry...",
                    address, rcode_name, qname, elapsed,
                )
                continue

            msg.raw_response = response
            msg.answered_by = "forward"
            if rcode in self.next_rcodes:
                logger.info(
                    "Upstream %s returned next RCODE %s for '%s' in %.4fs, pushing to next tier!",
                    address, rcode_name, qname, elapsed,
                )
                msg.halt_chain = False
                return msg

            logger.info(
                "Success resolution for '%s' from %s in %.4fs, RCODE: %s",
                qname, address, elapsed, rcode_name,
            )
            msg.halt_chain = True
            return msg
        return msg

    def _take_idle(self, upstream: Upstream) -> Optional[_IdleConnection]:
        now = time.monotonic()
        while upstream.idle:
            conn = upstream.idle.pop()
            if conn.expires_at > now:
                return conn
            conn.writer.close()
        return None

    async def _send_tls(self, upstream: Upstream, query: bytes) -> bytes:
        address = upstream.address
        pooled = self._take_idle(upstream)
        if pooled is not None:
            logger.debug("Reusing cached TLS connection for %s", upstream.ip)
            PROXY_CONN_CACHE_HITS.labels("tcp-tls", "forward", address).inc()
            reader, writer = pooled.reader, pooled.writer
        else:
            logger.debug("Establishing new TLS connection to %s", upstream.ip)
            PROXY_CONN_CACHE_MISSES.labels("tcp-tls", "forward", address).inc()
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(
                    upstream.ip,
                    upstream.port,
                    ssl=self._ssl_context,
                    server_hostname=self.tls_servername or upstream.ip,
                ),
                _REQUEST_TIMEOUT,
            )

        try:
            try:
                writer.write(_framed(query))
                await writer.drain()
            except OSError as exc:
                raise ConnectionError("Broken TLS connection pipe") from exc
            header = await asyncio.wait_for(reader.readexactly(2), _REQUEST_TIMEOUT)
            length = int.from_bytes(header, "big")
            response = await asyncio.wait_for(reader.readexactly(length), _REQUEST_TIMEOUT)
        except BaseException:
            writer.close()
            raise

        if len(upstream.idle) < self.max_idle_conns:
            upstream.idle.append(
                _IdleConnection(reader, writer, time.monotonic() + self.expire.total_seconds())
            )
        else:
            writer.close()
        return response

    def close(self) -> None:
        for upstream in self.upstreams:
            upstream.close_idle()
        super().close()