"""The whoami plugin: answers A and AAAA queries with the client's own address."""

from __future__ import annotations

import ipaddress
import logging

from coreresolver.corefile import PluginConfig
from coreresolver.plugins.base import Plugin, SharedState
from coreresolver.types import DnsMessage

logger = logging.getLogger(__name__)

_QTYPE_A = 1
_QTYPE_AAAA = 28
_HEADER_TAIL = b"\x81\x80\x00\x01\x00\x00\x00\x00\x00\x02"
_NAME_POINTER = b"\xc0\x0c"
_A_RR = b"\x00\x01\x00\x01\x00\x00\x00\x00\x00\x04"
_AAAA_RR = b"\x00\x1c\x00\x01\x00\x00\x00\x00\x00\x10"
_SRV_RR = b"\x00\x21\x00\x01\x00\x00\x00\x00\x00\x07"


class WhoamiPlugin(Plugin):
    """Replies with the client's address and an SRV record carrying its port."""

    name = "whoami"
    priority = 200

    def __init__(self, config: PluginConfig, shared: SharedState) -> None:
        super().__init__(config, shared)
        logger.info("[whoami] Plugin initialized")

    async def process(self, msg: DnsMessage) -> DnsMessage:
        query = msg.raw_query
        if msg.halt_chain or len(query) < 12 or msg.client_addr is None:
            return msg

        offset = 12
        qname = bytearray()
        while offset < len(query):
            length = query[offset]
            qname.append(length)
            offset += 1
            if length == 0:
                break
            label = query[offset:offset + length]
            qname += label
            offset += len(label)

        qtype = int.from_bytes(query[offset:offset + 2], "big") if offset + 1 < len(query) else 0
        if qtype not in (_QTYPE_A, _QTYPE_AAAA) or offset + 4 > len(query):
            return msg

        host, port = msg.client_addr[0], msg.client_addr[1]
        client_ip = ipaddress.ip_address(host.split("%", 1)[0])
        address_rr = _A_RR if client_ip.version == 4 else _AAAA_RR
        proto = b"_tcp" if msg.protocol == "tcp" else b"_udp"

        msg.raw_response = b"".join((
            query[0:2],
            _HEADER_TAIL,
            bytes(qname),
            query[offset:offset + 4],
            _NAME_POINTER,
            address_rr,
            client_ip.packed,
            bytes([len(proto)]),
            proto,
            _NAME_POINTER,
            _SRV_RR,
            b"\x00\x00\x00\x00",
            port.to_bytes(2, "big"),
            b"\x00",
        ))
        msg.halt_chain = True
        logger.info("    |-- [whoami] Responded to client %s:%s", client_ip, port)
        return msg