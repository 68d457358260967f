"""Core DNS data types shared by the server and its plugins."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from ipaddress import IPv4Address, IPv6Address
from typing import Optional, Tuple, Union


class QType(enum.IntEnum):
    """Query types, valued by their wire codes."""

    A = 1
    NS = 2
    CNAME = 5
    SOA = 6
    PTR = 12
    MX = 15
    TXT = 16
    AAAA = 28
    SRV = 33
    ANY = 255


class QClass(enum.IntEnum):
    """Query classes, valued by their wire codes."""

    IN = 1
    CH = 3
    HS = 4


@dataclass(frozen=True)
class ARecord:
    addr: IPv4Address


@dataclass(frozen=True)
class AAAARecord:
    addr: IPv6Address


@dataclass(frozen=True)
class TxtRecord:
    text: Tuple[str, ...]


@dataclass(frozen=True)
class CnameRecord:
    cname: str


@dataclass(frozen=True)
class MxRecord:
    preference: int
    exchange: str


@dataclass(frozen=True)
class NsRecord:
    nsdname: str


@dataclass(frozen=True)
class SoaRecord:
    mname: str
    rname: str
    serial: int
    refresh: int
    retry: int
    expire: int
    minimum: int


@dataclass(frozen=True)
class PtrRecord:
    ptrdname: str


@dataclass(frozen=True)
class SrvRecord:
    priority: int
    weight: int
    port: int
    target: str


Record = Union[
    ARecord,
    AAAARecord,
    TxtRecord,
    CnameRecord,
    MxRecord,
    NsRecord,
    SoaRecord,
    PtrRecord,
    SrvRecord,
]


@dataclass
class HeaderFlags:
    qr: bool = False
    opcode: int = 0
    aa: bool = False
    tc: bool = False
    rd: bool = False
    ra: bool = False
    rcode: int = 0


@dataclass
class DnsHeader:
    id: int = 0
    flags: HeaderFlags = field(default_factory=HeaderFlags)
    question_count: int = 0
    answer_count: int = 0
    authority_count: int = 0
    additional_count: int = 0


@dataclass
class DnsQuestion:
    name: str
    qtype: QType
    qclass: QClass


@dataclass
class DnsMessage:
    """A query travelling through the plugin chain, with its response and context."""

    header: DnsHeader = field(default_factory=DnsHeader)
    questions: list[DnsQuestion] = field(default_factory=list)
    answers: list[Record] = field(default_factory=list)
    authority: list[Record] = field(default_factory=list)
    additional: list[Record] = field(default_factory=list)

    raw_query: bytes = b""
    raw_response: Optional[bytes] = None
    halt_chain: bool = False

    client_addr: Optional[Tuple[str, int]] = None
    protocol: str = ""

    server_port: Optional[int] = None
    start_time: Optional[float] = None
    answered_by: str = ""