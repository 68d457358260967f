from ipaddress import IPv4Address

import pytest

from coreresolver.types import (
    ARecord,
    DnsHeader,
    DnsMessage,
    HeaderFlags,
    QClass,
    QType,
    SoaRecord,
)


def test_message_defaults():
    msg = DnsMessage()
    assert msg.header.id == 0
    assert msg.raw_query == b""
    assert msg.raw_response is None
    assert msg.halt_chain is False
    assert msg.client_addr is None
    assert msg.answered_by == ""


def test_message_lists_are_not_shared():
    first = DnsMessage()
    second = DnsMessage()
    first.answers.append(ARecord(IPv4Address("192.0.2.1")))
    assert second.answers == []
    assert len(first.answers) == 1


def test_header_flags_default_to_zero():
    header = DnsHeader()
    assert header.flags == HeaderFlags()
    assert header.flags.rcode == 0
    assert header.flags.qr is False


def test_qtype_lookup_by_wire_code():
    assert QType(28) is QType.AAAA
    assert QType(1) is QType.A
    assert QClass(1) is QClass.IN


def test_unknown_qtype_code_rejected():
    with pytest.raises(ValueError):
        QType(9999)


def test_records_are_frozen_and_comparable():
    a = ARecord(IPv4Address("192.0.2.1"))
    assert a == ARecord(IPv4Address("192.0.2.1"))
    with pytest.raises(AttributeError):
        a.addr = IPv4Address("192.0.2.2")


def test_soa_record_holds_fields():
    soa = SoaRecord("ns.example.com", "admin.example.com", 7, 3600, 600, 86400, 300)
    assert soa.mname == "ns.example.com"
    assert soa.serial == 7