import asyncio

import pytest

from coreresolver.corefile import PluginConfig
from coreresolver.metrics import DNS_REQUESTS_TOTAL, DNS_RESPONSES_TOTAL
from coreresolver.plugins.base import SharedState
from coreresolver.plugins.prometheus import PrometheusPlugin, qtype_name, rcode_to_str
from coreresolver.types import DnsMessage


def _query(qtype, name=b"\x07example\x03com\x00"):
    header = b"\x12\x34\x01\x00\x00\x01\x00\x00\x00\x00\x00\x00"
    return header + name + qtype.to_bytes(2, "big") + b"\x00\x01"


def _plugin(args=None):
    return PrometheusPlugin(PluginConfig("prometheus", args or []), SharedState(None, "Corefile"))


@pytest.mark.parametrize(
    "code, name",
    [(0, "NOERROR"), (1, "FORMERR"), (2, "SERVFAIL"), (3, "NXDOMAIN"), (4, "NOTIMP"), (5, "REFUSED"), (9, "UNKNOWN")],
)
def test_rcode_to_str(code, name):
    assert rcode_to_str(code) == name


@pytest.mark.parametrize("code, name", [(1, "A"), (28, "AAAA"), (33, "SRV"), (255, "ANY"), (99, "OTHER")])
def test_qtype_name(code, name):
    assert qtype_name(_query(code)) == name


def test_qtype_name_short_or_truncated():
    assert qtype_name(b"\x00" * 5) == "UNKNOWN"
    assert qtype_name(_query(1)[:-4]) == "UNKNOWN"


def test_default_listen_address():
    assert _plugin().address == "0.0.0.0:9153"
    assert _plugin(["9999"]).address == "0.0.0.0:9999"


@pytest.mark.asyncio
async def test_process_counts_request_and_sets_start_time():
    plugin = _plugin()
    msg = DnsMessage(raw_query=_query(28), server_port=5353, client_addr=("::1", 40000))
    series = DNS_REQUESTS_TOTAL.labels("2", "udp", "dns://:5353", "AAAA", "", ".")
    before = series.value
    result = await plugin.process(msg)
    assert result is msg
    assert msg.start_time is not None
    assert series.value == before + 1


@pytest.mark.asyncio
async def test_post_process_counts_response_rcode():
    plugin = _plugin()
    query = _query(1)
    response = query[:2] + b"\x81\x83" + query[4:]
    msg = DnsMessage(raw_query=query, raw_response=response, server_port=5354)
    series = DNS_RESPONSES_TOTAL.labels("unknown", "NXDOMAIN", "dns://:5354", "", ".")
    before = series.value
    await plugin.process(msg)
    await plugin.post_process(msg)
    assert series.value == before + 1


@pytest.mark.asyncio
async def test_metrics_endpoint_serves_text():
    plugin = _plugin([":0"])
    await plugin.start()
    try:
        reader, writer = await asyncio.open_connection("127.0.0.1", plugin.bound_port)
        writer.write(b"GET /metrics HTTP/1.1\r\n\r\n")
        await writer.drain()
        data = await asyncio.wait_for(reader.read(), 5)
        writer.close()
    finally:
        plugin.close()
    assert data.startswith(b"HTTP/1.1 200 OK\r\n")
    assert b"coredns_build_info" in data


@pytest.mark.asyncio
async def test_metrics_endpoint_ignores_non_get():
    plugin = _plugin([":0"])
    await plugin.start()
    try:
        reader, writer = await asyncio.open_connection("127.0.0.1", plugin.bound_port)
        writer.write(b"POST / HTTP/1.1\r\n\r\n")
        await writer.drain()
        data = await asyncio.wait_for(reader.read(), 5)
        writer.close()
    finally:
        plugin.close()
    assert data == b""