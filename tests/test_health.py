import asyncio

import pytest

from coreresolver.corefile import PluginConfig
from coreresolver.plugins.base import SharedState
from coreresolver.plugins.health import HealthPlugin
from coreresolver.types import DnsMessage


def make_plugin(*args):
    return HealthPlugin(PluginConfig("health", list(args)), SharedState())


def test_address_defaults_and_normalisation():
    assert make_plugin().address == "0.0.0.0:8080"
    assert make_plugin("8181").address == "0.0.0.0:8181"
    assert make_plugin(":8282").address == "0.0.0.0:8282"


@pytest.mark.asyncio
async def test_serves_ok():
    plugin = make_plugin(":0")
    await plugin.start()
    try:
        port = plugin.bound_port
        assert port is not None and port > 0
        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        writer.write(b"GET /health HTTP/1.1\r\n\r\n")
        await writer.drain()
        data = await asyncio.wait_for(reader.read(), 2)
        writer.close()
        assert data == b"HTTP/1.1 200 OK\r\nContent-Type: text/plain\r\nContent-Length: 2\r\n\r\nOK"
    finally:
        plugin.close()
    assert plugin.bound_port is None


@pytest.mark.asyncio
async def test_second_listener_on_same_port_stays_unbound():
    first = make_plugin(":0")
    await first.start()
    try:
        second = make_plugin(f":{first.bound_port}")
        await second.start()
        assert second.bound_port is None
        second.close()
    finally:
        first.close()


@pytest.mark.asyncio
async def test_process_passes_through():
    msg = DnsMessage(raw_query=b"\x00" * 12)
    result = await make_plugin().process(msg)
    assert result is msg
    assert result.raw_response is None