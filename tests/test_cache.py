import time

import pytest

from coreresolver.corefile import PluginConfig
from coreresolver.plugins.base import SharedState
from coreresolver.plugins.cache import (
    CachedItem,
    CachePlugin,
    CacheStore,
    extract_question_bytes,
)
from coreresolver.types import DnsMessage

NAME = b"\x07example\x03com\x00"


def make_query(txid=0xABCD, qtype=1):
    return (
        txid.to_bytes(2, "big")
        + b"\x01\x00\x00\x01\x00\x00\x00\x00\x00\x00"
        + NAME
        + qtype.to_bytes(2, "big")
        + b"\x00\x01"
    )


def make_response(query, rcode):
    return query[:2] + bytes([0x81, 0x80 | rcode]) + query[4:]


def make_plugin(block=(), shared=None):
    shared = shared or SharedState(cache_preserve=CacheStore())
    return CachePlugin(PluginConfig("cache", [], list(block)), shared)


def message(query):
    return DnsMessage(raw_query=query, server_port=1053)


def test_extract_question_bytes_full_query():
    query = make_query()
    assert extract_question_bytes(query) == query[12:]


def test_extract_question_bytes_short_or_truncated():
    query = make_query()
    assert extract_question_bytes(query[:11]) is None
    assert extract_question_bytes(query[:-2]) is None


def test_ttl_configuration():
    plugin = make_plugin([
        PluginConfig("success", ["9984", "60"]),
        PluginConfig("denial", ["9984", "30"]),
        PluginConfig("servfail", ["0s"]),
    ])
    assert (plugin.success_ttl, plugin.denial_ttl, plugin.servfail_ttl) == (60, 30, 0)


def test_default_ttls():
    plugin = make_plugin()
    assert (plugin.success_ttl, plugin.denial_ttl, plugin.servfail_ttl) == (3600, 1800, 5)


def test_bad_ttl_falls_back_to_default():
    plugin = make_plugin([PluginConfig("success", ["1", "soon"])])
    assert plugin.success_ttl == 3600


@pytest.mark.asyncio
async def test_miss_then_store_then_hit_with_new_id():
    plugin = make_plugin()
    first = make_query(txid=0x1111)
    msg = await plugin.process(message(first))
    assert msg.raw_response is None and not msg.halt_chain

    msg.raw_response = make_response(first, 0)
    await plugin.post_process(msg)
    assert first[12:] in plugin.store.success

    second = make_query(txid=0x2222)
    hit = await plugin.process(message(second))
    assert hit.halt_chain
    assert hit.answered_by == "cache"
    assert hit.raw_response[:2] == second[:2]
    assert hit.raw_response[2:] == make_response(first, 0)[2:]


@pytest.mark.asyncio
async def test_nxdomain_is_stored_as_denial():
    plugin = make_plugin()
    query = make_query()
    msg = message(query)
    msg.raw_response = make_response(query, 3)
    await plugin.post_process(msg)
    assert query[12:] in plugin.store.denial
    assert query[12:] not in plugin.store.success


@pytest.mark.asyncio
async def test_servfail_cached_only_with_positive_ttl():
    query = make_query()
    disabled = make_plugin([PluginConfig("servfail", ["0s"])])
    msg = message(query)
    msg.raw_response = make_response(query, 2)
    await disabled.post_process(msg)
    assert len(disabled.store.denial) == 0

    enabled = make_plugin()
    await enabled.post_process(msg)
    assert query[12:] in enabled.store.denial


@pytest.mark.asyncio
async def test_expired_entry_is_evicted():
    plugin = make_plugin()
    query = make_query()
    plugin.store.success[query[12:]] = CachedItem(make_response(query, 0), time.monotonic() - 1)
    msg = await plugin.process(message(query))
    assert msg.raw_response is None
    assert query[12:] not in plugin.store.success


@pytest.mark.asyncio
async def test_halted_message_passes_through():
    plugin = make_plugin()
    query = make_query()
    plugin.store.success[query[12:]] = CachedItem(make_response(query, 0), time.monotonic() + 60)
    msg = message(query)
    msg.halt_chain = True
    result = await plugin.process(msg)
    assert result.raw_response is None


@pytest.mark.asyncio
async def test_store_is_shared_between_plugin_instances():
    shared = SharedState(cache_preserve=CacheStore())
    old = make_plugin(shared=shared)
    query = make_query()
    msg = message(query)
    msg.raw_response = make_response(query, 0)
    await old.post_process(msg)

    new = make_plugin(shared=shared)
    hit = await new.process(message(make_query(txid=0x0102)))
    assert hit.halt_chain
    assert hit.raw_response[:2] == b"\x01\x02"