import asyncio

import pytest

from coreresolver.corefile import PluginConfig
from coreresolver.plugins.base import ERROR_QUEUE_SIZE, Plugin, SharedState
from coreresolver.types import DnsMessage


class _Sleeper(Plugin):
    name = "sleeper"

    async def start(self):
        self.task = self._spawn(asyncio.sleep(3600))


def _shared():
    return SharedState(cache_preserve=None, config_path="Corefile")


def test_reload_event_taken_once():
    shared = _shared()
    event = shared.take_reload_event()
    assert event.is_set() is False
    with pytest.raises(RuntimeError):
        shared.take_reload_event()


def test_request_reload_sets_event():
    shared = _shared()
    event = shared.take_reload_event()
    shared.request_reload()
    assert event.is_set() is True


def test_error_queue_receives_reports():
    shared = _shared()
    assert shared.report_error("boom") is True
    queue = shared.take_error_queue()
    assert queue.get_nowait() == "boom"


def test_error_queue_taken_once():
    shared = _shared()
    first = shared.take_error_queue()
    assert first.maxsize == ERROR_QUEUE_SIZE
    assert shared.take_error_queue() is None


def test_full_error_queue_drops_reports():
    shared = _shared()
    results = [shared.report_error(f"e{i}") for i in range(ERROR_QUEUE_SIZE)]
    assert all(results)
    assert shared.report_error("overflow") is False


@pytest.mark.asyncio
async def test_default_process_passes_message_through():
    plugin = Plugin(PluginConfig("dummy"), _shared())
    msg = DnsMessage(raw_query=b"\x00" * 12)
    assert await plugin.process(msg) is msg
    assert await plugin.post_process(msg) is None
    assert msg.halt_chain is False


@pytest.mark.asyncio
async def test_close_cancels_spawned_tasks():
    plugin = _Sleeper(PluginConfig("sleeper"), _shared())
    await plugin.start()
    plugin.close()
    with pytest.raises(asyncio.CancelledError):
        await plugin.task
    assert plugin.task.cancelled() is True