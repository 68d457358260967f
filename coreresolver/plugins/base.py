"""The plugin interface and the state shared by plugins of one configuration."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Optional

from coreresolver.corefile import PluginConfig
from coreresolver.types import DnsMessage

ERROR_QUEUE_SIZE = 100

_log = logging.getLogger(__name__)


class SharedState:
    """State shared by all plugins built from one configuration load."""

    def __init__(self, cache_preserve: Any = None, config_path: str = "") -> None:
        self.cache_preserve = cache_preserve
        self.config_path = config_path
        self._reload_event = asyncio.Event()
        self._reload_taken = False
        self._errors: asyncio.Queue[str] = asyncio.Queue(maxsize=ERROR_QUEUE_SIZE)
        self._errors_taken = False

    def request_reload(self) -> None:
        """Signal that the configuration must be reloaded."""
        self._reload_event.set()

    def take_reload_event(self) -> asyncio.Event:
        """Hand out the reload event; only one consumer may take it."""
        if self._reload_taken:
            raise RuntimeError("reload event already taken")
        self._reload_taken = True
        return self._reload_event

    def report_error(self, text: str) -> bool:
        """Queue an error message; returns False when the queue is full."""
        try:
            self._errors.put_nowait(text)
        except asyncio.QueueFull:
            return False
        return True

    def take_error_queue(self) -> Optional["asyncio.Queue[str]"]:
        """Hand out the error queue once; later calls get None."""
        if self._errors_taken:
            return None
        self._errors_taken = True
        return self._errors


class Plugin:
    """Base of all plugins: a pass-through step in the query chain."""

    name = "plugin"
    priority = 0

    def __init__(self, config: PluginConfig, shared: SharedState) -> None:
        self.config = config
        self.shared = shared
        self._tasks: set[asyncio.Task[Any]] = set()

    async def start(self) -> None:
        """Start background work; the default has none."""

    async def process(self, msg: DnsMessage) -> DnsMessage:
        """Handle a query on its way in; the default passes it on."""
        return msg

    async def post_process(self, msg: DnsMessage) -> None:
        """Observe the finished message on its way out; the default traces it."""
        _log.debug(
            "[%s] finished TxID %#06x (response: %s)",
            self.name,
            msg.header.id,
            "yes" if msg.raw_response is not None else "no",
        )

    def close(self) -> None:
        """Cancel all background tasks started by this plugin."""
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task