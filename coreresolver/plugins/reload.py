"""The reload plugin: watches the Corefile and triggers a reload when it changes."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import random
from datetime import timedelta

from coreresolver.corefile import PluginConfig
from coreresolver.durations import parse_duration
from coreresolver.metrics import RELOAD_FAILED_TOTAL, RELOAD_VERSION_INFO
from coreresolver.plugins.base import Plugin, SharedState
from coreresolver.types import DnsMessage

logger = logging.getLogger(__name__)

_DEFAULT_INTERVAL = timedelta(seconds=30)
_DEFAULT_JITTER = timedelta(seconds=15)
_MIN_INTERVAL = timedelta(seconds=2)
_MIN_JITTER = timedelta(seconds=1)


def hash_file(path: str) -> str:
    """Hex SHA-512 of a file's content; raises OSError if it cannot be read."""
    with open(path, "rb") as handle:
        return hashlib.sha512(handle.read()).hexdigest()


def _duration_or(text: str, default: timedelta) -> timedelta:
    try:
        return parse_duration(text)
    except ValueError:
        return default


class ReloadPlugin(Plugin):
    """Polls the configuration file's hash at a jittered interval."""

    name = "reload"
    priority = 190

    def __init__(self, config: PluginConfig, shared: SharedState) -> None:
        super().__init__(config, shared)
        interval = _DEFAULT_INTERVAL
        jitter = _DEFAULT_JITTER
        if config.args:
            interval = max(_duration_or(config.args[0], _DEFAULT_INTERVAL), _MIN_INTERVAL)
        if len(config.args) > 1:
            jitter = max(_duration_or(config.args[1], _DEFAULT_JITTER), _MIN_JITTER)
        self.interval = interval
        self.jitter = min(jitter, interval / 2)
        self.path = shared.config_path
        try:
            self.current_hash = hash_file(self.path)
        except OSError:
            self.current_hash = ""
        RELOAD_VERSION_INFO.labels("sha512", self.current_hash).set(1.0)
        logger.info(
            "[reload] Watching changes for %s (Interval: %s, Jitter: %s)",
            self.path, self.interval, self.jitter,
        )

    def _next_delay(self) -> float:
        jitter_ms = int(self.jitter.total_seconds() * 1000)
        offset_ms = random.randint(0, jitter_ms * 2) - jitter_ms
        return self.interval.total_seconds() + offset_ms / 1000

    def check(self) -> bool:
        """Hash the file once; request a reload and return True if it changed."""
        try:
            new_hash = hash_file(self.path)
        except OSError as exc:
            logger.error("[reload] Failed to read Corefile: %s", exc)
            RELOAD_FAILED_TOTAL.inc()
            return False
        if new_hash == self.current_hash:
            return False
        logger.info("[reload] Corefile change detected! New SHA512: %s", new_hash)
        RELOAD_VERSION_INFO.labels("sha512", self.current_hash).set(0.0)
        RELOAD_VERSION_INFO.labels("sha512", new_hash).set(1.0)
        self.shared.request_reload()
        return True

    async def start(self) -> None:
        self._spawn(self._watch())

    async def _watch(self) -> None:
        while True:
            await asyncio.sleep(self._next_delay())
            if self.check():
                break

    async def process(self, msg: DnsMessage) -> DnsMessage:
        return msg

    def close(self) -> None:
        super().close()