"""The errors plugin: logs reported errors, consolidating repeated ones."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from coreresolver.corefile import PluginConfig
from coreresolver.durations import parse_duration
from coreresolver.plugins.base import Plugin, SharedState
from coreresolver.types import DnsMessage

logger = logging.getLogger(__name__)

_DEFAULT_WINDOW = timedelta(seconds=30)
_LEVELS = {
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


@dataclass(frozen=True)
class ConsolidateRule:
    """Errors matching a pattern are counted and reported once per window."""

    pattern: re.Pattern[str]
    raw_pattern: str
    duration: timedelta
    level: str = "error"
    show_first: bool = False


def _log(level: str, text: str) -> None:
    logger.log(_LEVELS.get(level.lower(), logging.ERROR), "%s", text)


def _format_duration(duration: timedelta) -> str:
    seconds = duration.total_seconds()
    if seconds >= 1 or seconds == 0:
        return f"{seconds:g}s"
    return f"{seconds * 1000:g}ms"


def _parse_rule(directive: PluginConfig) -> Optional[ConsolidateRule]:
    if len(directive.args) < 2:
        return None
    try:
        duration = parse_duration(directive.args[0])
    except ValueError:
        duration = _DEFAULT_WINDOW
    raw_pattern = directive.args[1]
    try:
        pattern = re.compile(raw_pattern)
    except re.error:
        pattern = re.compile(".*")
    level = "error"
    show_first = False
    for arg in directive.args[2:]:
        if arg == "show_first":
            show_first = True
        else:
            level = arg
    return ConsolidateRule(pattern, raw_pattern, duration, level, show_first)


class ErrorsPlugin(Plugin):
    """Consumes the shared error queue and logs errors by its consolidate rules."""

    name = "errors"
    priority = 220

    def __init__(self, config: PluginConfig, shared: SharedState) -> None:
        super().__init__(config, shared)
        self.rules = [
            rule
            for rule in (_parse_rule(sub) for sub in config.block if sub.name == "consolidate")
            if rule is not None
        ]
        self._counts = [0] * len(self.rules)
        self._timers: dict[int, asyncio.TimerHandle] = {}
        logger.info("[errors] Plugin initialized with %d consolidate rules", len(self.rules))

    async def start(self) -> None:
        queue = self.shared.take_error_queue()
        if queue is not None:
            self._spawn(self._consume(queue))

    async def _consume(self, queue: "asyncio.Queue[str]") -> None:
        while True:
            self.handle_error(await queue.get())

    def handle_error(self, text: str) -> Optional[int]:
        """Count or log one error; returns the index of the matching rule, if any.

        Must be called with a running event loop when rules are configured.
        """
        for index, rule in enumerate(self.rules):
            if rule.pattern.search(text):
                self._counts[index] += 1
                if self._counts[index] == 1:
                    if rule.show_first:
                        _log(rule.level, text)
                    loop = asyncio.get_running_loop()
                    self._timers[index] = loop.call_later(
                        rule.duration.total_seconds(), self.flush_rule, index
                    )
                return index
        logger.error("%s", text)
        return None

    def flush_rule(self, index: int) -> Optional[str]:
        """Close a rule's window: log its summary if due, reset its count, return the summary."""
        self._timers.pop(index, None)
        count = self._counts[index]
        rule = self.rules[index]
        summary = None
        if count > 1 or (count == 1 and not rule.show_first):
            summary = (
                f"{count} errors like '{rule.raw_pattern}' occurred in last "
                f"{_format_duration(rule.duration)}"
            )
            _log(rule.level, summary)
        self._counts[index] = 0
        return summary

    async def process(self, msg: DnsMessage) -> DnsMessage:
        return msg

    def close(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        super().close()