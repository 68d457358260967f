"""The cache plugin: answers repeated questions from a shared response cache."""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Optional

from cachetools import LRUCache

from coreresolver.corefile import PluginConfig
from coreresolver.metrics import (
    CACHE_ENTRIES,
    CACHE_HITS_TOTAL,
    CACHE_MISSES_TOTAL,
    CACHE_REQUESTS_TOTAL,
)
from coreresolver.plugins.base import Plugin, SharedState
from coreresolver.types import DnsMessage

logger = logging.getLogger(__name__)

_CAPACITY = 50_000
_DEFAULT_SUCCESS_TTL = 3600
_DEFAULT_DENIAL_TTL = 1800
_DEFAULT_SERVFAIL_TTL = 5
_UNSIGNED = re.compile(r"\+?[0-9]+")
_MAX_UNSIGNED = 2**64 - 1


@dataclass(frozen=True)
class CachedItem:
    """A cached wire response and the monotonic time it stops being valid."""

    response: bytes
    expires_at: float


class CacheStore:
    """Bounded LRU tables for positive and negative answers.

    One store outlives configuration reloads so cached answers survive them.
    """

    def __init__(self, capacity: int = _CAPACITY) -> None:
        self.success: LRUCache[bytes, CachedItem] = LRUCache(maxsize=capacity)
        self.denial: LRUCache[bytes, CachedItem] = LRUCache(maxsize=capacity)
        self.lock = threading.Lock()


def extract_question_bytes(query: bytes) -> Optional[bytes]:
    """The question section (name, type and class) of a raw query, used as cache key."""
    if len(query) < 12:
        return None
    offset = 12
    while offset < len(query):
        length = query[offset]
        offset += 1
        if length == 0:
            break
        offset += length
    if offset + 4 <= len(query):
        return bytes(query[12:offset + 4])
    return None


def _parse_seconds(text: str, default: int) -> int:
    if _UNSIGNED.fullmatch(text) and int(text) <= _MAX_UNSIGNED:
        return int(text)
    return default


def _server_label(msg: DnsMessage) -> str:
    port = msg.server_port if msg.server_port is not None else 53
    return f"dns://:{port}"


class CachePlugin(Plugin):
    """Serves cached responses and stores the responses of later plugins."""

    name = "cache"
    priority = 120

    def __init__(self, config: PluginConfig, shared: SharedState) -> None:
        super().__init__(config, shared)
        self.success_ttl = _DEFAULT_SUCCESS_TTL
        self.denial_ttl = _DEFAULT_DENIAL_TTL
        self.servfail_ttl = _DEFAULT_SERVFAIL_TTL
        for sub in config.block:
            if sub.name == "success" and len(sub.args) > 1:
                self.success_ttl = _parse_seconds(sub.args[1], _DEFAULT_SUCCESS_TTL)
            elif sub.name == "denial" and len(sub.args) > 1:
                self.denial_ttl = _parse_seconds(sub.args[1], _DEFAULT_DENIAL_TTL)
            elif sub.name == "servfail" and sub.args:
                self.servfail_ttl = _parse_seconds(
                    sub.args[0].removesuffix("s"), _DEFAULT_SERVFAIL_TTL
                )
        store = shared.cache_preserve
        self.store: CacheStore = store if isinstance(store, CacheStore) else CacheStore()
        logger.info(
            "[cache] Initialized (Success TTL: %ss, Denial TTL: %ss). Bound to Global LRU Pool.",
            self.success_ttl,
            self.denial_ttl,
        )

    def _lookup(self, table: LRUCache, key: bytes, now: float) -> Optional[CachedItem]:
        with self.store.lock:
            item = table.get(key)
            if item is None:
                return None
            if item.expires_at > now:
                return item
            table.pop(key, None)
            return None

    async def process(self, msg: DnsMessage) -> DnsMessage:
        if msg.halt_chain or len(msg.raw_query) < 12:
            return msg
        label = _server_label(msg)
        CACHE_REQUESTS_TOTAL.labels(label, "", ".").inc()

        key = extract_question_bytes(msg.raw_query)
        if key is not None:
            now = time.monotonic()
            for kind, table in (("success", self.store.success), ("denial", self.store.denial)):
                item = self._lookup(table, key, now)
                if item is not None:
                    logger.info("     |-- [cache] HIT %s! TxID: %#06x", kind.capitalize(), msg.header.id)
                    return self._answer(msg, item, label, kind)

        CACHE_MISSES_TOTAL.labels(label, "", ".").inc()
        return msg

    @staticmethod
    def _answer(msg: DnsMessage, item: CachedItem, label: str, kind: str) -> DnsMessage:
        response = bytearray(item.response)
        response[0:2] = msg.raw_query[0:2]
        msg.raw_response = bytes(response)
        msg.halt_chain = True
        msg.answered_by = "cache"
        CACHE_HITS_TOTAL.labels(label, kind, "", ".").inc()
        return msg

    async def post_process(self, msg: DnsMessage) -> None:
        response = msg.raw_response
        if response is None or len(response) < 4:
            return
        key = extract_question_bytes(msg.raw_query)
        if key is None:
            return
        label = _server_label(msg)
        rcode = response[3] & 0x0F
        now = time.monotonic()
        if rcode == 0:
            with self.store.lock:
                self.store.success[key] = CachedItem(bytes(response), now + self.success_ttl)
                size = len(self.store.success)
            CACHE_ENTRIES.labels(label, "success", "", ".").set(size)
        elif rcode == 3 or (rcode == 2 and self.servfail_ttl > 0):
            ttl = self.denial_ttl if rcode == 3 else self.servfail_ttl
            with self.store.lock:
                self.store.denial[key] = CachedItem(bytes(response), now + ttl)
                size = len(self.store.denial)
            CACHE_ENTRIES.labels(label, "denial", "", ".").set(size)