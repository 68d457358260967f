"""A small metrics registry with Prometheus text exposition, and the server's metrics."""

from __future__ import annotations

import math
import threading
from typing import Generic, Iterable, Iterator, Sequence, TypeVar

_C = TypeVar("_C")

_DURATION_BUCKETS = (
    0.00025, 0.0005, 0.001, 0.002, 0.004, 0.008, 0.016, 0.032,
    0.064, 0.128, 0.256, 0.512, 1.024, 2.048, 4.096, 8.192,
)
_SIZE_BUCKETS = (
    0.0, 100.0, 200.0, 300.0, 400.0, 511.0, 1023.0, 2047.0, 4095.0,
    8291.0, 16000.0, 32000.0, 48000.0, 64000.0,
)


def _format_value(value: float) -> str:
    if isinstance(value, int):
        return str(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _label_text(pairs: Iterable[tuple[str, str]]) -> str:
    body = ",".join(f'{name}="{_escape(value)}"' for name, value in pairs)
    return f"{{{body}}}" if body else ""


class _Metric(Generic[_C]):
    kind = "untyped"

    def __init__(self, name: str, documentation: str, labelnames: Sequence[str] = ()) -> None:
        self.name = name
        self.documentation = documentation
        self.labelnames = tuple(labelnames)
        self._lock = threading.Lock()
        self._children: dict[tuple[str, ...], _C] = {}
        if not self.labelnames:
            self._children[()] = self._new_child()

    def _new_child(self) -> _C:
        raise NotImplementedError

    def _child(self, args: Sequence[str]) -> _C:
        if len(args) != len(self.labelnames):
            raise ValueError(
                f"{self.name} expects {len(self.labelnames)} label values, got {len(args)}"
            )
        key = tuple(str(value) for value in args)
        with self._lock:
            child = self._children.get(key)
            if child is None:
                child = self._children[key] = self._new_child()
        return child

    def _unlabelled(self) -> _C:
        if self.labelnames:
            raise ValueError(f"{self.name} requires labels {self.labelnames}")
        return self._children[()]

    def _series(self) -> list[tuple[tuple[tuple[str, str], ...], _C]]:
        with self._lock:
            items = sorted(self._children.items())
        return [(tuple(zip(self.labelnames, key)), child) for key, child in items]

    def _sample_lines(self) -> Iterator[str]:
        for pairs, child in self._series():
            yield f"{self.name}{_label_text(pairs)} {_format_value(child.value)}"  # type: ignore[attr-defined]

    def render_lines(self) -> list[str]:
        samples = list(self._sample_lines())
        if not samples:
            return []
        return [
            f"# HELP {self.name} {self.documentation}",
            f"# TYPE {self.name} {self.kind}",
            *samples,
        ]


class _CounterChild:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value: float = 0

    def inc(self, amount: float = 1) -> None:
        if amount < 0:
            raise ValueError("counters can only increase")
        with self._lock:
            self._value += amount

    @property
    def value(self) -> float:
        return self._value


class _GaugeChild:
    def __init__(self) -> None:
        self._value: float = 0.0

    def set(self, value: float) -> None:
        self._value = float(value)

    @property
    def value(self) -> float:
        return self._value


class _HistogramChild:
    def __init__(self, bounds: tuple[float, ...]) -> None:
        self._lock = threading.Lock()
        self._bounds = bounds
        self._counts = [0] * len(bounds)
        self._count = 0
        self._sum = 0.0

    def observe(self, value: float) -> None:
        with self._lock:
            for index, bound in enumerate(self._bounds):
                if value <= bound:
                    self._counts[index] += 1
                    break
            self._count += 1
            self._sum += value

    @property
    def count(self) -> int:
        return self._count

    @property
    def sum(self) -> float:
        return self._sum

    def cumulative(self) -> list[tuple[float, int]]:
        with self._lock:
            counts = list(self._counts)
            total = self._count
        running = 0
        result = []
        for bound, count in zip(self._bounds, counts):
            running += count
            result.append((bound, running))
        result.append((math.inf, total))
        return result


class Counter(_Metric[_CounterChild]):
    """A monotonically increasing count."""

    kind = "counter"

    def _new_child(self) -> _CounterChild:
        return _CounterChild()

    def labels(self, *args: str) -> _CounterChild:
        """Return the series for these label values, creating it on first use."""
        return self._child(args)

    def inc(self, amount: float = 1) -> None:
        self._unlabelled().inc(amount)


class Gauge(_Metric[_GaugeChild]):
    """A value that can be set freely."""

    kind = "gauge"

    def _new_child(self) -> _GaugeChild:
        return _GaugeChild()

    def labels(self, *args: str) -> _GaugeChild:
        """Return the series for these label values, creating it on first use."""
        return self._child(args)

    def set(self, value: float) -> None:
        self._unlabelled().set(value)


class Histogram(_Metric[_HistogramChild]):
    """Observations counted into cumulative buckets."""

    kind = "histogram"

    def __init__(
        self,
        name: str,
        documentation: str,
        labelnames: Sequence[str] = (),
        buckets: Sequence[float] = _DURATION_BUCKETS,
    ) -> None:
        self.buckets = tuple(sorted(float(b) for b in buckets if not math.isinf(b)))
        super().__init__(name, documentation, labelnames)

    def _new_child(self) -> _HistogramChild:
        return _HistogramChild(self.buckets)

    def labels(self, *args: str) -> _HistogramChild:
        """Return the series for these label values, creating it on first use."""
        return self._child(args)

    def observe(self, value: float) -> None:
        self._unlabelled().observe(value)

    def _sample_lines(self) -> Iterator[str]:
        for pairs, child in self._series():
            for bound, count in child.cumulative():
                le = (("le", _format_value(bound)),)
                yield f"{self.name}_bucket{_label_text(pairs + le)} {count}"
            yield f"{self.name}_sum{_label_text(pairs)} {_format_value(child.sum)}"
            yield f"{self.name}_count{_label_text(pairs)} {child.count}"


_M = TypeVar("_M", bound=_Metric)


class Registry:
    """A set of uniquely named metrics rendered together."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._metrics: dict[str, _Metric] = {}

    def register(self, metric: _M) -> _M:
        with self._lock:
            if metric.name in self._metrics:
                raise ValueError(f"metric {metric.name} already registered")
            self._metrics[metric.name] = metric
        return metric

    def render(self) -> str:
        """Render every metric in the Prometheus text format."""
        with self._lock:
            metrics = [self._metrics[name] for name in sorted(self._metrics)]
        lines = [line for metric in metrics for line in metric.render_lines()]
        return "\n".join(lines) + "\n" if lines else ""


REGISTRY = Registry()

DNS_REQUESTS_TOTAL = REGISTRY.register(Counter(
    "coredns_dns_requests_total",
    "Counter of DNS requests made per zone, protocol and family.",
    ("family", "proto", "server", "type", "view", "zone"),
))
DNS_RESPONSES_TOTAL = REGISTRY.register(Counter(
    "coredns_dns_responses_total",
    "Counter of response status codes.",
    ("plugin", "rcode", "server", "view", "zone"),
))
DNS_REQUEST_DURATION = REGISTRY.register(Histogram(
    "coredns_dns_request_duration_seconds",
    "Histogram of the time (in seconds) each request took per zone.",
    ("server", "view", "zone"),
    _DURATION_BUCKETS,
))
DNS_REQUEST_SIZE = REGISTRY.register(Histogram(
    "coredns_dns_request_size_bytes",
    "Size of the EDNS0 UDP buffer in bytes (64K for TCP) per zone and protocol.",
    ("proto", "server", "view", "zone"),
    _SIZE_BUCKETS,
))
DNS_RESPONSE_SIZE = REGISTRY.register(Histogram(
    "coredns_dns_response_size_bytes",
    "Size of the returned response in bytes.",
    ("proto", "server", "view", "zone"),
    _SIZE_BUCKETS,
))
CACHE_ENTRIES = REGISTRY.register(Gauge(
    "coredns_cache_entries",
    "The number of elements in the cache.",
    ("server", "type", "view", "zones"),
))
CACHE_REQUESTS_TOTAL = REGISTRY.register(Counter(
    "coredns_cache_requests_total",
    "The count of cache requests.",
    ("server", "view", "zones"),
))
CACHE_HITS_TOTAL = REGISTRY.register(Counter(
    "coredns_cache_hits_total",
    "The count of cache hits.",
    ("server", "type", "view", "zones"),
))
CACHE_MISSES_TOTAL = REGISTRY.register(Counter(
    "coredns_cache_misses_total",
    "The count of cache misses. Deprecated, derive misses from cache hits/requests counters.",
    ("server", "view", "zones"),
))
PROXY_REQUEST_DURATION = REGISTRY.register(Histogram(
    "coredns_proxy_request_duration_seconds",
    "Histogram of the time each request took.",
    ("proxy_name", "rcode", "to"),
    _DURATION_BUCKETS,
))
PROXY_CONN_CACHE_HITS = REGISTRY.register(Counter(
    "coredns_proxy_conn_cache_hits_total",
    "Counter of connection cache hits per upstream and protocol.",
    ("proto", "proxy_name", "to"),
))
PROXY_CONN_CACHE_MISSES = REGISTRY.register(Counter(
    "coredns_proxy_conn_cache_misses_total",
    "Counter of connection cache misses per upstream and protocol.",
    ("proto", "proxy_name", "to"),
))
FORWARD_MAX_CONCURRENT_REJECTS = REGISTRY.register(Counter(
    "coredns_forward_max_concurrent_rejects_total",
    "Counter of the number of queries rejected because the concurrent queries were at maximum.",
))
PLUGIN_ENABLED = REGISTRY.register(Gauge(
    "coredns_plugin_enabled",
    "A metric that indicates whether a plugin is enabled on per server and zone basis.",
    ("name", "server", "view", "zone"),
))
BUILD_INFO = REGISTRY.register(Gauge(
    "coredns_build_info",
    "A metric with a constant '1' value labeled by version, revision, and python_version "
    "from which the server was built.",
    ("python_version", "revision", "version"),
))
RELOAD_VERSION_INFO = REGISTRY.register(Gauge(
    "coredns_reload_version_info",
    "Record the hash value during reload.",
    ("hash", "value"),
))
RELOAD_FAILED_TOTAL = REGISTRY.register(Counter(
    "coredns_reload_failed_total",
    "Counter of the number of failed reload attempts.",
))