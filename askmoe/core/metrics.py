"""
In-process metrics for the ask pipeline, exported as Prometheus text.

Counters and histograms live for the life of the process and are not
aggregated across instances; scrape every instance.
"""

from __future__ import annotations

import bisect
import re
import threading
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

LabelKey = Tuple[str, ...]


def _render_labels(names: Sequence[str], values: LabelKey, extra: Optional[Tuple[str, str]] = None) -> str:
    pairs = list(zip(names, values))
    if extra:
        pairs.append(extra)
    if not pairs:
        return ""
    return "{" + ",".join(f'{name}="{_escape(value)}"' for name, value in pairs) + "}"


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\"", "\\\"").replace("\n", "\\n")


class _Metric:
    kind = "untyped"

    def __init__(self, name: str, help_text: str, label_names: Optional[Iterable[str]] = None):
        self.name = name
        self.help_text = help_text
        self.label_names = tuple(label_names or ())
        self._lock = threading.Lock()

    def _key(self, labels: Optional[Dict[str, str]]) -> LabelKey:
        labels = labels or {}
        return tuple(str(labels.get(name, "")) for name in self.label_names)

    def header(self) -> List[str]:
        return [f"# HELP {self.name} {self.help_text}", f"# TYPE {self.name} {self.kind}"]


class Counter(_Metric):
    kind = "counter"

    def __init__(self, name: str, help_text: str, label_names: Optional[Iterable[str]] = None):
        super().__init__(name, help_text, label_names)
        self._values: Dict[LabelKey, float] = {}

    def inc(self, labels: Optional[Dict[str, str]] = None, amount: float = 1.0) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + float(amount)

    def value(self, labels: Optional[Dict[str, str]] = None) -> float:
        with self._lock:
            return self._values.get(self._key(labels), 0.0)

    def export(self) -> List[str]:
        lines = self.header()
        with self._lock:
            for key, value in sorted(self._values.items()):
                lines.append(f"{self.name}{_render_labels(self.label_names, key)} {value}")
        return lines

    def reset(self) -> None:
        with self._lock:
            self._values.clear()


class Histogram(_Metric):
    """Cumulative-bucket histogram (seconds)."""
    kind = "histogram"

    DEFAULT_BUCKETS = (0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)

    def __init__(self, name: str, help_text: str, label_names: Optional[Iterable[str]] = None, buckets: Sequence[float] = DEFAULT_BUCKETS):
        super().__init__(name, help_text, label_names)
        self.buckets = tuple(sorted(buckets))
        # per label key: (bucket counts incl. +Inf, sum)
        self._series: Dict[LabelKey, Tuple[List[int], float]] = {}

    def observe(self, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        key = self._key(labels)
        index = bisect.bisect_left(self.buckets, value)
        with self._lock:
            counts, total = self._series.get(key, ([0] * (len(self.buckets) + 1), 0.0))
            counts[index] += 1
            self._series[key] = (counts, total + float(value))

    def count(self, labels: Optional[Dict[str, str]] = None) -> int:
        with self._lock:
            series = self._series.get(self._key(labels))
            return sum(series[0]) if series else 0

    def export(self) -> List[str]:
        lines = self.header()
        with self._lock:
            for key, (counts, total) in sorted(self._series.items()):
                running = 0
                for bound, count in zip(self.buckets + (float("inf"),), counts):
                    running += count
                    le = "+Inf" if bound == float("inf") else repr(bound)
                    lines.append(f"{self.name}_bucket{_render_labels(self.label_names, key, ('le', le))} {running}")
                lines.append(f"{self.name}_sum{_render_labels(self.label_names, key)} {total}")
                lines.append(f"{self.name}_count{_render_labels(self.label_names, key)} {running}")
        return lines

    def reset(self) -> None:
        with self._lock:
            self._series.clear()


class MetricsRegistry:
    def __init__(self):
        self._metrics: Dict[str, _Metric] = {}
        self._lock = threading.Lock()

    def _register(self, metric: _Metric) -> _Metric:
        with self._lock:
            return self._metrics.setdefault(metric.name, metric)

    def counter(self, name: str, help_text: str, label_names: Optional[Iterable[str]] = None) -> Counter:
        return self._register(Counter(name, help_text, label_names))

    def histogram(self, name: str, help_text: str, label_names: Optional[Iterable[str]] = None) -> Histogram:
        return self._register(Histogram(name, help_text, label_names))

    def export_prometheus(self) -> str:
        lines: List[str] = []
        for metric in list(self._metrics.values()):
            lines.extend(metric.export())
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        for metric in self._metrics.values():
            metric.reset()


METRICS = MetricsRegistry()

http_requests_total = METRICS.counter("http_requests_total", "HTTP requests by route and status", ["method", "path", "status"])
ratelimit_block_total = METRICS.counter("ratelimit_block_total", "Requests refused by admission control", ["tier"])
answer_cache_total = METRICS.counter("answer_cache_total", "Canonical answer lookups", ["result"])
quota_denied_total = METRICS.counter("quota_denied_total", "Asks denied by entitlement", ["plan"])
provider_errors_total = METRICS.counter("provider_errors_total", "Reasoning provider failures", ["kind"])
votes_total = METRICS.counter("votes_total", "Answer votes", ["direction"])
provider_latency_seconds = METRICS.histogram("provider_latency_seconds", "Reasoning provider call latency", ["model"])


_ID_SEGMENT_RE = re.compile(r"^(?:\d+|[0-9a-fA-F]{8}-[0-9a-fA-F-]{4,})$")


def normalize_path(path: str) -> str:
    """Collapse numeric and UUID path segments to :id to bound label cardinality."""
    segments = [":id" if _ID_SEGMENT_RE.match(seg) else seg for seg in path.split("/") if seg]
    return "/" + "/".join(segments)
