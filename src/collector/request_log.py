"""In-process ring buffers of recent request and query timings."""

from __future__ import annotations

import threading
from collections import defaultdict, deque
from dataclasses import dataclass

from src.core.snapshots import (
    ApiMetrics,
    EndpointCount,
    EndpointErrors,
    EndpointLatency,
    SlowQuery,
)
from src.core.clock import Clock, SystemClock


@dataclass(frozen=True)
class TimingSample:
    """One observed request (or query) duration."""

    label: str
    duration_ms: float
    status_code: int
    timestamp: float


def percentile(sorted_values: list[float], pct: float) -> float:
    """Nearest-rank percentile over an already sorted list (0.0 if empty)."""
    if not sorted_values:
        return 0.0
    n = len(sorted_values)
    return sorted_values[min(int(n * pct), n - 1)]


class RequestTimingBuffer:
    """Bounded buffer of recent timings, written by request handlers.

    Usage::

        buffer = RequestTimingBuffer(max_samples=5000)
        buffer.record("GET /api/carriers", 84.2, status_code=200)

        api = buffer.api_metrics(window_secs=900)
    """

    def __init__(self, max_samples: int = 5000, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._samples: deque[TimingSample] = deque(maxlen=max_samples)
        # Request handlers may record from worker threads.
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._samples)

    def record(self, label: str, duration_ms: float, status_code: int = 200) -> None:
        sample = TimingSample(
            label=label,
            duration_ms=duration_ms,
            status_code=status_code,
            timestamp=self._clock.now(),
        )
        with self._lock:
            self._samples.append(sample)

    def window(self, window_secs: float) -> list[TimingSample]:
        """Samples recorded within the trailing *window_secs*."""
        cutoff = self._clock.now() - window_secs
        with self._lock:
            return [s for s in self._samples if s.timestamp >= cutoff]

    def clear(self) -> None:
        with self._lock:
            self._samples.clear()

    # ── Aggregations ─────────────────────────────────────────────

    def api_metrics(self, window_secs: float = 900.0, top_n: int = 20) -> ApiMetrics:
        """Aggregate request samples into an ApiMetrics payload."""
        samples = self.window(window_secs)
        if not samples:
            return ApiMetrics()

        total = len(samples)
        latencies = sorted(s.duration_ms for s in samples)
        count_5xx = sum(1 for s in samples if s.status_code >= 500)
        count_4xx = sum(1 for s in samples if 400 <= s.status_code < 500)

        by_endpoint: dict[str, list[TimingSample]] = defaultdict(list)
        for s in samples:
            by_endpoint[s.label].append(s)

        top = sorted(by_endpoint.items(), key=lambda kv: len(kv[1]), reverse=True)
        top_endpoints = [
            EndpointCount(
                endpoint=label,
                count=len(rows),
                avg_latency=round(sum(r.duration_ms for r in rows) / len(rows), 2),
            )
            for label, rows in top[:top_n]
        ]

        slow = [
            EndpointLatency(
                endpoint=label,
                p95=percentile(sorted(r.duration_ms for r in rows), 0.95),
                count=len(rows),
            )
            for label, rows in by_endpoint.items()
        ]
        slow.sort(key=lambda e: e.p95, reverse=True)

        errors: list[EndpointErrors] = []
        for label, rows in by_endpoint.items():
            failed = sum(1 for r in rows if r.status_code >= 500)
            if failed:
                errors.append(EndpointErrors(
                    endpoint=label,
                    error_count=failed,
                    error_rate=round(failed / len(rows) * 100.0, 2),
                ))
        errors.sort(key=lambda e: e.error_count, reverse=True)

        return ApiMetrics(
            request_count_15m=total,
            p95_latency_ms=percentile(latencies, 0.95),
            p99_latency_ms=percentile(latencies, 0.99),
            error_rate_5xx=round(count_5xx / total * 100.0, 4),
            error_rate_4xx=round(count_4xx / total * 100.0, 4),
            top_endpoints=top_endpoints,
            slow_endpoints=slow[:top_n],
            error_endpoints=errors[:top_n],
        )

    def latency_percentiles(self, window_secs: float = 900.0) -> tuple[float, float]:
        """(p95, p99) of all samples in the window."""
        latencies = sorted(s.duration_ms for s in self.window(window_secs))
        return percentile(latencies, 0.95), percentile(latencies, 0.99)

    def slow_samples(
        self, threshold_ms: float, window_secs: float = 900.0, limit: int = 10,
    ) -> list[SlowQuery]:
        """Slowest samples above *threshold_ms*, newest-first within equal durations."""
        slow = [s for s in self.window(window_secs) if s.duration_ms > threshold_ms]
        slow.sort(key=lambda s: (s.duration_ms, s.timestamp), reverse=True)
        return [
            SlowQuery(query=s.label[:100], duration_ms=s.duration_ms, timestamp=s.timestamp)
            for s in slow[:limit]
        ]

    def count_above(self, threshold_ms: float, window_secs: float = 900.0) -> int:
        return sum(1 for s in self.window(window_secs) if s.duration_ms > threshold_ms)
