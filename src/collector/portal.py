"""Buffer for client-reported portal metrics (route timings, JS errors)."""

from __future__ import annotations

import math
import threading
from collections import deque
from dataclasses import dataclass

from src.budget.thresholds import PORTAL_JS_ERRORS, PORTAL_ROUTE_P95
from src.collector.request_log import percentile
from src.core.snapshots import PortalMetrics
from src.core.clock import Clock, SystemClock
from src.core.types import IntegrationStatus, Severity

PORTAL_TYPES = ("super_admin", "customer", "marketing")

# Browsers batch reports; cap each report so one client cannot flood the buffer.
MAX_TRANSITIONS_PER_REPORT = 50
MAX_ERRORS_PER_REPORT = 20


@dataclass(frozen=True)
class RouteTransition:
    portal_type: str
    from_route: str
    to_route: str
    duration_ms: float
    timestamp: float


@dataclass(frozen=True)
class ClientError:
    portal_type: str
    message: str
    timestamp: float
    asset_failure: bool = False


class PortalMetricsBuffer:
    """Accumulates batched browser reports and aggregates them per portal."""

    def __init__(self, max_entries: int = 5000, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._transitions: deque[RouteTransition] = deque(maxlen=max_entries)
        self._errors: deque[ClientError] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def ingest(self, portal_type: str, report: dict[str, object]) -> int:
        """Store one client report.  Returns the number of entries accepted.

        *report* follows the browser payload shape::

            {"routeTransitions": [{"from": "/a", "to": "/b", "durationMs": 120}],
             "jsErrors": [{"message": "boom"}],
             "assetFailures": [{"message": "chunk.js"}]}

        Malformed entries are skipped.
        """
        if portal_type not in PORTAL_TYPES:
            raise ValueError(f"unknown portal type: {portal_type!r}")

        now = self._clock.now()
        transitions: list[RouteTransition] = []
        errors: list[ClientError] = []

        raw_transitions = report.get("routeTransitions") or []
        if isinstance(raw_transitions, list):
            for raw in raw_transitions[:MAX_TRANSITIONS_PER_REPORT]:
                if not isinstance(raw, dict):
                    continue
                try:
                    duration = float(raw.get("durationMs", ""))
                except (TypeError, ValueError):
                    continue
                if not math.isfinite(duration) or duration < 0:
                    continue
                transitions.append(RouteTransition(
                    portal_type=portal_type,
                    from_route=str(raw.get("from", "")),
                    to_route=str(raw.get("to", "")),
                    duration_ms=duration,
                    timestamp=now,
                ))

        for field_name, is_asset in (("jsErrors", False), ("assetFailures", True)):
            raw_errors = report.get(field_name) or []
            if not isinstance(raw_errors, list):
                continue
            for raw in raw_errors[:MAX_ERRORS_PER_REPORT]:
                if not isinstance(raw, dict):
                    continue
                errors.append(ClientError(
                    portal_type=portal_type,
                    message=str(raw.get("message", ""))[:500],
                    timestamp=now,
                    asset_failure=is_asset,
                ))

        with self._lock:
            self._transitions.extend(transitions)
            self._errors.extend(errors)
        return len(transitions) + len(errors)

    def portal_metrics(self, portal_type: str, window_secs: float = 900.0) -> PortalMetrics:
        """Aggregate the trailing window for one portal type."""
        cutoff = self._clock.now() - window_secs
        with self._lock:
            durations = sorted(
                t.duration_ms for t in self._transitions
                if t.portal_type == portal_type and t.timestamp >= cutoff
            )
            recent_errors = [
                e for e in self._errors
                if e.portal_type == portal_type and e.timestamp >= cutoff
            ]

        js_errors = sum(1 for e in recent_errors if not e.asset_failure)
        asset_failures = len(recent_errors) - js_errors
        per_min = js_errors / (window_secs / 60.0) if window_secs > 0 else 0.0
        p95 = percentile(durations, 0.95)

        worst = max(PORTAL_ROUTE_P95.classify(p95), PORTAL_JS_ERRORS.classify(per_min))
        health = IntegrationStatus.HEALTHY
        if worst == Severity.CRITICAL:
            health = IntegrationStatus.DOWN
        elif worst == Severity.WARNING or asset_failures > 0:
            health = IntegrationStatus.DEGRADED

        return PortalMetrics(
            portal_type=portal_type,
            route_transition_p95=p95,
            route_transition_p99=percentile(durations, 0.99),
            route_transition_count=len(durations),
            js_error_count=js_errors,
            js_errors_per_min=round(per_min, 4),
            asset_load_failures=asset_failures,
            health_status=health,
        )
