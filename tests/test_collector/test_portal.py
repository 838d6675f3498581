"""Tests for PortalMetricsBuffer — report ingestion and per-portal health."""

from __future__ import annotations

import pytest

from src.collector.portal import MAX_TRANSITIONS_PER_REPORT, PortalMetricsBuffer
from src.core.clock import ManualClock
from src.core.types import IntegrationStatus


def _buffer() -> tuple[PortalMetricsBuffer, ManualClock]:
    clock = ManualClock(5_000.0)
    return PortalMetricsBuffer(clock=clock), clock


def _transitions(*durations: float) -> list[dict[str, object]]:
    return [{"from": "/a", "to": "/b", "durationMs": d} for d in durations]


class TestIngest:
    def test_unknown_portal_rejected(self) -> None:
        buf, _ = _buffer()
        with pytest.raises(ValueError):
            buf.ingest("intranet", {})

    def test_counts_accepted_entries(self) -> None:
        buf, _ = _buffer()
        accepted = buf.ingest("customer", {
            "routeTransitions": _transitions(100, 200),
            "jsErrors": [{"message": "boom"}],
            "assetFailures": [{"message": "chunk.js"}],
        })
        assert accepted == 4

    def test_malformed_entries_skipped(self) -> None:
        buf, _ = _buffer()
        accepted = buf.ingest("customer", {
            "routeTransitions": [
                {"durationMs": "fast"},
                {"durationMs": -5},
                "nope",
                {"from": "/", "to": "/x", "durationMs": 120},
            ],
            "jsErrors": "not-a-list",
        })
        assert accepted == 1

    @pytest.mark.parametrize("duration", ["Infinity", "NaN", "-inf", float("inf"), float("nan")])
    def test_non_finite_durations_rejected(self, duration: object) -> None:
        buf, _ = _buffer()
        accepted = buf.ingest("customer", {"routeTransitions": [{"durationMs": duration}]})
        assert accepted == 0
        metrics = buf.portal_metrics("customer")
        assert metrics.route_transition_count == 0
        assert metrics.health_status == IntegrationStatus.HEALTHY

    def test_report_capped(self) -> None:
        buf, _ = _buffer()
        accepted = buf.ingest("customer", {
            "routeTransitions": _transitions(*([10.0] * (MAX_TRANSITIONS_PER_REPORT + 25))),
        })
        assert accepted == MAX_TRANSITIONS_PER_REPORT


class TestPortalMetrics:
    def test_no_data_is_healthy(self) -> None:
        buf, _ = _buffer()
        metrics = buf.portal_metrics("marketing")
        assert metrics.route_transition_count == 0
        assert metrics.health_status == IntegrationStatus.HEALTHY

    def test_slow_routes_degrade(self) -> None:
        buf, _ = _buffer()
        buf.ingest("customer", {"routeTransitions": _transitions(*([2000.0] * 10))})
        metrics = buf.portal_metrics("customer")
        assert metrics.route_transition_p95 == 2000.0
        assert metrics.health_status == IntegrationStatus.DEGRADED

    def test_very_slow_routes_down(self) -> None:
        buf, _ = _buffer()
        buf.ingest("customer", {"routeTransitions": _transitions(*([4000.0] * 10))})
        assert buf.portal_metrics("customer").health_status == IntegrationStatus.DOWN

    def test_asset_failures_degrade(self) -> None:
        buf, _ = _buffer()
        buf.ingest("super_admin", {"assetFailures": [{"message": "x.css"}]})
        metrics = buf.portal_metrics("super_admin")
        assert metrics.asset_load_failures == 1
        assert metrics.js_error_count == 0
        assert metrics.health_status == IntegrationStatus.DEGRADED

    def test_js_errors_per_minute(self) -> None:
        buf, _ = _buffer()
        buf.ingest("customer", {"jsErrors": [{"message": "e"}] * 15})
        metrics = buf.portal_metrics("customer", window_secs=900)
        assert metrics.js_error_count == 15
        assert metrics.js_errors_per_min == 1.0
        assert metrics.health_status == IntegrationStatus.DEGRADED

    def test_portals_are_separate(self) -> None:
        buf, _ = _buffer()
        buf.ingest("customer", {"routeTransitions": _transitions(4000.0)})
        assert buf.portal_metrics("marketing").route_transition_count == 0

    def test_window_expiry(self) -> None:
        buf, clock = _buffer()
        buf.ingest("customer", {"routeTransitions": _transitions(4000.0)})
        clock.advance(901)
        assert buf.portal_metrics("customer").route_transition_count == 0
