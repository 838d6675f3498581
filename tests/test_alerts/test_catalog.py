"""Tests for the performance budget catalog."""

from __future__ import annotations

import pytest

from src.alerts.catalog import (
    PERFORMANCE_BUDGETS,
    api_p95,
    db_pool_saturation,
    get_budget,
    queued_jobs,
    stuck_jobs,
)
from src.core.snapshots import ApiMetrics, CacheMetrics, DatabaseMetrics, JobQueueMetrics
from src.core.types import Severity, SnapshotType


class TestCatalog:
    def test_names_unique(self) -> None:
        names = [b.name for b in PERFORMANCE_BUDGETS]
        assert len(names) == len(set(names)) == 8

    @pytest.mark.parametrize(
        ("name", "warn", "critical", "window", "snapshot_type"),
        [
            ("API List p95", 120, 250, 15, SnapshotType.API),
            ("API 5xx Rate", 0.3, 1.0, 5, SnapshotType.API),
            ("Database Query p95", 60, 150, 15, SnapshotType.DATABASE),
            ("Database Pool Saturation", 70, 90, 5, SnapshotType.DATABASE),
            ("Cache p95", 30, 100, 5, SnapshotType.CACHE),
            ("Object Storage p95", 300, 1000, 5, SnapshotType.OBJECT_STORAGE),
            ("Job Queue Stuck Jobs", 1, 5, 10, SnapshotType.JOB_QUEUE),
            ("Job Queue Backlog", 500, 2000, 15, SnapshotType.JOB_QUEUE),
        ],
    )
    def test_entries(
        self,
        name: str,
        warn: float,
        critical: float,
        window: int,
        snapshot_type: SnapshotType,
    ) -> None:
        budget = get_budget(name)
        assert budget is not None
        assert budget.warn_threshold == warn
        assert budget.critical_threshold == critical
        assert budget.window_minutes == window
        assert budget.window_secs == window * 60
        assert budget.snapshot_type == snapshot_type

    def test_warn_below_critical(self) -> None:
        for budget in PERFORMANCE_BUDGETS:
            assert budget.warn_threshold < budget.critical_threshold

    def test_unknown_budget(self) -> None:
        assert get_budget("nope") is None

    def test_thresholds_classify(self) -> None:
        budget = get_budget("Database Pool Saturation")
        assert budget is not None
        assert budget.thresholds.classify(95.0) == Severity.CRITICAL
        assert budget.thresholds.classify(70.0) == Severity.WARNING
        assert budget.thresholds.classify(69.9) == Severity.NONE


class TestAccessors:
    def test_wrong_payload_returns_none(self) -> None:
        assert api_p95(DatabaseMetrics()) is None
        assert stuck_jobs(CacheMetrics()) is None
        assert db_pool_saturation(ApiMetrics()) is None

    def test_values(self) -> None:
        assert api_p95(ApiMetrics(p95_latency_ms=42.0)) == 42.0
        assert stuck_jobs(JobQueueMetrics(stuck_job_count=3)) == 3.0
        assert queued_jobs(JobQueueMetrics(queued_jobs=700)) == 700.0

    def test_pool_saturation_needs_pool(self) -> None:
        assert db_pool_saturation(DatabaseMetrics()) is None
        assert db_pool_saturation(
            DatabaseMetrics(pool_used=9, pool_total=10, pool_saturation=90.0),
        ) == 90.0
