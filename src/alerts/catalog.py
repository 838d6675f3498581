"""The fixed catalog of performance budgets the evaluator checks each tick."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from src.core.snapshots import (
    ApiMetrics,
    CacheMetrics,
    DatabaseMetrics,
    JobQueueMetrics,
    ObjectStorageMetrics,
    SnapshotPayload,
)
from src.core.types import SnapshotType, Thresholds

# Returns None when the payload is not the kind the budget reads.
MetricAccessor = Callable[[SnapshotPayload], float | None]


@dataclass(frozen=True)
class BudgetDefinition:
    """One named budget: where its value comes from and what it may reach."""

    name: str
    snapshot_type: SnapshotType
    metric: MetricAccessor
    warn_threshold: float
    critical_threshold: float
    window_minutes: int
    source: str

    @property
    def thresholds(self) -> Thresholds:
        return Thresholds(warn=self.warn_threshold, critical=self.critical_threshold)

    @property
    def window_secs(self) -> float:
        return self.window_minutes * 60.0


# ── Accessors ───────────────────────────────────────────────────


def api_p95(m: SnapshotPayload) -> float | None:
    return m.p95_latency_ms if isinstance(m, ApiMetrics) else None


def api_5xx_rate(m: SnapshotPayload) -> float | None:
    return m.error_rate_5xx if isinstance(m, ApiMetrics) else None


def db_p95(m: SnapshotPayload) -> float | None:
    return m.p95_latency_ms if isinstance(m, DatabaseMetrics) else None


def db_pool_saturation(m: SnapshotPayload) -> float | None:
    if not isinstance(m, DatabaseMetrics) or m.pool_total == 0:
        return None
    return m.pool_saturation


def cache_p95(m: SnapshotPayload) -> float | None:
    return m.p95_latency_ms if isinstance(m, CacheMetrics) else None


def object_storage_p95(m: SnapshotPayload) -> float | None:
    return m.p95_latency_ms if isinstance(m, ObjectStorageMetrics) else None


def stuck_jobs(m: SnapshotPayload) -> float | None:
    return float(m.stuck_job_count) if isinstance(m, JobQueueMetrics) else None


def queued_jobs(m: SnapshotPayload) -> float | None:
    return float(m.queued_jobs) if isinstance(m, JobQueueMetrics) else None


PERFORMANCE_BUDGETS: tuple[BudgetDefinition, ...] = (
    BudgetDefinition(
        name="API List p95",
        snapshot_type=SnapshotType.API,
        metric=api_p95,
        warn_threshold=120,
        critical_threshold=250,
        window_minutes=15,
        source="api",
    ),
    BudgetDefinition(
        name="API 5xx Rate",
        snapshot_type=SnapshotType.API,
        metric=api_5xx_rate,
        warn_threshold=0.3,
        critical_threshold=1.0,
        window_minutes=5,
        source="api",
    ),
    BudgetDefinition(
        name="Database Query p95",
        snapshot_type=SnapshotType.DATABASE,
        metric=db_p95,
        warn_threshold=60,
        critical_threshold=150,
        window_minutes=15,
        source="database",
    ),
    BudgetDefinition(
        name="Database Pool Saturation",
        snapshot_type=SnapshotType.DATABASE,
        metric=db_pool_saturation,
        warn_threshold=70,
        critical_threshold=90,
        window_minutes=5,
        source="database",
    ),
    BudgetDefinition(
        name="Cache p95",
        snapshot_type=SnapshotType.CACHE,
        metric=cache_p95,
        warn_threshold=30,
        critical_threshold=100,
        window_minutes=5,
        source="cache",
    ),
    BudgetDefinition(
        name="Object Storage p95",
        snapshot_type=SnapshotType.OBJECT_STORAGE,
        metric=object_storage_p95,
        warn_threshold=300,
        critical_threshold=1000,
        window_minutes=5,
        source="object_storage",
    ),
    BudgetDefinition(
        name="Job Queue Stuck Jobs",
        snapshot_type=SnapshotType.JOB_QUEUE,
        metric=stuck_jobs,
        warn_threshold=1,
        critical_threshold=5,
        window_minutes=10,
        source="job",
    ),
    BudgetDefinition(
        name="Job Queue Backlog",
        snapshot_type=SnapshotType.JOB_QUEUE,
        metric=queued_jobs,
        warn_threshold=500,
        critical_threshold=2000,
        window_minutes=15,
        source="job",
    ),
)


def get_budget(name: str) -> BudgetDefinition | None:
    for budget in PERFORMANCE_BUDGETS:
        if budget.name == name:
            return budget
    return None
