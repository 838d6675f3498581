"""Typed snapshot payloads, one model per probe kind."""

from __future__ import annotations

from typing import Union

from pydantic import BaseModel, ConfigDict, Field

from src.core.types import IntegrationStatus, SnapshotType


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True)


# ── API ─────────────────────────────────────────────────────────


class EndpointCount(_Payload):
    endpoint: str
    count: int
    avg_latency: float


class EndpointLatency(_Payload):
    endpoint: str
    p95: float
    count: int


class EndpointErrors(_Payload):
    endpoint: str
    error_count: int
    error_rate: float


class ApiMetrics(_Payload):
    """Request latency / error aggregation over the trailing window."""

    request_count_15m: int = 0
    p95_latency_ms: float = 0.0
    p99_latency_ms: float = 0.0
    error_rate_5xx: float = 0.0
    error_rate_4xx: float = 0.0
    top_endpoints: list[EndpointCount] = Field(default_factory=list)
    slow_endpoints: list[EndpointLatency] = Field(default_factory=list)
    error_endpoints: list[EndpointErrors] = Field(default_factory=list)


# ── Database ────────────────────────────────────────────────────


class SlowQuery(_Payload):
    query: str
    duration_ms: float
    timestamp: float


class DatabaseMetrics(_Payload):
    p95_latency_ms: float = 0.0
    p99_latency_ms: float = 0.0
    pool_used: int = 0
    pool_total: int = 0
    pool_waiting: int = 0
    pool_saturation: float = 0.0
    slow_query_count: int = 0
    slow_queries: list[SlowQuery] = Field(default_factory=list)


# ── Cache / object storage ──────────────────────────────────────


class CacheMetrics(_Payload):
    p95_latency_ms: float = 0.0
    cache_hit_rate: float = 0.0
    hits: int = 0
    misses: int = 0
    connected: bool = False


class ObjectStorageMetrics(_Payload):
    p95_latency_ms: float = 0.0
    upload_errors: int = 0
    download_errors: int = 0
    operations: int = 0
    error_rate: float = 0.0


# ── Job queue ───────────────────────────────────────────────────


class JobTypeBreakdown(_Payload):
    type: str
    running: int = 0
    stuck: int = 0


class JobQueueMetrics(_Payload):
    queued_jobs: int = 0
    running_jobs: int = 0
    failed_jobs_15m: int = 0
    failed_jobs_24h: int = 0
    oldest_job_age_secs: float = 0.0
    stuck_job_count: int = 0
    success_rate: float = 0.0
    jobs_by_type: list[JobTypeBreakdown] = Field(default_factory=list)


# ── Integrations / portals / storage ────────────────────────────


class IntegrationMetrics(_Payload):
    name: str
    status: IntegrationStatus
    latency_p95: float = 0.0
    error_rate: float = 0.0
    last_success_at: float | None = None
    last_failure_at: float | None = None
    last_failure_reason: str | None = None


class PortalMetrics(_Payload):
    portal_type: str
    route_transition_p95: float = 0.0
    route_transition_p99: float = 0.0
    route_transition_count: int = 0
    js_error_count: int = 0
    js_errors_per_min: float = 0.0
    asset_load_failures: int = 0
    health_status: IntegrationStatus = IntegrationStatus.HEALTHY


class StorageMetrics(_Payload):
    used_mb: float = 0.0
    total_mb: float = 0.0
    usage_percent: float = 0.0


SnapshotPayload = Union[
    ApiMetrics,
    DatabaseMetrics,
    CacheMetrics,
    ObjectStorageMetrics,
    JobQueueMetrics,
    IntegrationMetrics,
    PortalMetrics,
    StorageMetrics,
]


class MetricSnapshot(BaseModel):
    """One probe's payload at one collection tick.  Immutable once written."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    snapshot_type: SnapshotType
    metrics: SnapshotPayload
    collected_at: float
