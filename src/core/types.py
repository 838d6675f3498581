"""Shared domain types for budget evaluation, alerts and integration health."""

from __future__ import annotations

from enum import IntEnum, StrEnum
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class Severity(IntEnum):
    """Breach severity — ordered so escalation is a plain comparison."""

    NONE = 0
    WARNING = 1
    CRITICAL = 2

    @property
    def label(self) -> str:
        return self.name.lower()


class SnapshotType(StrEnum):
    """Kinds of subsystem probe that produce snapshots."""

    API = "api"
    DATABASE = "database"
    CACHE = "cache"
    OBJECT_STORAGE = "object_storage"
    JOB_QUEUE = "job_queue"
    INTEGRATION = "integration"
    PORTAL = "portal"
    STORAGE = "storage"


class AlertStatus(StrEnum):
    """Lifecycle status of a persisted alert."""

    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    SNOOZED = "snoozed"
    RESOLVED = "resolved"


class IntegrationStatus(StrEnum):
    """Liveness verdict for a third-party dependency."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"
    NOT_CONFIGURED = "not_configured"


# ── Budget engine types ─────────────────────────────────────────


class Thresholds(BaseModel):
    """A warn/critical threshold pair with a breach direction.

    ``higher_is_bad=False`` is for ratios like cache hit rate, where a
    breach means the value fell *to or below* the threshold.
    """

    model_config = ConfigDict(frozen=True)

    warn: float
    critical: float
    higher_is_bad: bool = True

    def classify(self, actual: float) -> Severity:
        """Return the severity *actual* falls into (NONE if in range)."""
        if self.higher_is_bad:
            if actual >= self.critical:
                return Severity.CRITICAL
            if actual >= self.warn:
                return Severity.WARNING
        else:
            if actual <= self.critical:
                return Severity.CRITICAL
            if actual <= self.warn:
                return Severity.WARNING
        return Severity.NONE

    def threshold_for(self, severity: Severity) -> float:
        return self.critical if severity == Severity.CRITICAL else self.warn


class MetricKey(NamedTuple):
    """Composite state key: a metric plus an optional sub-key (e.g. endpoint)."""

    metric_name: str
    sub_key: str | None = None

    def __str__(self) -> str:
        if self.sub_key is None:
            return self.metric_name
        return f"{self.metric_name}:{self.sub_key}"


class MetricState(BaseModel):
    """Hysteresis counters for a single metric key."""

    breach_count: int = 0
    clear_count: int = 0
    current_severity: Severity = Severity.NONE
    is_violating: bool = False
    last_value: float = 0.0
    last_checked: float = 0.0

    @field_serializer("current_severity")
    def _dump_severity(self, value: Severity) -> str:
        return value.label


class ViolationRecord(BaseModel):
    """A none→violating transition recorded by the budget engine."""

    model_config = ConfigDict(frozen=True)

    metric_name: str
    actual: float
    threshold: float
    severity: Severity
    sub_key: str | None = None
    timestamp: float
    details: dict[str, Any] = Field(default_factory=dict)

    @field_serializer("severity")
    def _dump_severity(self, value: Severity) -> str:
        return value.label


class EvaluationResult(BaseModel):
    """Verdict returned from ``BudgetEngine.evaluate``."""

    model_config = ConfigDict(frozen=True)

    violated: bool
    new_violation: bool
    severity: Severity


# ── Alert & health records ──────────────────────────────────────


class Alert(BaseModel):
    """Operator-facing alert row.  One non-resolved row per metric_name."""

    id: str = ""
    severity: Severity
    source: str
    title: str
    description: str = ""
    metric_name: str
    actual_value: float
    threshold: float
    breach_duration: float = 0.0
    first_seen_at: float
    last_seen_at: float
    status: AlertStatus = AlertStatus.ACTIVE
    acknowledged_by: str | None = None
    acknowledged_at: float | None = None
    resolved_at: float | None = None
    snooze_until: float | None = None
    updated_at: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.status != AlertStatus.RESOLVED

    @field_serializer("severity")
    def _dump_severity(self, value: Severity) -> str:
        return value.label


class IntegrationHealthRecord(BaseModel):
    """Latest liveness verdict for one integration (upserted per tick)."""

    integration_name: str
    status: IntegrationStatus = IntegrationStatus.NOT_CONFIGURED
    latency_p95: float = 0.0
    error_rate: float = 0.0
    last_success_at: float | None = None
    last_failure_at: float | None = None
    last_failure_reason: str | None = None
    checked_at: float = 0.0


class AuditRecord(BaseModel):
    """Who did what to which alert, and when."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    action: str
    actor: str
    alert_id: str | None = None
    occurred_at: float
    details: dict[str, Any] = Field(default_factory=dict)
