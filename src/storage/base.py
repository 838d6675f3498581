"""Store interface: the only path from the engine to durable state."""

from __future__ import annotations

import abc
from typing import Any

from src.core.snapshots import MetricSnapshot, SnapshotPayload
from src.core.types import (
    Alert,
    AlertStatus,
    AuditRecord,
    IntegrationHealthRecord,
    SnapshotType,
)


class Store(abc.ABC):
    """Async persistence for snapshots, alerts, integration health and audit.

    Implementations raise ``StoreError`` subclasses on write failure.
    Returned models are copies; mutating them never changes stored state.
    """

    # ── Snapshots ────────────────────────────────────────────────

    @abc.abstractmethod
    async def insert_snapshot(
        self,
        snapshot_type: SnapshotType,
        metrics: SnapshotPayload,
        collected_at: float,
    ) -> MetricSnapshot:
        """Append one snapshot and return it with its assigned id."""

    @abc.abstractmethod
    async def select_snapshots(
        self,
        snapshot_type: SnapshotType,
        since: float,
        limit: int | None = None,
    ) -> list[MetricSnapshot]:
        """Snapshots with ``collected_at >= since``, newest first."""

    @abc.abstractmethod
    async def latest_snapshot(self, snapshot_type: SnapshotType) -> MetricSnapshot | None:
        """Most recent snapshot of *snapshot_type*."""

    @abc.abstractmethod
    async def delete_snapshots_before(self, ts: float) -> int:
        """Drop snapshots collected before *ts*; return how many went."""

    # ── Alerts ───────────────────────────────────────────────────

    @abc.abstractmethod
    async def upsert_alert(self, alert: Alert) -> Alert:
        """Insert (empty id) or replace an alert row."""

    @abc.abstractmethod
    async def get_alert(self, alert_id: str) -> Alert | None: ...

    @abc.abstractmethod
    async def select_active_alert_by_metric(self, metric_name: str) -> Alert | None:
        """The non-resolved alert for *metric_name*, if any."""

    @abc.abstractmethod
    async def select_alerts(
        self,
        status: AlertStatus | None = None,
        limit: int | None = 100,
    ) -> list[Alert]:
        """Alerts ordered by severity then recency; ``limit=None`` returns all."""

    @abc.abstractmethod
    async def select_open_alerts(self) -> list[Alert]:
        """Every non-resolved alert, ordered by severity then recency."""

    @abc.abstractmethod
    async def count_resolved_since(self, ts: float) -> int:
        """Number of alerts with ``resolved_at >= ts``."""

    @abc.abstractmethod
    async def delete_resolved_alerts_before(self, ts: float) -> int:
        """Drop alerts resolved before *ts*; return how many went."""

    @abc.abstractmethod
    async def update_alert_status(
        self,
        alert_id: str,
        status: AlertStatus,
        **fields: Any,
    ) -> Alert | None:
        """Set *status* plus any extra columns; None if the id is unknown."""

    # ── Integration health ───────────────────────────────────────

    @abc.abstractmethod
    async def upsert_integration_health(
        self,
        integration_name: str,
        **fields: Any,
    ) -> IntegrationHealthRecord:
        """Merge *fields* into the record for *integration_name*."""

    @abc.abstractmethod
    async def select_integration_health(self) -> list[IntegrationHealthRecord]: ...

    # ── Audit ────────────────────────────────────────────────────

    @abc.abstractmethod
    async def insert_audit_record(
        self,
        action: str,
        actor: str,
        occurred_at: float,
        alert_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditRecord: ...

    @abc.abstractmethod
    async def select_audit_records(self, limit: int = 100) -> list[AuditRecord]:
        """Newest first."""
