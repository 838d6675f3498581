"""In-memory Store adapter for single-process deployments and tests."""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from typing import Any

import structlog

from src.core.snapshots import MetricSnapshot, SnapshotPayload
from src.core.config import StoreConfig
from src.core.types import (
    Alert,
    AlertStatus,
    AuditRecord,
    IntegrationHealthRecord,
    SnapshotType,
)
from src.storage.base import Store
from src.storage.exceptions import AlertWriteError

logger = structlog.get_logger(__name__)

_MAX_AUDIT_RECORDS = 5000


def _new_id() -> str:
    return uuid.uuid4().hex


class InMemoryStore(Store):
    """Holds everything in process memory behind one ``asyncio.Lock``.

    Snapshots are kept per type in a bounded deque ordered by insertion;
    the oldest rows drop off once ``max_snapshots_per_type`` is reached.
    """

    def __init__(self, config: StoreConfig | None = None) -> None:
        self._config = config or StoreConfig()
        self._lock = asyncio.Lock()
        self._snapshots: dict[SnapshotType, deque[MetricSnapshot]] = {}
        self._alerts: dict[str, Alert] = {}
        self._health: dict[str, IntegrationHealthRecord] = {}
        self._audit: deque[AuditRecord] = deque(maxlen=_MAX_AUDIT_RECORDS)

    def _bucket(self, snapshot_type: SnapshotType) -> deque[MetricSnapshot]:
        bucket = self._snapshots.get(snapshot_type)
        if bucket is None:
            bucket = deque(maxlen=self._config.max_snapshots_per_type)
            self._snapshots[snapshot_type] = bucket
        return bucket

    # ── Snapshots ────────────────────────────────────────────────

    async def insert_snapshot(
        self,
        snapshot_type: SnapshotType,
        metrics: SnapshotPayload,
        collected_at: float,
    ) -> MetricSnapshot:
        snapshot = MetricSnapshot(
            id=_new_id(),
            snapshot_type=snapshot_type,
            metrics=metrics,
            collected_at=collected_at,
        )
        async with self._lock:
            self._bucket(snapshot_type).append(snapshot)
        return snapshot

    async def select_snapshots(
        self,
        snapshot_type: SnapshotType,
        since: float,
        limit: int | None = None,
    ) -> list[MetricSnapshot]:
        async with self._lock:
            rows = [
                s for s in self._snapshots.get(snapshot_type, ())
                if s.collected_at >= since
            ]
        rows.sort(key=lambda s: s.collected_at, reverse=True)
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def latest_snapshot(self, snapshot_type: SnapshotType) -> MetricSnapshot | None:
        async with self._lock:
            bucket = self._snapshots.get(snapshot_type)
            if not bucket:
                return None
            return max(bucket, key=lambda s: s.collected_at)

    async def delete_snapshots_before(self, ts: float) -> int:
        removed = 0
        async with self._lock:
            for snapshot_type, bucket in self._snapshots.items():
                kept = [s for s in bucket if s.collected_at >= ts]
                removed += len(bucket) - len(kept)
                self._snapshots[snapshot_type] = deque(
                    kept, maxlen=self._config.max_snapshots_per_type,
                )
        if removed:
            logger.debug("snapshots_pruned", removed=removed, before=ts)
        return removed

    # ── Alerts ───────────────────────────────────────────────────

    async def upsert_alert(self, alert: Alert) -> Alert:
        async with self._lock:
            if not alert.id:
                if alert.is_open:
                    for existing in self._alerts.values():
                        if existing.is_open and existing.metric_name == alert.metric_name:
                            raise AlertWriteError(
                                f"open alert already exists for {alert.metric_name}"
                            )
                alert = alert.model_copy(update={"id": _new_id()})
            stored = alert.model_copy()
            self._alerts[stored.id] = stored
        return stored.model_copy()

    async def get_alert(self, alert_id: str) -> Alert | None:
        async with self._lock:
            alert = self._alerts.get(alert_id)
            return alert.model_copy() if alert is not None else None

    async def select_active_alert_by_metric(self, metric_name: str) -> Alert | None:
        async with self._lock:
            for alert in self._alerts.values():
                if alert.is_open and alert.metric_name == metric_name:
                    return alert.model_copy()
        return None

    async def select_alerts(
        self,
        status: AlertStatus | None = None,
        limit: int | None = 100,
    ) -> list[Alert]:
        async with self._lock:
            rows = [
                a.model_copy() for a in self._alerts.values()
                if status is None or a.status == status
            ]
        rows.sort(key=lambda a: (a.severity, a.last_seen_at), reverse=True)
        return rows if limit is None else rows[:limit]

    async def select_open_alerts(self) -> list[Alert]:
        async with self._lock:
            rows = [a.model_copy() for a in self._alerts.values() if a.is_open]
        rows.sort(key=lambda a: (a.severity, a.last_seen_at), reverse=True)
        return rows

    async def count_resolved_since(self, ts: float) -> int:
        async with self._lock:
            return sum(
                1 for a in self._alerts.values()
                if not a.is_open and a.resolved_at is not None and a.resolved_at >= ts
            )

    async def delete_resolved_alerts_before(self, ts: float) -> int:
        async with self._lock:
            stale = [
                alert_id for alert_id, a in self._alerts.items()
                if not a.is_open and a.resolved_at is not None and a.resolved_at < ts
            ]
            for alert_id in stale:
                del self._alerts[alert_id]
        if stale:
            logger.debug("resolved_alerts_pruned", removed=len(stale), before=ts)
        return len(stale)

    async def update_alert_status(
        self,
        alert_id: str,
        status: AlertStatus,
        **fields: Any,
    ) -> Alert | None:
        async with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                return None
            updated = alert.model_copy(update={"status": status, **fields})
            self._alerts[alert_id] = updated
            return updated.model_copy()

    # ── Integration health ───────────────────────────────────────

    async def upsert_integration_health(
        self,
        integration_name: str,
        **fields: Any,
    ) -> IntegrationHealthRecord:
        async with self._lock:
            current = self._health.get(integration_name)
            if current is None:
                record = IntegrationHealthRecord(integration_name=integration_name, **fields)
            else:
                record = current.model_copy(update=fields)
            self._health[integration_name] = record
            return record.model_copy()

    async def select_integration_health(self) -> list[IntegrationHealthRecord]:
        async with self._lock:
            return [
                self._health[name].model_copy() for name in sorted(self._health)
            ]

    # ── Audit ────────────────────────────────────────────────────

    async def insert_audit_record(
        self,
        action: str,
        actor: str,
        occurred_at: float,
        alert_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditRecord:
        record = AuditRecord(
            id=_new_id(),
            action=action,
            actor=actor,
            alert_id=alert_id,
            occurred_at=occurred_at,
            details=details or {},
        )
        async with self._lock:
            self._audit.append(record)
        return record

    async def select_audit_records(self, limit: int = 100) -> list[AuditRecord]:
        async with self._lock:
            rows = list(self._audit)
        rows.reverse()
        return rows[:limit]
