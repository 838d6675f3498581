"""Read surfaces over the collector, evaluator and store, shaped for JSON."""

from __future__ import annotations

from typing import Any

from src.alerts.evaluator import AlertEvaluator
from src.budget.engine import BudgetEngine
from src.collector.collector import MetricsCollector
from src.collector.portal import PORTAL_TYPES
from src.core.clock import Clock, SystemClock
from src.core.snapshots import (
    ApiMetrics,
    CacheMetrics,
    DatabaseMetrics,
    JobQueueMetrics,
    MetricSnapshot,
    PortalMetrics,
)
from src.core.types import AlertStatus, SnapshotType
from src.storage.base import Store

_TOP_ALERTS = 10
_TOP_SLOW = 5


def _payload(snapshot: MetricSnapshot | None) -> dict[str, Any]:
    if snapshot is None:
        return {}
    return snapshot.metrics.model_dump(mode="json")


def _collected_at(snapshot: MetricSnapshot | None) -> float | None:
    return snapshot.collected_at if snapshot is not None else None


class SystemStatusService:
    """Aggregates what the status pages show.

    Every method returns plain JSON-serialisable dicts; missing data
    degrades to zeros and empty lists rather than raising.
    """

    def __init__(
        self,
        store: Store,
        collector: MetricsCollector,
        evaluator: AlertEvaluator,
        budget_engine: BudgetEngine,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._collector = collector
        self._evaluator = evaluator
        self._engine = budget_engine
        self._clock = clock or SystemClock()

    async def overview(self) -> dict[str, Any]:
        api = await self._store.latest_snapshot(SnapshotType.API)
        db = await self._store.latest_snapshot(SnapshotType.DATABASE)
        cache = await self._store.latest_snapshot(SnapshotType.CACHE)
        jobs = await self._store.latest_snapshot(SnapshotType.JOB_QUEUE)

        stats = await self._evaluator.alert_stats()
        active = await self._evaluator.active_alerts()

        global_status = "green"
        if stats["critical_count"] > 0:
            global_status = "red"
        elif stats["warning_count"] > 0:
            global_status = "yellow"

        api_m = api.metrics if api is not None and isinstance(api.metrics, ApiMetrics) else ApiMetrics()
        db_m = db.metrics if db is not None and isinstance(db.metrics, DatabaseMetrics) else DatabaseMetrics()
        cache_m = (
            cache.metrics
            if cache is not None and isinstance(cache.metrics, CacheMetrics)
            else CacheMetrics()
        )
        jobs_m = (
            jobs.metrics
            if jobs is not None and isinstance(jobs.metrics, JobQueueMetrics)
            else JobQueueMetrics()
        )

        return {
            "global_status": global_status,
            "last_updated": _collected_at(api) or self._clock.now(),
            "kpis": {
                "api_p95_latency": api_m.p95_latency_ms,
                "db_p95_latency": db_m.p95_latency_ms,
                "error_rate_5xx": api_m.error_rate_5xx,
                "cache_p95_latency": cache_m.p95_latency_ms,
                "queued_jobs": jobs_m.queued_jobs,
                "stuck_jobs": jobs_m.stuck_job_count,
                "active_alerts": stats["critical_count"] + stats["warning_count"],
                "violations_last_15m": self._engine.violation_count(15 * 60.0),
            },
            "active_alerts": [a.model_dump(mode="json") for a in active[:_TOP_ALERTS]],
            "top_slow_endpoints": [
                e.model_dump(mode="json") for e in api_m.slow_endpoints[:_TOP_SLOW]
            ],
            "top_slow_queries": [
                q.model_dump(mode="json") for q in db_m.slow_queries[:_TOP_SLOW]
            ],
            "collector": {
                "last_collection_time": self._collector.last_collection_time,
                "collecting": self._collector.collecting,
            },
            "evaluator": {
                "last_evaluation_time": self._evaluator.last_evaluation_time,
                "evaluating": self._evaluator.evaluating,
            },
        }

    async def performance(self) -> dict[str, Any]:
        budgets = [b.model_dump(mode="json") for b in self._evaluator.budget_statuses()]
        return {
            "budgets": budgets,
            "engine": self._engine.summary(),
            "recent_violations": [
                v.model_dump(mode="json") for v in self._engine.violation_history()
            ],
            "last_updated": self._evaluator.last_evaluation_time,
        }

    async def alerts(self, status: AlertStatus | None = None, limit: int = 100) -> dict[str, Any]:
        rows = await self._evaluator.alerts(status, limit=limit)
        return {
            "alerts": [a.model_dump(mode="json") for a in rows],
            "stats": await self._evaluator.alert_stats(),
        }

    async def alert_badge(self) -> dict[str, Any]:
        stats = await self._evaluator.alert_stats()
        return {
            "critical_count": stats["critical_count"],
            "warning_count": stats["warning_count"],
            "total": stats["critical_count"] + stats["warning_count"],
        }

    async def integrations(self) -> dict[str, Any]:
        records = await self._store.select_integration_health()
        return {"integrations": [r.model_dump(mode="json") for r in records]}

    async def _latest(self, snapshot_type: SnapshotType) -> dict[str, Any]:
        snapshot = await self._store.latest_snapshot(snapshot_type)
        return {
            "metrics": _payload(snapshot),
            "collected_at": _collected_at(snapshot),
        }

    async def api_errors(self) -> dict[str, Any]:
        data = await self._latest(SnapshotType.API)
        metrics = data["metrics"]
        return {
            "error_rate_5xx": metrics.get("error_rate_5xx", 0.0),
            "error_rate_4xx": metrics.get("error_rate_4xx", 0.0),
            "error_endpoints": metrics.get("error_endpoints", []),
            "collected_at": data["collected_at"],
        }

    async def database(self) -> dict[str, Any]:
        data = await self._latest(SnapshotType.DATABASE)
        history = await self._collector.snapshot_history(SnapshotType.DATABASE, limit=60)
        data["history"] = [
            {"collected_at": s.collected_at, **_payload(s)} for s in reversed(history)
        ]
        return data

    async def jobs(self) -> dict[str, Any]:
        return await self._latest(SnapshotType.JOB_QUEUE)

    async def cache(self) -> dict[str, Any]:
        return await self._latest(SnapshotType.CACHE)

    async def portals(self) -> dict[str, Any]:
        # The portal probe writes one row per portal type each tick.
        snapshots = await self._store.select_snapshots(
            SnapshotType.PORTAL, since=0.0, limit=len(PORTAL_TYPES),
        )
        latest: dict[str, dict[str, Any]] = {}
        for snapshot in snapshots:
            if isinstance(snapshot.metrics, PortalMetrics):
                latest.setdefault(snapshot.metrics.portal_type, {
                    **_payload(snapshot),
                    "collected_at": snapshot.collected_at,
                })
        return {"portals": [latest[p] for p in PORTAL_TYPES if p in latest]}

    async def audit(self, limit: int = 100) -> dict[str, Any]:
        records = await self._store.select_audit_records(limit)
        return {"records": [r.model_dump(mode="json") for r in records]}
