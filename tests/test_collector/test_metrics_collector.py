"""Tests for MetricsCollector — probes, isolation, guards, budget feed."""

from __future__ import annotations

import asyncio

import httpx

from src.budget.engine import BudgetEngine
from src.collector.collector import MetricsCollector, stuck_threshold_for
from src.collector.integrations import IntegrationChecker
from src.collector.providers import JobQueueStats, PoolStats, RunningJob
from src.core.clock import ManualClock
from src.core.config import CollectorConfig, IntegrationCheckConfig
from src.core.snapshots import (
    CacheMetrics,
    DatabaseMetrics,
    JobQueueMetrics,
    ObjectStorageMetrics,
    SnapshotPayload,
)
from src.core.types import IntegrationStatus, Severity, SnapshotType
from src.storage.exceptions import SnapshotWriteError
from src.storage.memory import InMemoryStore

T0 = 100_000.0


# ── Fakes ───────────────────────────────────────────────────────


class FakePool:
    def __init__(self, used: int = 5, total: int = 10, waiting: int = 0) -> None:
        self.stats = PoolStats(used=used, total=total, waiting=waiting)

    async def pool_stats(self) -> PoolStats:
        return self.stats


class FakeCache:
    def __init__(self, hits: int = 90, misses: int = 10, fail: bool = False) -> None:
        self.hits = hits
        self.misses = misses
        self.fail = fail

    async def ping(self) -> None:
        if self.fail:
            raise ConnectionError("cache unreachable")

    async def info_stats(self) -> dict[str, int]:
        return {"keyspace_hits": self.hits, "keyspace_misses": self.misses}


class FakeObjectStorage:
    async def ping(self) -> None:
        return None


class FakeJobQueue:
    def __init__(
        self,
        pending: int = 3,
        running: list[RunningJob] | None = None,
        failed_times: list[float] | None = None,
        pending_ages: list[float] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.pending = pending
        self.running = running or []
        self.failed_times = failed_times or []
        self.pending_ages = pending_ages or []
        self.delay = delay
        self.release = asyncio.Event()
        if delay == 0.0:
            self.release.set()

    async def get_stats(self) -> JobQueueStats:
        await self.release.wait()
        return JobQueueStats(pending=self.pending, processing=len(self.running), success_rate=98.5)

    async def get_running_jobs_with_age(self) -> list[RunningJob]:
        return self.running

    async def get_failed_job_times(self, limit: int = 100) -> list[float]:
        return self.failed_times[:limit]

    async def get_pending_job_ages(self, limit: int = 100) -> list[float]:
        return self.pending_ages[:limit]


class FailingSnapshotStore(InMemoryStore):
    async def insert_snapshot(self, snapshot_type, metrics, collected_at):  # type: ignore[override]
        raise SnapshotWriteError("disk full")


# ── Helpers ─────────────────────────────────────────────────────


def _collector(
    store: InMemoryStore | None = None,
    **kw: object,
) -> tuple[MetricsCollector, InMemoryStore, BudgetEngine, ManualClock]:
    clock = ManualClock(T0)
    store = store or InMemoryStore()
    engine = BudgetEngine(clock=clock)
    config = kw.pop("config", None) or CollectorConfig(initial_delay_secs=0.0)
    collector = MetricsCollector(
        store, engine, config=config, clock=clock, **kw,  # type: ignore[arg-type]
    )
    return collector, store, engine, clock


async def _latest(store: InMemoryStore, kind: SnapshotType) -> SnapshotPayload | None:
    snapshot = await store.latest_snapshot(kind)
    return snapshot.metrics if snapshot is not None else None


# ── Cycle behaviour ─────────────────────────────────────────────


class TestCollectAll:
    async def test_writes_snapshot_per_available_probe(self) -> None:
        collector, store, _, _ = _collector(pool_provider=FakePool())
        results = await collector.collect_all()

        assert results[SnapshotType.API] == 1
        assert results[SnapshotType.DATABASE] == 1
        assert results[SnapshotType.STORAGE] == 1
        assert results[SnapshotType.PORTAL] == 3
        # Not wired: no snapshot, no error.
        assert results[SnapshotType.CACHE] == 0
        assert results[SnapshotType.JOB_QUEUE] == 0
        assert await store.latest_snapshot(SnapshotType.CACHE) is None
        assert collector.last_collection_time == T0

    async def test_snapshots_share_collection_time(self) -> None:
        collector, store, _, _ = _collector(pool_provider=FakePool())
        await collector.collect_all()
        api = await store.latest_snapshot(SnapshotType.API)
        db = await store.latest_snapshot(SnapshotType.DATABASE)
        assert api is not None and db is not None
        assert api.collected_at == db.collected_at == T0

    async def test_failing_probe_isolated(self) -> None:
        collector, store, _, _ = _collector(
            pool_provider=FakePool(), cache_client=FakeCache(fail=True),
        )
        results = await collector.collect_all()
        assert results[SnapshotType.CACHE] == 0
        assert results[SnapshotType.DATABASE] == 1
        assert await store.latest_snapshot(SnapshotType.CACHE) is None

    async def test_probe_timeout_isolated(self) -> None:
        queue = FakeJobQueue(delay=1.0)
        collector, store, _, _ = _collector(
            job_queue=queue,
            config=CollectorConfig(probe_timeout_secs=0.05),
        )
        results = await collector.collect_all()
        assert results[SnapshotType.JOB_QUEUE] == 0
        assert results[SnapshotType.API] == 1
        assert collector.collecting is False

    async def test_overlapping_cycle_skipped(self) -> None:
        queue = FakeJobQueue(delay=1.0)
        collector, _, _, _ = _collector(job_queue=queue)

        first = asyncio.create_task(collector.collect_all())
        await asyncio.sleep(0.01)
        assert collector.collecting is True
        assert await collector.collect_all() == {}

        queue.release.set()
        results = await first
        assert results[SnapshotType.JOB_QUEUE] == 1
        assert collector.collecting is False

    async def test_write_failure_still_advances_budget_state(self) -> None:
        collector, _, engine, _ = _collector(
            store=FailingSnapshotStore(), pool_provider=FakePool(used=95, total=100),
        )
        results = await collector.collect_all()
        assert results[SnapshotType.DATABASE] == 0
        state = engine.metric_state("db_pool_saturation")
        assert state is not None and state.breach_count == 1


# ── Probes ──────────────────────────────────────────────────────


class TestDatabaseProbe:
    async def test_pool_saturation_percent(self) -> None:
        collector, store, _, _ = _collector(pool_provider=FakePool(used=8, total=10, waiting=2))
        collector.query_buffer.record("SELECT * FROM rates", 450.0)
        collector.query_buffer.record("SELECT 1", 2.0)
        await collector.collect_all()

        metrics = await _latest(store, SnapshotType.DATABASE)
        assert isinstance(metrics, DatabaseMetrics)
        assert metrics.pool_saturation == 80.0
        assert metrics.pool_waiting == 2
        assert metrics.slow_query_count == 1
        assert metrics.slow_queries[0].query == "SELECT * FROM rates"

    async def test_sustained_saturation_violates(self) -> None:
        collector, _, engine, clock = _collector(pool_provider=FakePool(used=9, total=10))
        await collector.collect_all()
        clock.advance(60)
        await collector.collect_all()
        state = engine.metric_state("db_pool_saturation")
        assert state is not None
        assert state.is_violating is True
        assert state.current_severity == Severity.CRITICAL

    async def test_unavailable_without_pool_or_queries(self) -> None:
        collector, _, _, _ = _collector()
        results = await collector.collect_all()
        assert results[SnapshotType.DATABASE] == 0


class TestCacheProbe:
    async def test_hit_rate(self) -> None:
        collector, store, engine, _ = _collector(cache_client=FakeCache(hits=75, misses=25))
        await collector.collect_all()
        metrics = await _latest(store, SnapshotType.CACHE)
        assert isinstance(metrics, CacheMetrics)
        assert metrics.cache_hit_rate == 0.75
        assert metrics.connected is True
        assert engine.metric_state("cache_hit_rate") is not None

    async def test_hit_rate_needs_minimum_operations(self) -> None:
        collector, _, engine, _ = _collector(cache_client=FakeCache(hits=1, misses=8))
        await collector.collect_all()
        assert engine.metric_state("cache_hit_rate") is None


class TestObjectStorageProbe:
    async def test_error_counters_drained_each_tick(self) -> None:
        collector, store, engine, clock = _collector(object_storage=FakeObjectStorage())
        for _ in range(8):
            collector.record_object_storage_result("upload", True)
        collector.record_object_storage_result("upload", False)
        collector.record_object_storage_result("download", False)
        await collector.collect_all()

        metrics = await _latest(store, SnapshotType.OBJECT_STORAGE)
        assert isinstance(metrics, ObjectStorageMetrics)
        assert metrics.operations == 10
        assert metrics.upload_errors == 1
        assert metrics.download_errors == 1
        assert metrics.error_rate == 0.2
        assert engine.metric_state("object_storage_error_rate") is not None

        clock.advance(60)
        await collector.collect_all()
        metrics = await _latest(store, SnapshotType.OBJECT_STORAGE)
        assert isinstance(metrics, ObjectStorageMetrics)
        assert metrics.operations == 0


class TestJobQueueProbe:
    async def test_stuck_jobs_per_type(self) -> None:
        queue = FakeJobQueue(
            pending=12,
            running=[
                RunningJob(type="send_invoice", age_secs=700),
                RunningJob(type="send_invoice", age_secs=30),
                RunningJob(type="carrier_bulk_import", age_secs=1800),
                RunningJob(type="nightly_rerate", age_secs=4000),
            ],
            failed_times=[T0 - 60, T0 - 3600, T0 - 2 * 86_400],
            pending_ages=[10.0, 340.0, 55.0],
        )
        collector, store, engine, _ = _collector(job_queue=queue)
        await collector.collect_all()

        metrics = await _latest(store, SnapshotType.JOB_QUEUE)
        assert isinstance(metrics, JobQueueMetrics)
        assert metrics.queued_jobs == 12
        assert metrics.running_jobs == 4
        assert metrics.stuck_job_count == 2
        assert metrics.failed_jobs_15m == 1
        assert metrics.failed_jobs_24h == 2
        assert metrics.oldest_job_age_secs == 340.0
        by_type = {b.type: b for b in metrics.jobs_by_type}
        assert by_type["send_invoice"].running == 2
        assert by_type["send_invoice"].stuck == 1
        assert by_type["carrier_bulk_import"].stuck == 0
        assert engine.metric_state("stuck_jobs") is not None

    def test_stuck_threshold_for(self) -> None:
        patterns = ("bulk_import", "rerate", "sync")
        assert stuck_threshold_for("send_email", 600, 3600, patterns) == 600
        assert stuck_threshold_for("CDR_SYNC", 600, 3600, patterns) == 3600
        assert stuck_threshold_for("bulk_import_rates", 600, 3600, patterns) == 3600


class TestPortalProbe:
    async def test_portal_budgets_keyed_by_portal(self) -> None:
        collector, _, engine, _ = _collector()
        collector.portal_buffer.ingest("customer", {
            "routeTransitions": [{"from": "/", "to": "/a", "durationMs": 5000}],
        })
        await collector.collect_all()
        assert engine.metric_state("portal_route_p95", "customer") is not None
        assert engine.metric_state("portal_route_p95", "marketing") is None


class TestIntegrationProbe:
    def _checker(self, codes: list[int]) -> IntegrationChecker:
        it = iter(codes)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(next(it))

        return IntegrationChecker(
            [IntegrationCheckConfig(name="payments", url="https://payments.test")],
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

    async def test_health_timestamps_carried_over(self) -> None:
        collector, store, _, clock = _collector(integration_checker=self._checker([200, 503]))
        await collector.collect_all()
        clock.advance(60)
        await collector.collect_all()

        [record] = await store.select_integration_health()
        assert record.status == IntegrationStatus.DOWN
        assert record.last_success_at == T0
        assert record.last_failure_at == T0 + 60
        assert record.last_failure_reason == "HTTP 503"
        assert record.error_rate == 50.0

        history = await collector.snapshot_history(SnapshotType.INTEGRATION)
        assert len(history) == 2

    async def test_refresh_returns_records(self) -> None:
        collector, store, _, _ = _collector(integration_checker=self._checker([200]))
        records = await collector.refresh_integration_health()
        assert [r.integration_name for r in records] == ["payments"]
        assert records[0].status == IntegrationStatus.HEALTHY
        # Refresh updates health only; it does not write snapshots.
        assert await store.latest_snapshot(SnapshotType.INTEGRATION) is None

    async def test_refresh_without_checker(self) -> None:
        collector, _, _, _ = _collector()
        assert await collector.refresh_integration_health() == []

    async def test_cycle_without_checker_skips_integrations(self) -> None:
        collector, store, _, _ = _collector()
        await collector.collect_all()
        assert await store.latest_snapshot(SnapshotType.INTEGRATION) is None
        assert await store.select_integration_health() == []


# ── Reads / maintenance / lifecycle ─────────────────────────────


class TestMaintenance:
    async def test_snapshot_history_newest_first(self) -> None:
        collector, _, _, clock = _collector()
        for _ in range(3):
            await collector.collect_all()
            clock.advance(60)
        history = await collector.snapshot_history(SnapshotType.API, limit=2)
        assert [s.collected_at for s in history] == [T0 + 120, T0 + 60]
        latest = await collector.latest_snapshot(SnapshotType.API)
        assert latest is not None and latest.collected_at == T0 + 120

    async def test_cleanup_old_snapshots(self) -> None:
        collector, store, _, clock = _collector()
        await collector.collect_all()
        clock.advance(25 * 3600)
        await collector.collect_all()

        removed = await collector.cleanup_old_snapshots(older_than_hours=24)
        assert removed > 0
        history = await store.select_snapshots(SnapshotType.API, since=0.0)
        assert [s.collected_at for s in history] == [T0 + 25 * 3600]

    async def test_start_stop(self) -> None:
        collector, _, _, _ = _collector(
            config=CollectorConfig(initial_delay_secs=0.0, interval_secs=0.01),
        )
        await collector.start()
        assert collector.running is True
        await asyncio.sleep(0.05)
        await collector.stop()
        assert collector.running is False
        assert collector.last_collection_time == T0
