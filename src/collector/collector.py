"""MetricsCollector — periodic fan-out over subsystem probes."""

from __future__ import annotations

import asyncio
import math
import shutil
import threading
import time
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable

import structlog

from src.budget.engine import BudgetEngine
from src.budget.thresholds import (
    CACHE_HIT_RATE,
    DB_POOL_SATURATION,
    DB_POOL_WAITING,
    OBJECT_STORAGE_ERROR_RATE,
    PORTAL_JS_ERRORS,
    PORTAL_ROUTE_P95,
    STUCK_JOBS,
)
from src.collector.exceptions import ProbeTimeoutError, ProbeUnavailableError
from src.collector.integrations import IntegrationChecker
from src.collector.portal import PORTAL_TYPES, PortalMetricsBuffer
from src.collector.providers import (
    CacheClient,
    JobQueueStatusProvider,
    ObjectStorageClient,
    PoolStatsProvider,
)
from src.collector.request_log import RequestTimingBuffer
from src.core.snapshots import (
    CacheMetrics,
    DatabaseMetrics,
    IntegrationMetrics,
    JobQueueMetrics,
    JobTypeBreakdown,
    MetricSnapshot,
    ObjectStorageMetrics,
    SnapshotPayload,
    StorageMetrics,
)
from src.core.clock import Clock, SystemClock
from src.core.config import CollectorConfig
from src.core.types import (
    IntegrationHealthRecord,
    IntegrationStatus,
    SnapshotType,
    Thresholds,
)
from src.storage.base import Store
from src.storage.exceptions import StoreError

logger = structlog.get_logger(__name__)

ProbeFn = Callable[[float], Awaitable[list[SnapshotPayload]]]

_FIFTEEN_MINUTES = 15 * 60.0
_ONE_DAY = 24 * 60 * 60.0
_MB = 1024 * 1024


def stuck_threshold_for(
    job_type: str,
    default_threshold_secs: float = 600.0,
    long_running_threshold_secs: float = 3600.0,
    long_running_patterns: Iterable[str] = (),
) -> float:
    """Age after which a running job of *job_type* counts as stuck."""
    lowered = job_type.lower()
    if any(p in lowered for p in long_running_patterns):
        return long_running_threshold_secs
    return default_threshold_secs


class MetricsCollector:
    """Runs every probe once per tick and persists one snapshot per probe.

    Probes run concurrently; each is wrapped so that an exception or a
    timeout only costs that probe its snapshot.  Selected results are fed
    into the budget engine as they are computed.

    Usage::

        collector = MetricsCollector(store, engine, config=settings.collector,
                                     pool_provider=db_pool)
        await collector.start()
        # ...
        await collector.stop()
    """

    def __init__(
        self,
        store: Store,
        budget_engine: BudgetEngine,
        config: CollectorConfig | None = None,
        clock: Clock | None = None,
        request_buffer: RequestTimingBuffer | None = None,
        query_buffer: RequestTimingBuffer | None = None,
        portal_buffer: PortalMetricsBuffer | None = None,
        pool_provider: PoolStatsProvider | None = None,
        cache_client: CacheClient | None = None,
        object_storage: ObjectStorageClient | None = None,
        job_queue: JobQueueStatusProvider | None = None,
        integration_checker: IntegrationChecker | None = None,
    ) -> None:
        self._store = store
        self._engine = budget_engine
        self._config = config or CollectorConfig()
        self._clock = clock or SystemClock()
        size = self._config.request_buffer_size
        self._request_buffer = request_buffer or RequestTimingBuffer(size, self._clock)
        self._query_buffer = query_buffer or RequestTimingBuffer(size, self._clock)
        self._portal_buffer = portal_buffer or PortalMetricsBuffer(size, self._clock)
        self._pool_provider = pool_provider
        self._cache_client = cache_client
        self._object_storage = object_storage
        self._job_queue = job_queue
        self._integrations = integration_checker

        self._collecting = False
        self._refreshing = False
        self._last_collection_time: float | None = None
        self._cycles = 0
        self._task: asyncio.Task[None] | None = None
        self._running = False

        # Written from request handlers, drained once per tick.
        self._storage_lock = threading.Lock()
        self._storage_ops = 0
        self._upload_errors = 0
        self._download_errors = 0

    # ── Properties ───────────────────────────────────────────────

    @property
    def collecting(self) -> bool:
        return self._collecting

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_collection_time(self) -> float | None:
        return self._last_collection_time

    @property
    def request_buffer(self) -> RequestTimingBuffer:
        return self._request_buffer

    @property
    def query_buffer(self) -> RequestTimingBuffer:
        return self._query_buffer

    @property
    def portal_buffer(self) -> PortalMetricsBuffer:
        return self._portal_buffer

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "collector_started",
            interval_secs=self._config.interval_secs,
            initial_delay_secs=self._config.initial_delay_secs,
        )

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("collector_stopped", cycles=self._cycles)

    async def _loop(self) -> None:
        try:
            await asyncio.sleep(self._config.initial_delay_secs)
        except asyncio.CancelledError:
            return
        while self._running:
            try:
                await self.collect_all()
                cleanup_every = self._config.cleanup_every_cycles
                if cleanup_every > 0 and self._cycles % cleanup_every == 0:
                    await self.cleanup_old_snapshots()
            except asyncio.CancelledError:
                return
            except Exception:
                logger.exception("collector_loop_error")
            try:
                await asyncio.sleep(self._config.interval_secs)
            except asyncio.CancelledError:
                return

    # ── Collection ───────────────────────────────────────────────

    async def collect_all(self) -> dict[SnapshotType, int]:
        """Run one collection cycle.

        Returns snapshots written per probe.  An overlapping call is
        skipped and returns an empty dict.
        """
        if self._collecting:
            logger.warning("collection_skipped_in_progress")
            return {}

        self._collecting = True
        started = time.monotonic()
        try:
            now = self._clock.now()
            probes: list[tuple[SnapshotType, ProbeFn]] = [
                (SnapshotType.API, self._probe_api),
                (SnapshotType.DATABASE, self._probe_database),
                (SnapshotType.CACHE, self._probe_cache),
                (SnapshotType.OBJECT_STORAGE, self._probe_object_storage),
                (SnapshotType.JOB_QUEUE, self._probe_job_queue),
                (SnapshotType.INTEGRATION, self._probe_integrations),
                (SnapshotType.PORTAL, self._probe_portals),
                (SnapshotType.STORAGE, self._probe_storage),
            ]
            written = await asyncio.gather(
                *(self._run_probe(kind, fn, now) for kind, fn in probes)
            )
            results = {kind: count for (kind, _), count in zip(probes, written)}
            self._last_collection_time = now
            self._cycles += 1
            logger.info(
                "collection_complete",
                cycle=self._cycles,
                snapshots=sum(results.values()),
                failed=[k.value for k, n in results.items() if n == 0],
                elapsed_ms=round((time.monotonic() - started) * 1000.0, 1),
            )
            return results
        finally:
            self._collecting = False

    async def _run_probe(self, kind: SnapshotType, probe: ProbeFn, now: float) -> int:
        try:
            payloads = await asyncio.wait_for(
                probe(now), timeout=self._config.probe_timeout_secs,
            )
        except ProbeUnavailableError as exc:
            logger.debug("probe_unavailable", probe=kind.value, reason=str(exc))
            return 0
        except (TimeoutError, ProbeTimeoutError):
            logger.warning(
                "probe_timeout", probe=kind.value, timeout_secs=self._config.probe_timeout_secs,
            )
            return 0
        except Exception:
            logger.exception("probe_failed", probe=kind.value)
            return 0

        written = 0
        for payload in payloads:
            try:
                await self._store.insert_snapshot(kind, payload, now)
                written += 1
            except StoreError as exc:
                logger.error("snapshot_write_failed", probe=kind.value, error=str(exc))
        return written

    def _evaluate(
        self,
        metric_name: str,
        value: float,
        thresholds: Thresholds,
        sub_key: str | None = None,
    ) -> None:
        if not math.isfinite(value):
            return
        self._engine.evaluate(metric_name, value, thresholds, sub_key=sub_key)

    # ── Probes ───────────────────────────────────────────────────

    async def _probe_api(self, now: float) -> list[SnapshotPayload]:
        return [self._request_buffer.api_metrics(self._config.request_window_secs)]

    async def _probe_database(self, now: float) -> list[SnapshotPayload]:
        window = self._config.request_window_secs
        if self._pool_provider is None and len(self._query_buffer) == 0:
            raise ProbeUnavailableError("no pool provider and no query timings")

        p95, p99 = self._query_buffer.latency_percentiles(window)
        slow_ms = self._config.slow_query_ms
        used = total = waiting = 0
        saturation = 0.0
        if self._pool_provider is not None:
            pool = await self._pool_provider.pool_stats()
            used, total, waiting = pool.used, pool.total, pool.waiting
            if total > 0:
                saturation = used / total * 100.0
                self._evaluate("db_pool_saturation", saturation, DB_POOL_SATURATION)
                self._evaluate("db_pool_waiting", float(waiting), DB_POOL_WAITING)

        return [DatabaseMetrics(
            p95_latency_ms=p95,
            p99_latency_ms=p99,
            pool_used=used,
            pool_total=total,
            pool_waiting=waiting,
            pool_saturation=round(saturation, 2),
            slow_query_count=self._query_buffer.count_above(slow_ms, window),
            slow_queries=self._query_buffer.slow_samples(slow_ms, window),
        )]

    async def _probe_cache(self, now: float) -> list[SnapshotPayload]:
        if self._cache_client is None:
            raise ProbeUnavailableError("no cache client")

        started = time.monotonic()
        await self._cache_client.ping()
        latency = (time.monotonic() - started) * 1000.0

        stats = await self._cache_client.info_stats()
        hits = int(stats.get("keyspace_hits", 0))
        misses = int(stats.get("keyspace_misses", 0))
        operations = hits + misses
        hit_rate = hits / operations if operations else 0.0
        if operations >= self._config.min_cache_operations:
            self._evaluate("cache_hit_rate", hit_rate, CACHE_HIT_RATE)

        return [CacheMetrics(
            p95_latency_ms=round(latency, 2),
            cache_hit_rate=round(hit_rate, 4),
            hits=hits,
            misses=misses,
            connected=True,
        )]

    async def _probe_object_storage(self, now: float) -> list[SnapshotPayload]:
        if self._object_storage is None:
            raise ProbeUnavailableError("no object storage client")

        started = time.monotonic()
        await self._object_storage.ping()
        latency = (time.monotonic() - started) * 1000.0

        with self._storage_lock:
            operations = self._storage_ops
            uploads = self._upload_errors
            downloads = self._download_errors
            self._storage_ops = self._upload_errors = self._download_errors = 0

        error_rate = (uploads + downloads) / operations if operations else 0.0
        if operations >= 1:
            self._evaluate("object_storage_error_rate", error_rate, OBJECT_STORAGE_ERROR_RATE)

        return [ObjectStorageMetrics(
            p95_latency_ms=round(latency, 2),
            upload_errors=uploads,
            download_errors=downloads,
            operations=operations,
            error_rate=round(error_rate, 4),
        )]

    def record_object_storage_result(self, operation: str, success: bool) -> None:
        """Count one upload/download outcome toward the next tick's error rate."""
        with self._storage_lock:
            self._storage_ops += 1
            if success:
                return
            if operation == "upload":
                self._upload_errors += 1
            else:
                self._download_errors += 1

    async def _probe_job_queue(self, now: float) -> list[SnapshotPayload]:
        if self._job_queue is None:
            raise ProbeUnavailableError("no job queue provider")

        stats, running, failed_times, pending_ages = await asyncio.gather(
            self._job_queue.get_stats(),
            self._job_queue.get_running_jobs_with_age(),
            self._job_queue.get_failed_job_times(limit=100),
            self._job_queue.get_pending_job_ages(limit=100),
        )

        cfg = self._config
        patterns = tuple(cfg.long_running_job_patterns)
        stuck_by_type: Counter[str] = Counter()
        running_by_type: Counter[str] = Counter()
        for job in running:
            running_by_type[job.type] += 1
            threshold = stuck_threshold_for(
                job.type,
                cfg.stuck_job_threshold_secs,
                cfg.long_running_job_threshold_secs,
                patterns,
            )
            if job.age_secs > threshold:
                stuck_by_type[job.type] += 1
        stuck = sum(stuck_by_type.values())
        self._evaluate("stuck_jobs", float(stuck), STUCK_JOBS)

        return [JobQueueMetrics(
            queued_jobs=stats.pending,
            running_jobs=stats.processing,
            failed_jobs_15m=sum(1 for ts in failed_times if ts >= now - _FIFTEEN_MINUTES),
            failed_jobs_24h=sum(1 for ts in failed_times if ts >= now - _ONE_DAY),
            oldest_job_age_secs=max(pending_ages, default=0.0),
            stuck_job_count=stuck,
            success_rate=stats.success_rate,
            jobs_by_type=[
                JobTypeBreakdown(type=t, running=n, stuck=stuck_by_type.get(t, 0))
                for t, n in sorted(running_by_type.items())
            ],
        )]

    async def _probe_integrations(self, now: float) -> list[SnapshotPayload]:
        if self._integrations is None:
            raise ProbeUnavailableError("no integration checker")
        records = await self._check_integrations(self._integrations, now)
        return [
            IntegrationMetrics(
                name=r.integration_name,
                status=r.status,
                latency_p95=r.latency_p95,
                error_rate=r.error_rate,
                last_success_at=r.last_success_at,
                last_failure_at=r.last_failure_at,
                last_failure_reason=r.last_failure_reason,
            )
            for r in records
        ]

    async def _check_integrations(
        self, checker: IntegrationChecker, now: float,
    ) -> list[IntegrationHealthRecord]:
        results = await checker.check_all()
        records: list[IntegrationHealthRecord] = []
        for result in results:
            fields: dict[str, object] = {
                "status": result.status,
                "latency_p95": result.latency_ms,
                "error_rate": result.error_rate,
                "checked_at": now,
            }
            # Timestamps not set here are carried over from the stored record.
            if result.success:
                fields["last_success_at"] = now
            elif result.status != IntegrationStatus.NOT_CONFIGURED:
                fields["last_failure_at"] = now
                fields["last_failure_reason"] = result.error
            try:
                record = await self._store.upsert_integration_health(result.name, **fields)
            except StoreError as exc:
                logger.error(
                    "integration_health_write_failed", integration=result.name, error=str(exc),
                )
                continue
            if result.status in (IntegrationStatus.DOWN, IntegrationStatus.DEGRADED):
                logger.warning(
                    "integration_unhealthy",
                    integration=result.name,
                    status=result.status.value,
                    error=result.error,
                )
            records.append(record)
        return records

    async def _probe_portals(self, now: float) -> list[SnapshotPayload]:
        window = self._config.request_window_secs
        payloads: list[SnapshotPayload] = []
        for portal_type in PORTAL_TYPES:
            metrics = self._portal_buffer.portal_metrics(portal_type, window)
            if metrics.route_transition_count >= 1:
                self._evaluate(
                    "portal_route_p95", metrics.route_transition_p95,
                    PORTAL_ROUTE_P95, sub_key=portal_type,
                )
            if metrics.route_transition_count or metrics.js_error_count:
                self._evaluate(
                    "portal_js_errors", metrics.js_errors_per_min,
                    PORTAL_JS_ERRORS, sub_key=portal_type,
                )
            payloads.append(metrics)
        return payloads

    async def _probe_storage(self, now: float) -> list[SnapshotPayload]:
        usage = await asyncio.to_thread(shutil.disk_usage, self._config.storage_path)
        percent = usage.used / usage.total * 100.0 if usage.total else 0.0
        return [StorageMetrics(
            used_mb=round(usage.used / _MB, 1),
            total_mb=round(usage.total / _MB, 1),
            usage_percent=round(percent, 2),
        )]

    # ── Manual refresh ───────────────────────────────────────────

    async def refresh_integration_health(self) -> list[IntegrationHealthRecord]:
        """Re-check integrations now, outside the main cycle.

        Has its own guard, so it may run while a cycle is in progress.
        Returns the fresh records, or an empty list when skipped.
        """
        checker = self._integrations
        if checker is None:
            return []
        if self._refreshing:
            logger.warning("integration_refresh_skipped_in_progress")
            return []
        self._refreshing = True
        try:
            records = await self._check_integrations(checker, self._clock.now())
            logger.info("integration_refresh_complete", integrations=len(records))
            return records
        except Exception:
            logger.exception("integration_refresh_failed")
            return []
        finally:
            self._refreshing = False

    # ── Reads / maintenance ──────────────────────────────────────

    async def latest_snapshot(self, snapshot_type: SnapshotType) -> MetricSnapshot | None:
        return await self._store.latest_snapshot(snapshot_type)

    async def snapshot_history(
        self, snapshot_type: SnapshotType, limit: int = 60,
    ) -> list[MetricSnapshot]:
        """Newest-first snapshots of one type."""
        return await self._store.select_snapshots(snapshot_type, since=0.0, limit=limit)

    async def cleanup_old_snapshots(self, older_than_hours: float | None = None) -> int:
        hours = (
            self._config.snapshot_retention_hours
            if older_than_hours is None
            else older_than_hours
        )
        cutoff = self._clock.now() - hours * 3600.0
        try:
            removed = await self._store.delete_snapshots_before(cutoff)
        except StoreError as exc:
            logger.error("snapshot_cleanup_failed", error=str(exc))
            return 0
        logger.info("snapshots_cleaned_up", removed=removed, older_than_hours=hours)
        return removed
