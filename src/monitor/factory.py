"""Composition root: wires the monitoring stack from settings."""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from aiohttp import web

from src.alerts.evaluator import AlertEvaluator
from src.alerts.notifier import BrevoEmailNotifier, Notifier
from src.budget.engine import BudgetEngine
from src.collector.collector import MetricsCollector
from src.collector.integrations import IntegrationChecker
from src.collector.providers import (
    CacheClient,
    JobQueueStatusProvider,
    ObjectStorageClient,
    PoolStatsProvider,
)
from src.core.clock import Clock, SystemClock
from src.core.config import Settings
from src.monitor.overview import SystemStatusService
from src.monitor.web_dashboard import start_web_dashboard
from src.storage.base import Store
from src.storage.memory import InMemoryStore

logger = structlog.get_logger(__name__)


@dataclass
class MonitoringStack:
    """Everything ``create_monitoring_stack`` built, plus lifecycle helpers."""

    settings: Settings
    clock: Clock
    store: Store
    engine: BudgetEngine
    collector: MetricsCollector
    evaluator: AlertEvaluator
    status_service: SystemStatusService
    integration_checker: IntegrationChecker
    notifier: Notifier | None = None
    web_runner: web.AppRunner | None = None

    async def start(self, serve_api: bool | None = None) -> None:
        """Start both loops and, if enabled, the status API."""
        await self.collector.start()
        await self.evaluator.start()

        dashboard = self.settings.dashboard
        if serve_api if serve_api is not None else dashboard.enabled:
            self.web_runner = await start_web_dashboard(
                self.status_service,
                self.evaluator,
                self.collector,
                host=dashboard.host,
                port=dashboard.port,
                username=dashboard.username or None,
                password=dashboard.password.get_secret_value() or None,
            )

    async def stop(self) -> None:
        """Stop in reverse order; each step runs even if an earlier one fails."""
        if self.web_runner is not None:
            try:
                await self.web_runner.cleanup()
            except Exception:
                logger.exception("shutdown_error", component="status_api")
            self.web_runner = None

        for name, stop in (
            ("evaluator", self.evaluator.stop),
            ("collector", self.collector.stop),
            ("integration_checker", self.integration_checker.close),
        ):
            try:
                await stop()
            except Exception:
                logger.exception("shutdown_error", component=name)

        if self.notifier is not None:
            try:
                await self.notifier.close()
            except Exception:
                logger.exception("shutdown_error", component="notifier")


def create_monitoring_stack(
    settings: Settings,
    clock: Clock | None = None,
    store: Store | None = None,
    notifier: Notifier | None = None,
    pool_provider: PoolStatsProvider | None = None,
    cache_client: CacheClient | None = None,
    object_storage: ObjectStorageClient | None = None,
    job_queue: JobQueueStatusProvider | None = None,
    integration_checker: IntegrationChecker | None = None,
) -> MonitoringStack:
    """Build store, engine, collector, evaluator and read surfaces.

    Host subsystems the collector should probe are passed in; omitted
    ones simply produce no snapshots.  An email notifier is created from
    ``settings.email`` when enabled and none is supplied.
    """
    clock = clock or SystemClock()
    store = store or InMemoryStore(settings.store)
    engine = BudgetEngine(settings.budget, clock=clock)

    if integration_checker is None:
        integration_checker = IntegrationChecker(
            settings.integrations,
            error_window=settings.collector.integration_error_window,
        )

    if notifier is None and settings.email.enabled:
        notifier = BrevoEmailNotifier(settings.email)

    collector = MetricsCollector(
        store,
        engine,
        config=settings.collector,
        clock=clock,
        pool_provider=pool_provider,
        cache_client=cache_client,
        object_storage=object_storage,
        job_queue=job_queue,
        integration_checker=integration_checker,
    )

    evaluator = AlertEvaluator(
        store,
        engine,
        config=settings.alerts,
        clock=clock,
        notifier=notifier,
        last_collection_fn=lambda: collector.last_collection_time,
    )

    status_service = SystemStatusService(store, collector, evaluator, engine, clock=clock)

    logger.info(
        "monitoring_stack_created",
        integrations=len(integration_checker.names),
        email=notifier is not None,
        admin_email=bool(settings.alerts.admin_email),
        probes={
            "database": pool_provider is not None,
            "cache": cache_client is not None,
            "object_storage": object_storage is not None,
            "job_queue": job_queue is not None,
        },
    )

    return MonitoringStack(
        settings=settings,
        clock=clock,
        store=store,
        engine=engine,
        collector=collector,
        evaluator=evaluator,
        status_service=status_service,
        integration_checker=integration_checker,
        notifier=notifier,
    )
