"""AlertEvaluator — turns sustained budget breaches into deduplicated alerts."""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Callable, Sequence
from typing import Any

import structlog
from pydantic import BaseModel

from src.alerts.catalog import PERFORMANCE_BUDGETS, BudgetDefinition
from src.alerts.exceptions import AlertNotFoundError, AlertTransitionError
from src.alerts.formatters import alert_email_tags, format_alert_email, format_alert_subject
from src.alerts.notifier import Notifier
from src.budget.engine import BudgetEngine
from src.core.clock import Clock, SystemClock
from src.core.config import AlertsConfig
from src.core.types import (
    Alert,
    AlertStatus,
    IntegrationStatus,
    Severity,
    SnapshotType,
)
from src.storage.base import Store
from src.storage.exceptions import StoreError

# Dedicated structured logger for operator actions.
audit_logger = structlog.get_logger("audit_log")

logger = structlog.get_logger(__name__)

# Returns the time of the collector's last completed cycle, or None.
LastCollectionFn = Callable[[], float | None]

_ONE_DAY = 24 * 60 * 60.0

_BUDGET_COLORS: dict[Severity, str] = {
    Severity.NONE: "green",
    Severity.WARNING: "yellow",
    Severity.CRITICAL: "red",
}


class BudgetStatus(BaseModel):
    """Latest window verdict for one catalog budget."""

    name: str
    source: str
    snapshot_type: SnapshotType
    warn_threshold: float
    critical_threshold: float
    window_minutes: int
    value: float | None = None
    samples: int = 0
    status: str = "unknown"
    evaluated_at: float | None = None


class AlertEvaluator:
    """Periodic evaluation of the budget catalog and integration health.

    Each tick wakes expired snoozes, evaluates every budget over its
    window, raises alerts for unhealthy integrations and finally resolves
    alerts whose breach has not been observed for ``stale_after_secs``.

    At most one non-resolved alert exists per metric: a repeated breach
    refreshes the open row (and may escalate it) instead of inserting.
    A new row triggers at most one email per metric per cooldown period.

    Usage::

        evaluator = AlertEvaluator(store, engine, config=settings.alerts,
                                   notifier=BrevoEmailNotifier(settings.email))
        await evaluator.start()
        # ...
        await evaluator.acknowledge_alert(alert_id, user_id="ops@example.com")
        await evaluator.stop()
    """

    def __init__(
        self,
        store: Store,
        budget_engine: BudgetEngine,
        config: AlertsConfig | None = None,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
        budgets: Sequence[BudgetDefinition] = PERFORMANCE_BUDGETS,
        last_collection_fn: LastCollectionFn | None = None,
    ) -> None:
        self._store = store
        self._engine = budget_engine
        self._config = config or AlertsConfig()
        self._clock = clock or SystemClock()
        self._notifier = notifier
        self._budgets = tuple(budgets)
        self._last_collection_fn = last_collection_fn

        self._evaluating = False
        self._last_evaluation_time: float | None = None
        self._task: asyncio.Task[None] | None = None
        self._running = False

        # Per metric: last email attempt, last in-range observation.
        self._last_email_at: dict[str, float] = {}
        self._last_in_range_at: dict[str, float] = {}
        self._budget_status: dict[str, BudgetStatus] = {}

    # ── Properties ───────────────────────────────────────────────

    @property
    def evaluating(self) -> bool:
        return self._evaluating

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_evaluation_time(self) -> float | None:
        return self._last_evaluation_time

    @property
    def admin_email(self) -> str:
        return self._config.admin_email

    def set_admin_email(self, email: str) -> None:
        self._config = self._config.model_copy(update={"admin_email": email})

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "alert_evaluator_started",
            interval_secs=self._config.evaluation_interval_secs,
            budgets=len(self._budgets),
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
        logger.info("alert_evaluator_stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.evaluate_all()
            except asyncio.CancelledError:
                return
            except Exception:
                logger.exception("alert_evaluator_loop_error")
            try:
                await asyncio.sleep(self._config.evaluation_interval_secs)
            except asyncio.CancelledError:
                return

    # ── Evaluation tick ──────────────────────────────────────────

    async def evaluate_all(self) -> bool:
        """Run one evaluation tick.  Returns False if skipped as overlapping."""
        if self._evaluating:
            logger.warning("evaluation_skipped_in_progress")
            return False

        self._evaluating = True
        started = time.monotonic()
        try:
            now = self._clock.now()

            try:
                await self.wake_snoozed(now)
            except StoreError as exc:
                logger.error("snooze_wake_failed", error=str(exc))

            for budget in self._budgets:
                try:
                    await self.evaluate_budget(budget, now)
                except Exception:
                    logger.exception("budget_evaluation_failed", budget=budget.name)

            try:
                await self.evaluate_integration_health(now)
            except Exception:
                logger.exception("integration_evaluation_failed")

            if self._collector_is_fresh(now):
                try:
                    await self.auto_resolve_alerts(now)
                except StoreError as exc:
                    logger.error("auto_resolve_failed", error=str(exc))

            try:
                await self.prune_resolved_alerts(now)
            except StoreError as exc:
                logger.error("resolved_alert_prune_failed", error=str(exc))

            self._last_evaluation_time = now
            logger.info(
                "evaluation_complete",
                budgets=len(self._budgets),
                elapsed_ms=round((time.monotonic() - started) * 1000.0, 1),
            )
            return True
        finally:
            self._evaluating = False

    def _collector_is_fresh(self, now: float) -> bool:
        if self._last_collection_fn is None:
            return True
        last = self._last_collection_fn()
        if last is None or now - last > self._config.stale_after_secs:
            logger.warning(
                "auto_resolve_skipped_collector_stale",
                last_collection=last,
                stale_after_secs=self._config.stale_after_secs,
            )
            return False
        return True

    async def evaluate_budget(self, budget: BudgetDefinition, now: float) -> BudgetStatus | None:
        """Average the budget's window and raise or refresh its alert.

        Returns None (and changes nothing) when the window holds no
        usable samples.
        """
        snapshots = await self._store.select_snapshots(
            budget.snapshot_type,
            since=now - budget.window_secs,
            limit=budget.window_minutes,
        )
        values: list[float] = []
        for snapshot in snapshots:
            value = budget.metric(snapshot.metrics)
            if value is None or not math.isfinite(value):
                continue
            values.append(value)
        if not values:
            logger.debug("budget_no_data", budget=budget.name, snapshots=len(snapshots))
            return None

        average = sum(values) / len(values)
        thresholds = budget.thresholds
        severity = thresholds.classify(average)
        self._engine.evaluate(
            budget.name,
            average,
            thresholds,
            details={"samples": len(values), "window_minutes": budget.window_minutes},
        )

        status = BudgetStatus(
            name=budget.name,
            source=budget.source,
            snapshot_type=budget.snapshot_type,
            warn_threshold=budget.warn_threshold,
            critical_threshold=budget.critical_threshold,
            window_minutes=budget.window_minutes,
            value=round(average, 4),
            samples=len(values),
            status=_BUDGET_COLORS[severity],
            evaluated_at=now,
        )
        self._budget_status[budget.name] = status

        if severity == Severity.NONE:
            self._last_in_range_at[budget.name] = now
            return status

        threshold = thresholds.threshold_for(severity)
        await self.create_or_update_alert(
            metric_name=budget.name,
            severity=severity,
            title=f"{budget.name} Budget Breach",
            description=f"{budget.name} is {average:.2f} (threshold: {threshold:g})",
            actual=average,
            threshold=threshold,
            now=now,
            source=budget.source,
        )
        return status

    async def evaluate_integration_health(self, now: float) -> None:
        """Raise alerts for integrations recently checked as down or degraded."""
        records = await self._store.select_integration_health()
        for record in records:
            if now - record.checked_at > self._config.stale_after_secs:
                continue
            metric_name = f"{record.integration_name}_status"
            if record.status == IntegrationStatus.DOWN:
                await self.create_or_update_alert(
                    metric_name=metric_name,
                    severity=Severity.CRITICAL,
                    title=f"{record.integration_name} Integration Down",
                    description=record.last_failure_reason or "Integration is not responding",
                    actual=0.0,
                    threshold=1.0,
                    now=now,
                    source="integration",
                )
            elif record.status == IntegrationStatus.DEGRADED:
                await self.create_or_update_alert(
                    metric_name=metric_name,
                    severity=Severity.WARNING,
                    title=f"{record.integration_name} Integration Degraded",
                    description=(
                        f"Error rate: {record.error_rate:g}%, "
                        f"Latency: {record.latency_p95:g}ms"
                    ),
                    actual=0.5,
                    threshold=1.0,
                    now=now,
                    source="integration",
                )
            elif record.status == IntegrationStatus.HEALTHY:
                self._last_in_range_at[metric_name] = now

    # ── Alert lifecycle ──────────────────────────────────────────

    async def create_or_update_alert(
        self,
        metric_name: str,
        severity: Severity,
        title: str,
        description: str,
        actual: float,
        threshold: float,
        now: float,
        source: str,
    ) -> Alert:
        """Refresh the open alert for *metric_name*, or open a new one."""
        existing = await self._store.select_active_alert_by_metric(metric_name)
        if existing is not None:
            update: dict[str, Any] = {
                "last_seen_at": now,
                "actual_value": actual,
                "breach_duration": now - existing.first_seen_at,
                "updated_at": now,
            }
            if severity > existing.severity:
                update.update(
                    severity=severity,
                    threshold=threshold,
                    title=title,
                    description=description,
                )
                logger.warning(
                    "alert_escalated",
                    alert_id=existing.id,
                    metric=metric_name,
                    previous=existing.severity.label,
                    severity=severity.label,
                    actual=actual,
                )
            return await self._store.upsert_alert(existing.model_copy(update=update))

        alert = await self._store.upsert_alert(Alert(
            severity=severity,
            source=source,
            title=title,
            description=description,
            metric_name=metric_name,
            actual_value=actual,
            threshold=threshold,
            first_seen_at=now,
            last_seen_at=now,
            updated_at=now,
        ))
        logger.warning(
            "alert_created",
            alert_id=alert.id,
            metric=metric_name,
            severity=severity.label,
            actual=actual,
            threshold=threshold,
        )
        await self._notify(alert, now)
        return alert

    async def _notify(self, alert: Alert, now: float) -> None:
        to = self._config.admin_email
        if not to or self._notifier is None:
            return

        last = self._last_email_at.get(alert.metric_name)
        if last is not None and now - last < self._config.email_cooldown_secs:
            logger.info(
                "alert_email_suppressed",
                metric=alert.metric_name,
                cooldown_remaining_secs=round(self._config.email_cooldown_secs - (now - last)),
            )
            return

        # Recorded before sending; a failed attempt also starts the cooldown.
        self._last_email_at[alert.metric_name] = now
        try:
            result = await self._notifier.send_email(
                to=to,
                subject=format_alert_subject(alert, self._config.subject_prefix),
                html_body=format_alert_email(alert),
                tags=alert_email_tags(alert),
            )
        except Exception:
            logger.exception("alert_email_error", alert_id=alert.id, metric=alert.metric_name)
            return

        if result.success:
            logger.info("alert_email_sent", alert_id=alert.id, metric=alert.metric_name)
        else:
            logger.warning(
                "alert_email_failed",
                alert_id=alert.id,
                metric=alert.metric_name,
                error=result.error,
            )

    async def _open_alerts(self) -> list[Alert]:
        return await self._store.select_open_alerts()

    async def auto_resolve_alerts(self, now: float) -> int:
        """Resolve open alerts not seen for ``stale_after_secs``.  Returns the count."""
        cutoff = now - self._config.stale_after_secs
        resolved = 0
        for alert in await self._open_alerts():
            if alert.last_seen_at > cutoff:
                continue
            if self._config.require_recovery_confirmation:
                recovered_at = self._last_in_range_at.get(alert.metric_name)
                if recovered_at is None or recovered_at < alert.last_seen_at:
                    continue
            await self._store.update_alert_status(
                alert.id, AlertStatus.RESOLVED, resolved_at=now, updated_at=now,
            )
            resolved += 1
            logger.info(
                "alert_auto_resolved",
                alert_id=alert.id,
                metric=alert.metric_name,
                last_seen_at=alert.last_seen_at,
                breach_duration=alert.breach_duration,
            )
        return resolved

    async def wake_snoozed(self, now: float) -> int:
        """Return snoozed alerts whose snooze has elapsed to ``active``."""
        woken = 0
        for alert in await self._store.select_alerts(AlertStatus.SNOOZED, limit=None):
            if alert.snooze_until is not None and alert.snooze_until > now:
                continue
            await self._store.update_alert_status(
                alert.id, AlertStatus.ACTIVE, snooze_until=None, updated_at=now,
            )
            woken += 1
            logger.info("alert_snooze_expired", alert_id=alert.id, metric=alert.metric_name)
        return woken

    async def prune_resolved_alerts(self, now: float) -> int:
        """Drop resolved alerts older than the retention window.  Returns the count."""
        retention = max(self._config.resolved_retention_hours * 3600.0, _ONE_DAY)
        return await self._store.delete_resolved_alerts_before(now - retention)

    # ── Operator actions ─────────────────────────────────────────

    async def _get_open_alert(self, alert_id: str) -> Alert:
        alert = await self._store.get_alert(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        if alert.status == AlertStatus.RESOLVED:
            raise AlertTransitionError(f"alert {alert_id} is already resolved")
        return alert

    async def acknowledge_alert(self, alert_id: str, user_id: str) -> Alert:
        alert = await self._get_open_alert(alert_id)
        if alert.status == AlertStatus.ACKNOWLEDGED:
            return alert

        now = self._clock.now()
        updated = await self._store.update_alert_status(
            alert_id,
            AlertStatus.ACKNOWLEDGED,
            acknowledged_by=user_id,
            acknowledged_at=now,
            snooze_until=None,
            updated_at=now,
        )
        if updated is None:
            raise AlertNotFoundError(alert_id)
        await self._audit(
            "alert_acknowledged", user_id, now, alert_id,
            metric=alert.metric_name, previous_status=alert.status.value,
        )
        return updated

    async def snooze_alert(self, alert_id: str, minutes: float, user_id: str = "system") -> Alert:
        if not math.isfinite(minutes) or minutes <= 0:
            raise ValueError(f"snooze minutes must be positive, got {minutes!r}")
        alert = await self._get_open_alert(alert_id)

        now = self._clock.now()
        snooze_until = now + minutes * 60.0
        updated = await self._store.update_alert_status(
            alert_id,
            AlertStatus.SNOOZED,
            snooze_until=snooze_until,
            updated_at=now,
        )
        if updated is None:
            raise AlertNotFoundError(alert_id)
        await self._audit(
            "alert_snoozed", user_id, now, alert_id,
            metric=alert.metric_name, minutes=minutes, snooze_until=snooze_until,
        )
        return updated

    async def acknowledge_all(self, user_id: str) -> int:
        """Acknowledge every active or snoozed alert.  Returns how many changed."""
        count = 0
        for alert in await self._open_alerts():
            if alert.status == AlertStatus.ACKNOWLEDGED:
                continue
            try:
                await self.acknowledge_alert(alert.id, user_id)
            except (AlertNotFoundError, AlertTransitionError):
                # Resolved between the scan and the update.
                continue
            count += 1
        return count

    async def _audit(
        self,
        action: str,
        actor: str,
        now: float,
        alert_id: str | None = None,
        **details: Any,
    ) -> None:
        audit_logger.info(action, actor=actor, alert_id=alert_id, occurred_at=now, **details)
        try:
            await self._store.insert_audit_record(
                action=action,
                actor=actor,
                occurred_at=now,
                alert_id=alert_id,
                details=details,
            )
        except StoreError as exc:
            logger.error("audit_write_failed", action=action, alert_id=alert_id, error=str(exc))

    # ── Reads ────────────────────────────────────────────────────

    async def active_alerts(self) -> list[Alert]:
        return await self._store.select_alerts(AlertStatus.ACTIVE, limit=None)

    async def alerts(self, status: AlertStatus | None = None, limit: int = 100) -> list[Alert]:
        return await self._store.select_alerts(status, limit=limit)

    async def alert_stats(self) -> dict[str, int]:
        now = self._clock.now()
        rows = await self._open_alerts()
        active = [a for a in rows if a.status == AlertStatus.ACTIVE]
        return {
            "critical_count": sum(1 for a in active if a.severity == Severity.CRITICAL),
            "warning_count": sum(1 for a in active if a.severity == Severity.WARNING),
            "acknowledged_count": sum(1 for a in rows if a.status == AlertStatus.ACKNOWLEDGED),
            "snoozed_count": sum(1 for a in rows if a.status == AlertStatus.SNOOZED),
            "resolved_count_24h": await self._store.count_resolved_since(now - _ONE_DAY),
        }

    def budget_statuses(self) -> list[BudgetStatus]:
        """Latest verdict per catalog budget, in catalog order."""
        out: list[BudgetStatus] = []
        for budget in self._budgets:
            status = self._budget_status.get(budget.name)
            if status is None:
                status = BudgetStatus(
                    name=budget.name,
                    source=budget.source,
                    snapshot_type=budget.snapshot_type,
                    warn_threshold=budget.warn_threshold,
                    critical_threshold=budget.critical_threshold,
                    window_minutes=budget.window_minutes,
                )
            out.append(status)
        return out
