"""BudgetEngine — threshold evaluation with consecutive-sample hysteresis."""

from __future__ import annotations

import math
import threading
from collections import deque
from typing import Any

import structlog

from src.core.clock import Clock, SystemClock
from src.core.config import BudgetConfig
from src.core.types import (
    EvaluationResult,
    MetricKey,
    MetricState,
    Severity,
    Thresholds,
    ViolationRecord,
)

logger = structlog.get_logger(__name__)

_FIFTEEN_MINUTES = 15 * 60.0
_ONE_HOUR = 60 * 60.0


class BudgetEngine:
    """Tracks per-metric breach state with debounce in both directions.

    A metric only enters the violating state after ``breach_threshold``
    consecutive breaching samples, and only leaves it after
    ``clear_threshold`` consecutive in-range samples.  Escalation from
    WARNING to CRITICAL while already violating is immediate.

    Usage::

        engine = BudgetEngine(BudgetConfig(), clock=SystemClock())
        result = engine.evaluate("db_pool_saturation", 91.0, DB_POOL_SATURATION)
        if result.new_violation:
            ...

    Safe to call from several loops: one lock guards the state map and
    the violation history, and no I/O happens while it is held.
    """

    def __init__(
        self,
        config: BudgetConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._config = config or BudgetConfig()
        self._clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._state: dict[MetricKey, MetricState] = {}
        self._violations: deque[ViolationRecord] = deque(
            maxlen=self._config.max_violation_history,
        )

    # ── Evaluation ───────────────────────────────────────────────

    def evaluate(
        self,
        metric_name: str,
        actual: float,
        thresholds: Thresholds,
        sub_key: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> EvaluationResult:
        """Feed one sample for *metric_name* and return the current verdict."""
        key = MetricKey(metric_name, sub_key)
        now = self._clock.now()

        if not math.isfinite(actual):
            logger.warning("budget_sample_rejected", metric=str(key), actual=actual)
            with self._lock:
                state = self._state.get(key)
                if state is None:
                    return EvaluationResult(
                        violated=False, new_violation=False, severity=Severity.NONE,
                    )
                return EvaluationResult(
                    violated=state.is_violating,
                    new_violation=False,
                    severity=state.current_severity,
                )

        severity = thresholds.classify(actual)
        new_violation = False

        with self._lock:
            state = self._state.get(key)
            if state is None:
                state = MetricState(last_value=actual, last_checked=now)
                self._state[key] = state

            state.last_value = actual
            state.last_checked = now

            if severity > Severity.NONE:
                state.breach_count += 1
                state.clear_count = 0

                if (
                    not state.is_violating
                    and state.breach_count >= self._config.breach_threshold
                ):
                    state.is_violating = True
                    state.current_severity = severity
                    new_violation = True
                    threshold = thresholds.threshold_for(severity)
                    self._violations.append(ViolationRecord(
                        metric_name=metric_name,
                        actual=actual,
                        threshold=threshold,
                        severity=severity,
                        sub_key=sub_key,
                        timestamp=now,
                        details=details or {},
                    ))
                    logger.warning(
                        "budget_violation",
                        metric=str(key),
                        actual=actual,
                        threshold=threshold,
                        severity=severity.label,
                        consecutive_breaches=state.breach_count,
                    )
                elif state.is_violating:
                    if severity > state.current_severity:
                        previous = state.current_severity
                        state.current_severity = severity
                        logger.warning(
                            "budget_escalated",
                            metric=str(key),
                            actual=actual,
                            previous=previous.label,
                            severity=severity.label,
                        )
                else:
                    logger.debug(
                        "budget_breach_accumulating",
                        metric=str(key),
                        actual=actual,
                        breach_count=state.breach_count,
                        required=self._config.breach_threshold,
                    )
            else:
                state.clear_count += 1
                state.breach_count = 0

                if state.is_violating:
                    if state.clear_count >= self._config.clear_threshold:
                        state.is_violating = False
                        state.current_severity = Severity.NONE
                        logger.info(
                            "budget_cleared",
                            metric=str(key),
                            actual=actual,
                            consecutive_clears=state.clear_count,
                        )
                    else:
                        logger.debug(
                            "budget_clearing",
                            metric=str(key),
                            actual=actual,
                            clear_count=state.clear_count,
                            required=self._config.clear_threshold,
                        )

            return EvaluationResult(
                violated=state.is_violating,
                new_violation=new_violation,
                severity=state.current_severity,
            )

    # ── Queries ──────────────────────────────────────────────────

    def current_violations(self) -> list[tuple[MetricKey, MetricState]]:
        """Return (key, state copy) for every metric still violating."""
        with self._lock:
            return [
                (key, state.model_copy())
                for key, state in self._state.items()
                if state.is_violating
            ]

    def violation_history(self, window_secs: float = _FIFTEEN_MINUTES) -> list[ViolationRecord]:
        """Violations declared within the trailing *window_secs*."""
        cutoff = self._clock.now() - window_secs
        with self._lock:
            return [v for v in self._violations if v.timestamp > cutoff]

    def all_violations(self) -> list[ViolationRecord]:
        with self._lock:
            return list(self._violations)

    def violation_count(self, window_secs: float = _FIFTEEN_MINUTES) -> int:
        return len(self.violation_history(window_secs))

    def metric_state(self, metric_name: str, sub_key: str | None = None) -> MetricState | None:
        """Copy of the state for one key, or None if never evaluated."""
        with self._lock:
            state = self._state.get(MetricKey(metric_name, sub_key))
            return state.model_copy() if state is not None else None

    def summary(self) -> dict[str, int]:
        now = self._clock.now()
        with self._lock:
            active = sum(1 for s in self._state.values() if s.is_violating)
            tracked = len(self._state)
            last_15m = sum(
                1 for v in self._violations if v.timestamp > now - _FIFTEEN_MINUTES
            )
            last_1h = sum(1 for v in self._violations if v.timestamp > now - _ONE_HOUR)
        return {
            "active_violations": active,
            "total_metrics_tracked": tracked,
            "recent_violations_15m": last_15m,
            "recent_violations_1h": last_1h,
        }

    def reset(self) -> None:
        """Drop all state and history (test isolation)."""
        with self._lock:
            self._state.clear()
            self._violations.clear()
