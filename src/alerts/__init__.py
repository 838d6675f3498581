"""Alert lifecycle — budget catalog, evaluation, operator actions, email."""

from src.alerts.catalog import PERFORMANCE_BUDGETS, BudgetDefinition, get_budget
from src.alerts.evaluator import AlertEvaluator, BudgetStatus
from src.alerts.exceptions import (
    AlertError,
    AlertNotFoundError,
    AlertTransitionError,
    NotificationError,
)
from src.alerts.notifier import BrevoEmailNotifier, EmailResult, Notifier

__all__ = [
    "AlertError",
    "AlertEvaluator",
    "AlertNotFoundError",
    "AlertTransitionError",
    "BrevoEmailNotifier",
    "BudgetDefinition",
    "BudgetStatus",
    "EmailResult",
    "Notifier",
    "NotificationError",
    "PERFORMANCE_BUDGETS",
    "get_budget",
]
