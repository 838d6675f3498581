"""Budget engine — hysteresis-based threshold evaluation."""

from src.budget.engine import BudgetEngine
from src.budget.thresholds import (
    BUDGET_THRESHOLDS,
    CACHE_HIT_RATE,
    DB_POOL_SATURATION,
    DB_POOL_WAITING,
    OBJECT_STORAGE_ERROR_RATE,
    PORTAL_JS_ERRORS,
    PORTAL_ROUTE_P95,
    STUCK_JOBS,
)

__all__ = [
    "BUDGET_THRESHOLDS",
    "BudgetEngine",
    "CACHE_HIT_RATE",
    "DB_POOL_SATURATION",
    "DB_POOL_WAITING",
    "OBJECT_STORAGE_ERROR_RATE",
    "PORTAL_JS_ERRORS",
    "PORTAL_ROUTE_P95",
    "STUCK_JOBS",
]
