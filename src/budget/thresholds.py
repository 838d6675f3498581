"""Predefined thresholds for signals the collector evaluates in real time."""

from __future__ import annotations

from src.core.types import Thresholds

# Percent of pool connections in use.
DB_POOL_SATURATION = Thresholds(warn=70.0, critical=85.0)

# Clients waiting for a pool connection.
DB_POOL_WAITING = Thresholds(warn=1, critical=1)

# Fraction of cache lookups served from cache; lower is bad.
CACHE_HIT_RATE = Thresholds(warn=0.60, critical=0.30, higher_is_bad=False)

# Fraction of object-storage operations that failed.
OBJECT_STORAGE_ERROR_RATE = Thresholds(warn=0.01, critical=0.05)

STUCK_JOBS = Thresholds(warn=1, critical=3)

# Milliseconds, per portal type.
PORTAL_ROUTE_P95 = Thresholds(warn=1500.0, critical=3000.0)

# Client-side JS errors per minute.
PORTAL_JS_ERRORS = Thresholds(warn=1, critical=5)

BUDGET_THRESHOLDS: dict[str, Thresholds] = {
    "db_pool_saturation": DB_POOL_SATURATION,
    "db_pool_waiting": DB_POOL_WAITING,
    "cache_hit_rate": CACHE_HIT_RATE,
    "object_storage_error_rate": OBJECT_STORAGE_ERROR_RATE,
    "stuck_jobs": STUCK_JOBS,
    "portal_route_p95": PORTAL_ROUTE_P95,
    "portal_js_errors": PORTAL_JS_ERRORS,
}
