"""Core module — config, types, logging, clock."""

from src.core.clock import Clock, ManualClock, SystemClock
from src.core.config import Settings, get_settings, load_settings, reset_settings
from src.core.logging import setup_logging
from src.core.types import (
    Alert,
    AlertStatus,
    AuditRecord,
    EvaluationResult,
    IntegrationHealthRecord,
    IntegrationStatus,
    MetricKey,
    MetricState,
    Severity,
    SnapshotType,
    Thresholds,
    ViolationRecord,
)

__all__ = [
    "Alert",
    "AlertStatus",
    "AuditRecord",
    "Clock",
    "EvaluationResult",
    "IntegrationHealthRecord",
    "IntegrationStatus",
    "ManualClock",
    "MetricKey",
    "MetricState",
    "Settings",
    "Severity",
    "SnapshotType",
    "SystemClock",
    "Thresholds",
    "ViolationRecord",
    "get_settings",
    "load_settings",
    "reset_settings",
    "setup_logging",
]
