"""Periodic subsystem probes and the in-process buffers they read."""

from src.collector.collector import MetricsCollector, stuck_threshold_for
from src.collector.exceptions import ProbeError, ProbeTimeoutError, ProbeUnavailableError
from src.collector.integrations import IntegrationChecker, IntegrationCheckResult
from src.collector.portal import PORTAL_TYPES, PortalMetricsBuffer
from src.collector.request_log import RequestTimingBuffer, percentile

__all__ = [
    "IntegrationCheckResult",
    "IntegrationChecker",
    "MetricsCollector",
    "PORTAL_TYPES",
    "PortalMetricsBuffer",
    "ProbeError",
    "ProbeTimeoutError",
    "ProbeUnavailableError",
    "RequestTimingBuffer",
    "percentile",
    "stuck_threshold_for",
]
