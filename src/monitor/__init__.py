"""Status read surfaces, HTTP API and the monitoring stack factory."""

from src.monitor.factory import MonitoringStack, create_monitoring_stack
from src.monitor.overview import SystemStatusService
from src.monitor.web_dashboard import create_web_app, start_web_dashboard

__all__ = [
    "MonitoringStack",
    "SystemStatusService",
    "create_monitoring_stack",
    "create_web_app",
    "start_web_dashboard",
]
