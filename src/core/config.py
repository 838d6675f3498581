"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, SecretStr

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"


class BudgetConfig(BaseModel):
    """Hysteresis settings for the budget engine."""

    breach_threshold: int = 2
    clear_threshold: int = 2
    max_violation_history: int = 500


class CollectorConfig(BaseModel):
    """Metrics collection loop and probe configuration."""

    interval_secs: float = 60.0
    initial_delay_secs: float = 1.0
    probe_timeout_secs: float = 10.0
    request_window_secs: float = 900.0
    request_buffer_size: int = 5000
    slow_query_ms: float = 200.0
    min_cache_operations: int = 10
    stuck_job_threshold_secs: float = 600.0
    long_running_job_threshold_secs: float = 3600.0
    long_running_job_patterns: list[str] = [
        "bulk_import",
        "rerate",
        "re_rate",
        "sync",
    ]
    integration_error_window: int = 20
    storage_path: str = "."
    snapshot_retention_hours: float = 24.0
    cleanup_every_cycles: int = 60


class IntegrationCheckConfig(BaseModel):
    """A single third-party dependency probed over HTTP."""

    name: str
    url: str = ""
    method: str = "GET"
    timeout_secs: float = 5.0
    degraded_latency_ms: float = 2000.0
    headers: dict[str, str] = {}


class AlertsConfig(BaseModel):
    """Alert evaluation and notification policy."""

    evaluation_interval_secs: float = 60.0
    stale_after_secs: float = 300.0
    email_cooldown_secs: float = 1800.0
    admin_email: str = ""
    require_recovery_confirmation: bool = False
    subject_prefix: str = "[Status]"
    # Resolved alerts older than this are dropped; never below 24h.
    resolved_retention_hours: float = 168.0


class EmailConfig(BaseModel):
    """Transactional email API (Brevo-compatible) configuration."""

    enabled: bool = False
    api_url: str = "https://api.brevo.com/v3/smtp/email"
    api_key: SecretStr = SecretStr("")
    sender_email: str = "alerts@localhost"
    sender_name: str = "Status Monitor"


class DashboardConfig(BaseModel):
    """Status web API configuration."""

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080
    username: str = ""
    password: SecretStr = SecretStr("")


class StoreConfig(BaseModel):
    """In-memory store limits."""

    max_snapshots_per_type: int = 10_000


class Settings(BaseModel):
    """Root settings container."""

    logging: LoggingConfig = LoggingConfig()
    budget: BudgetConfig = BudgetConfig()
    collector: CollectorConfig = CollectorConfig()
    integrations: list[IntegrationCheckConfig] = []
    alerts: AlertsConfig = AlertsConfig()
    email: EmailConfig = EmailConfig()
    dashboard: DashboardConfig = DashboardConfig()
    store: StoreConfig = StoreConfig()


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
