"""Tests for src/core/config.py — YAML loading, defaults, SecretStr."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from src.core.config import (
    AlertsConfig,
    BudgetConfig,
    CollectorConfig,
    DashboardConfig,
    EmailConfig,
    LoggingConfig,
    Settings,
    get_settings,
    load_settings,
    reset_settings,
)


@pytest.fixture(autouse=True)
def _clean_settings() -> None:
    """Reset the global settings cache before each test."""
    reset_settings()


class TestDefaults:
    """Settings should have sensible defaults when no YAML is provided."""

    def test_default_budget_config(self) -> None:
        cfg = BudgetConfig()
        assert cfg.breach_threshold == 2
        assert cfg.clear_threshold == 2

    def test_default_collector_config(self) -> None:
        cfg = CollectorConfig()
        assert cfg.interval_secs == 60.0
        assert cfg.stuck_job_threshold_secs == 600.0
        assert cfg.long_running_job_threshold_secs == 3600.0
        assert "bulk_import" in cfg.long_running_job_patterns

    def test_default_alerts_config(self) -> None:
        cfg = AlertsConfig()
        assert cfg.stale_after_secs == 300.0
        assert cfg.email_cooldown_secs == 1800.0
        assert cfg.admin_email == ""
        assert cfg.require_recovery_confirmation is False
        assert cfg.resolved_retention_hours == 168.0

    def test_default_logging_config(self) -> None:
        cfg = LoggingConfig()
        assert cfg.level == "INFO"
        assert cfg.format == "json"

    def test_default_settings(self) -> None:
        s = Settings()
        assert s.integrations == []
        assert s.email.enabled is False
        assert s.dashboard.port == 8080
        assert s.store.max_snapshots_per_type == 10_000


class TestYamlLoading:
    """Settings should load correctly from YAML files."""

    def test_load_from_yaml(self, tmp_path: Path) -> None:
        config_data = {
            "alerts": {
                "admin_email": "ops@example.com",
                "email_cooldown_secs": 600,
            },
            "email": {
                "enabled": True,
                "api_key": "test-key",
            },
            "integrations": [
                {"name": "payments", "url": "https://pay.test/health", "timeout_secs": 2},
            ],
            "logging": {
                "level": "DEBUG",
                "format": "console",
            },
        }
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(yaml.dump(config_data))

        settings = load_settings(config_file)

        assert settings.alerts.admin_email == "ops@example.com"
        assert settings.alerts.email_cooldown_secs == 600
        assert settings.email.enabled is True
        assert settings.email.api_key.get_secret_value() == "test-key"
        assert settings.integrations[0].name == "payments"
        assert settings.integrations[0].timeout_secs == 2
        assert settings.logging.level == "DEBUG"
        assert settings.logging.format == "console"

    def test_load_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        settings = load_settings(tmp_path / "nonexistent.yaml")
        assert settings.collector.interval_secs == 60.0
        assert settings.alerts.stale_after_secs == 300.0

    def test_load_empty_file_uses_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")
        settings = load_settings(config_file)
        assert settings.budget.breach_threshold == 2

    def test_partial_yaml_merges_with_defaults(self, tmp_path: Path) -> None:
        config_data = {"collector": {"interval_secs": 30}}
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(yaml.dump(config_data))

        settings = load_settings(config_file)
        assert settings.collector.interval_secs == 30
        # Other defaults still intact
        assert settings.collector.probe_timeout_secs == 10.0
        assert settings.alerts.email_cooldown_secs == 1800.0

    def test_example_config_loads(self) -> None:
        example = Path(__file__).resolve().parents[2] / "config" / "settings.example.yaml"
        settings = load_settings(example)
        assert isinstance(settings, Settings)

    def test_get_settings_caches(self, tmp_path: Path) -> None:
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(yaml.dump({"dashboard": {"port": 9000}}))
        loaded = load_settings(config_file)
        assert get_settings() is loaded


class TestSecretStr:
    """Sensitive fields should use SecretStr to prevent leaking."""

    def test_secret_str_repr_does_not_leak(self) -> None:
        cfg = EmailConfig(api_key="super-secret")  # type: ignore[arg-type]
        dash = DashboardConfig(password="hunter2")  # type: ignore[arg-type]
        assert "super-secret" not in repr(cfg)
        assert "hunter2" not in repr(dash)
        assert "**********" in repr(cfg)

    def test_secret_str_get_value(self) -> None:
        cfg = EmailConfig(api_key="my-secret")  # type: ignore[arg-type]
        assert cfg.api_key.get_secret_value() == "my-secret"
