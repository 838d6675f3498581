"""Tests for alert email formatting."""

from __future__ import annotations

from src.alerts.formatters import alert_email_tags, format_alert_email, format_alert_subject
from src.core.types import Alert, Severity


def _alert(**kw: object) -> Alert:
    defaults: dict[str, object] = {
        "severity": Severity.CRITICAL,
        "source": "database",
        "title": "Database Pool Saturation Budget Breach",
        "description": "Database Pool Saturation is 95.00 (threshold: 90)",
        "metric_name": "Database Pool Saturation",
        "actual_value": 95.0,
        "threshold": 90.0,
        "first_seen_at": 1000.0,
        "last_seen_at": 1000.0,
    }
    defaults.update(kw)
    return Alert(**defaults)  # type: ignore[arg-type]


class TestSubject:
    def test_default_prefix(self) -> None:
        assert format_alert_subject(_alert()) == (
            "[Status CRITICAL] Database Pool Saturation Budget Breach"
        )

    def test_warning(self) -> None:
        subject = format_alert_subject(_alert(severity=Severity.WARNING, title="X"))
        assert subject == "[Status WARNING] X"

    def test_custom_prefix_without_brackets(self) -> None:
        assert format_alert_subject(_alert(title="X"), prefix="ALERT") == "ALERT CRITICAL X"


class TestEmailBody:
    def test_contains_values(self) -> None:
        html = format_alert_email(_alert())
        assert "[CRITICAL]" in html
        assert "95.00" in html
        assert "90" in html
        assert "#dc2626" in html

    def test_warning_color(self) -> None:
        assert "#f59e0b" in format_alert_email(_alert(severity=Severity.WARNING))

    def test_escapes_alert_text(self) -> None:
        html = format_alert_email(_alert(
            title="<script>alert('x')</script>",
            description="a & b",
            metric_name="<m>",
        ))
        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert "a &amp; b" in html
        assert "&lt;m&gt;" in html


def test_tags() -> None:
    assert alert_email_tags(_alert()) == ["alert", "critical"]
    assert alert_email_tags(_alert(severity=Severity.WARNING)) == ["alert", "warning"]
