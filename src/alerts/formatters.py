"""Pure functions that render alerts into email subjects and HTML bodies."""

from __future__ import annotations

from html import escape as html_escape

from src.core.types import Alert, Severity

_SEVERITY_COLORS: dict[Severity, str] = {
    Severity.WARNING: "#f59e0b",
    Severity.CRITICAL: "#dc2626",
}

_CELL = "padding: 8px; border: 1px solid #e5e7eb;"


def format_alert_subject(alert: Alert, prefix: str = "[Status]") -> str:
    """``[Status CRITICAL] API List p95 Budget Breach``"""
    label = alert.severity.name
    tag = f"{prefix[:-1]} {label}]" if prefix.endswith("]") else f"{prefix} {label}"
    return f"{tag} {alert.title}"


def format_alert_email(alert: Alert) -> str:
    """HTML body for a newly created alert.  All alert text is escaped."""
    color = _SEVERITY_COLORS.get(alert.severity, "#6b7280")
    rows = [
        ("Metric", html_escape(alert.metric_name)),
        ("Source", html_escape(alert.source)),
        ("Actual Value", f"{alert.actual_value:.2f}"),
        ("Threshold", f"{alert.threshold:g}"),
    ]
    table = "\n".join(
        f'<tr><td style="{_CELL} font-weight: bold;">{label}</td>'
        f'<td style="{_CELL}">{value}</td></tr>'
        for label, value in rows
    )
    return (
        "<html><body style=\"font-family: -apple-system, 'Segoe UI', Roboto, "
        "sans-serif; padding: 20px;\">"
        f'<h2 style="color: {color};">[{alert.severity.name}] {html_escape(alert.title)}</h2>'
        f"<p>{html_escape(alert.description)}</p>"
        f'<table style="border-collapse: collapse; margin: 20px 0;">\n{table}\n</table>'
        '<p style="color: #6b7280; font-size: 14px;">'
        "Review the system status page for details and to acknowledge this alert."
        "</p></body></html>"
    )


def alert_email_tags(alert: Alert) -> list[str]:
    return ["alert", alert.severity.label]
