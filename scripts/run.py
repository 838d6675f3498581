#!/usr/bin/env python3
"""Status monitor entrypoint: runs the collector, evaluator and status API.

Usage::

    # Run with default config
    python scripts/run.py

    # Custom config file
    python scripts/run.py --config config/settings.yaml

    # Override log level, skip the HTTP API
    python scripts/run.py --log-level DEBUG --no-api
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog

from src.core.config import load_settings
from src.core.logging import setup_logging
from src.monitor.factory import create_monitoring_stack

logger = structlog.get_logger(__name__)


async def run(args: argparse.Namespace) -> int:
    """Start all components and run until interrupted."""
    settings = load_settings(args.config)
    setup_logging(level=args.log_level)

    if settings.email.enabled and not settings.email.api_key.get_secret_value():
        logger.error("email_enabled_without_api_key")
        print(
            "email.enabled is true but email.api_key is empty in the config.",
            file=sys.stderr,
        )
        return 1

    stack = create_monitoring_stack(settings)

    logger.info(
        "monitor_starting",
        collector_interval_secs=settings.collector.interval_secs,
        evaluation_interval_secs=settings.alerts.evaluation_interval_secs,
        integrations=len(settings.integrations),
        api=not args.no_api and settings.dashboard.enabled,
    )

    # ── Start everything ─────────────────────────────────────────
    await stack.start(serve_api=False if args.no_api else None)

    # ── Wait for shutdown signal ─────────────────────────────────
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    try:
        await stop_event.wait()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    # ── Graceful shutdown ────────────────────────────────────────
    logger.info("monitor_shutting_down")
    await stack.stop()

    summary = stack.engine.summary()
    stats = await stack.evaluator.alert_stats()
    logger.info(
        "monitor_stopped",
        metrics_tracked=summary["total_metrics_tracked"],
        active_violations=summary["active_violations"],
        critical_alerts=stats["critical_count"],
        warning_alerts=stats["warning_count"],
    )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run the performance-budget monitor and alert evaluator.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level override: DEBUG, INFO, WARNING, ERROR",
    )
    parser.add_argument(
        "--no-api",
        action="store_true",
        help="Do not start the status HTTP API",
    )
    args = parser.parse_args()

    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
