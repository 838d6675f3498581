"""System status web API — JSON read surfaces and operator actions over HTTP.

Runs as an ``aiohttp`` web server alongside the collector and evaluator.
Exposes (all JSON):
- ``GET  /api/system/overview``      → global status, KPIs, top alerts
- ``GET  /api/system/performance``   → budget statuses and violations
- ``GET  /api/system/alerts``        → alert list (``?status=``) with stats
- ``GET  /api/system/alert-badge``   → open alert counts
- ``GET  /api/system/integrations``  → integration health records
- ``GET  /api/system/{api-errors,database,jobs,cache,portals}`` → latest detail
- ``GET  /api/system/audit``         → operator action log (``?limit=``)
- ``POST /api/system/alerts/{id}/acknowledge``
- ``POST /api/system/alerts/{id}/snooze``       (``{"minutes": 60}``)
- ``POST /api/system/alerts/acknowledge-all``
- ``POST /api/system/integrations/refresh``
- ``POST /api/portal-metrics``       → client-reported route timings / JS errors
"""

from __future__ import annotations

import base64
import hmac
import json
from typing import Any

import structlog
from aiohttp import web

from src.alerts.evaluator import AlertEvaluator
from src.alerts.exceptions import AlertNotFoundError, AlertTransitionError
from src.collector.collector import MetricsCollector
from src.core.types import AlertStatus
from src.monitor.overview import SystemStatusService

logger = structlog.get_logger(__name__)

_DEFAULT_ACTOR = "operator"


def _check_basic_auth(request: web.Request, username: str, password: str) -> bool:
    """Validate HTTP Basic Auth credentials."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Basic "):
        return False
    try:
        decoded = base64.b64decode(auth_header[6:]).decode("utf-8")
        req_user, req_pass = decoded.split(":", 1)
    except Exception:
        return False
    user_ok = hmac.compare_digest(req_user, username)
    pass_ok = hmac.compare_digest(req_pass, password)
    return user_ok and pass_ok


@web.middleware
async def _auth_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Require HTTP Basic Auth on all routes when credentials are configured."""
    username = request.app.get("auth_username")
    password = request.app.get("auth_password")
    if username and password:
        if not _check_basic_auth(request, username, password):
            return web.json_response(
                {"error": "unauthorized"},
                status=401,
                headers={"WWW-Authenticate": 'Basic realm="System Status"'},
            )
        request["actor"] = username
    return await handler(request)


@web.middleware
async def _error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Map domain errors onto HTTP status codes."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except AlertNotFoundError as exc:
        return web.json_response({"error": f"alert not found: {exc}"}, status=404)
    except AlertTransitionError as exc:
        return web.json_response({"error": str(exc)}, status=409)
    except ValueError as exc:
        return web.json_response({"error": str(exc)}, status=400)
    except Exception:
        logger.exception("status_api_error", path=request.path, method=request.method)
        return web.json_response({"error": "internal error"}, status=500)


def _actor(request: web.Request) -> str:
    return request.get("actor") or request.headers.get("X-User-Id") or _DEFAULT_ACTOR


async def _json_body(request: web.Request) -> dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON body: {exc.msg}") from exc
    if not isinstance(body, dict):
        raise ValueError("JSON body must be an object")
    return body


def _int_query(request: web.Request, name: str, default: int, maximum: int) -> int:
    raw = request.query.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive")
    return min(value, maximum)


# ── Read handlers ────────────────────────────────────────────────


async def _handle_overview(request: web.Request) -> web.Response:
    service: SystemStatusService = request.app["status_service"]
    return web.json_response(await service.overview())


async def _handle_performance(request: web.Request) -> web.Response:
    service: SystemStatusService = request.app["status_service"]
    return web.json_response(await service.performance())


async def _handle_alerts(request: web.Request) -> web.Response:
    service: SystemStatusService = request.app["status_service"]
    raw_status = request.query.get("status")
    status: AlertStatus | None = None
    if raw_status and raw_status != "all":
        try:
            status = AlertStatus(raw_status)
        except ValueError as exc:
            raise ValueError(f"unknown alert status: {raw_status!r}") from exc
    limit = _int_query(request, "limit", 100, 1000)
    return web.json_response(await service.alerts(status, limit=limit))


async def _handle_alert_badge(request: web.Request) -> web.Response:
    service: SystemStatusService = request.app["status_service"]
    return web.json_response(await service.alert_badge())


async def _handle_integrations(request: web.Request) -> web.Response:
    service: SystemStatusService = request.app["status_service"]
    return web.json_response(await service.integrations())


async def _handle_api_errors(request: web.Request) -> web.Response:
    service: SystemStatusService = request.app["status_service"]
    return web.json_response(await service.api_errors())


async def _handle_database(request: web.Request) -> web.Response:
    service: SystemStatusService = request.app["status_service"]
    return web.json_response(await service.database())


async def _handle_jobs(request: web.Request) -> web.Response:
    service: SystemStatusService = request.app["status_service"]
    return web.json_response(await service.jobs())


async def _handle_cache(request: web.Request) -> web.Response:
    service: SystemStatusService = request.app["status_service"]
    return web.json_response(await service.cache())


async def _handle_portals(request: web.Request) -> web.Response:
    service: SystemStatusService = request.app["status_service"]
    return web.json_response(await service.portals())


async def _handle_audit(request: web.Request) -> web.Response:
    service: SystemStatusService = request.app["status_service"]
    limit = _int_query(request, "limit", 100, 1000)
    return web.json_response(await service.audit(limit))


# ── Action handlers ──────────────────────────────────────────────


async def _handle_acknowledge(request: web.Request) -> web.Response:
    evaluator: AlertEvaluator = request.app["evaluator"]
    alert = await evaluator.acknowledge_alert(request.match_info["alert_id"], _actor(request))
    return web.json_response({"success": True, "alert": alert.model_dump(mode="json")})


async def _handle_snooze(request: web.Request) -> web.Response:
    evaluator: AlertEvaluator = request.app["evaluator"]
    body = await _json_body(request)
    raw_minutes = body.get("minutes", 60)
    if isinstance(raw_minutes, bool) or not isinstance(raw_minutes, (int, float)):
        raise ValueError("minutes must be a number")
    alert = await evaluator.snooze_alert(
        request.match_info["alert_id"], float(raw_minutes), _actor(request),
    )
    return web.json_response({"success": True, "alert": alert.model_dump(mode="json")})


async def _handle_acknowledge_all(request: web.Request) -> web.Response:
    evaluator: AlertEvaluator = request.app["evaluator"]
    count = await evaluator.acknowledge_all(_actor(request))
    return web.json_response({"success": True, "acknowledged": count})


async def _handle_refresh_integrations(request: web.Request) -> web.Response:
    collector: MetricsCollector = request.app["collector"]
    records = await collector.refresh_integration_health()
    return web.json_response({
        "success": True,
        "integrations": [r.model_dump(mode="json") for r in records],
    })


async def _handle_portal_metrics(request: web.Request) -> web.Response:
    collector: MetricsCollector = request.app["collector"]
    body = await _json_body(request)
    portal_type = body.get("portalType")
    if not isinstance(portal_type, str):
        raise ValueError("portalType is required")
    accepted = collector.portal_buffer.ingest(portal_type, body)
    return web.json_response({"success": True, "accepted": accepted})


def create_web_app(
    status_service: SystemStatusService,
    evaluator: AlertEvaluator,
    collector: MetricsCollector,
    username: str | None = None,
    password: str | None = None,
) -> web.Application:
    """Create the aiohttp web application."""
    app = web.Application(middlewares=[_auth_middleware, _error_middleware])
    app["status_service"] = status_service
    app["evaluator"] = evaluator
    app["collector"] = collector
    app["auth_username"] = username
    app["auth_password"] = password

    app.router.add_get("/api/system/overview", _handle_overview)
    app.router.add_get("/api/system/performance", _handle_performance)
    app.router.add_get("/api/system/alerts", _handle_alerts)
    app.router.add_get("/api/system/alert-badge", _handle_alert_badge)
    app.router.add_get("/api/system/integrations", _handle_integrations)
    app.router.add_get("/api/system/api-errors", _handle_api_errors)
    app.router.add_get("/api/system/database", _handle_database)
    app.router.add_get("/api/system/jobs", _handle_jobs)
    app.router.add_get("/api/system/cache", _handle_cache)
    app.router.add_get("/api/system/portals", _handle_portals)
    app.router.add_get("/api/system/audit", _handle_audit)

    app.router.add_post("/api/system/alerts/acknowledge-all", _handle_acknowledge_all)
    app.router.add_post("/api/system/alerts/{alert_id}/acknowledge", _handle_acknowledge)
    app.router.add_post("/api/system/alerts/{alert_id}/snooze", _handle_snooze)
    app.router.add_post("/api/system/integrations/refresh", _handle_refresh_integrations)
    app.router.add_post("/api/portal-metrics", _handle_portal_metrics)
    return app


async def start_web_dashboard(
    status_service: SystemStatusService,
    evaluator: AlertEvaluator,
    collector: MetricsCollector,
    host: str = "0.0.0.0",
    port: int = 8080,
    username: str | None = None,
    password: str | None = None,
) -> web.AppRunner:
    """Start the status API server. Returns the runner for cleanup."""
    app = create_web_app(
        status_service, evaluator, collector, username=username, password=password,
    )
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("status_api_started", host=host, port=port, auth=bool(username and password))
    return runner
