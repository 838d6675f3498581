"""Liveness checks for third-party integrations."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable

import httpx
import structlog
from pydantic import BaseModel

from src.core.config import IntegrationCheckConfig
from src.core.types import IntegrationStatus

logger = structlog.get_logger(__name__)


class IntegrationCheckResult(BaseModel):
    """Outcome of one liveness check."""

    name: str
    status: IntegrationStatus
    latency_ms: float = 0.0
    error_rate: float = 0.0
    success: bool = False
    error: str | None = None


# A custom check returns a status for dependencies with no HTTP endpoint
# (e.g. "is the SDK configured", "did the last sync succeed").
CheckFn = Callable[[], Awaitable[IntegrationStatus]]


class IntegrationChecker:
    """Runs HTTP or callable liveness checks and keeps a rolling error rate.

    Usage::

        checker = IntegrationChecker(settings.integrations)
        checker.register("email_api", my_async_check)
        results = await checker.check_all()
        await checker.close()
    """

    def __init__(
        self,
        configs: list[IntegrationCheckConfig] | None = None,
        error_window: int = 20,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._configs: dict[str, IntegrationCheckConfig] = {
            c.name: c for c in (configs or [])
        }
        self._custom: dict[str, CheckFn] = {}
        self._error_window = error_window
        self._history: dict[str, deque[bool]] = {}
        self._http = http_client
        self._owns_client = http_client is None

    @property
    def names(self) -> list[str]:
        return sorted(set(self._configs) | set(self._custom))

    def register(self, name: str, check_fn: CheckFn) -> None:
        """Add a callable check.  Replaces an HTTP check of the same name."""
        self._custom[name] = check_fn

    def error_rate(self, name: str) -> float:
        """Failure percentage over the rolling window (0.0 with no history)."""
        history = self._history.get(name)
        if not history:
            return 0.0
        failures = sum(1 for ok in history if not ok)
        return failures / len(history) * 100.0

    def _get_client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient()
            self._owns_client = True
        return self._http

    async def close(self) -> None:
        if self._owns_client and self._http is not None:
            await self._http.aclose()
            self._http = None

    # ── Checks ───────────────────────────────────────────────────

    async def check_all(self) -> list[IntegrationCheckResult]:
        """Check every integration concurrently; one failure never masks another."""
        names = self.names
        results = await asyncio.gather(
            *(self.check(name) for name in names),
            return_exceptions=True,
        )
        out: list[IntegrationCheckResult] = []
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.error("integration_check_crashed", integration=name, error=str(result))
                out.append(self._record(name, IntegrationStatus.DOWN, 0.0, str(result), failed=True))
            else:
                out.append(result)
        return out

    async def check(self, name: str) -> IntegrationCheckResult:
        if name in self._custom:
            return await self._check_callable(name, self._custom[name])
        config = self._configs.get(name)
        if config is None:
            raise KeyError(name)
        return await self._check_http(config)

    async def _check_callable(self, name: str, check_fn: CheckFn) -> IntegrationCheckResult:
        start = time.monotonic()
        try:
            status = await check_fn()
        except Exception as exc:
            latency = (time.monotonic() - start) * 1000.0
            logger.warning("integration_check_failed", integration=name, error=str(exc))
            return self._record(name, IntegrationStatus.DOWN, latency, str(exc), failed=True)
        latency = (time.monotonic() - start) * 1000.0
        error = None if status == IntegrationStatus.HEALTHY else f"reported {status.value}"
        return self._record(name, status, latency, error, failed=status == IntegrationStatus.DOWN)

    async def _check_http(self, config: IntegrationCheckConfig) -> IntegrationCheckResult:
        if not config.url:
            return IntegrationCheckResult(
                name=config.name,
                status=IntegrationStatus.NOT_CONFIGURED,
                error_rate=self.error_rate(config.name),
            )

        client = self._get_client()
        start = time.monotonic()
        try:
            response = await client.request(
                config.method,
                config.url,
                headers=config.headers,
                timeout=httpx.Timeout(config.timeout_secs),
            )
        except httpx.TimeoutException:
            latency = (time.monotonic() - start) * 1000.0
            return self._record(
                config.name, IntegrationStatus.DOWN, latency,
                f"timed out after {config.timeout_secs}s", failed=True,
            )
        except httpx.HTTPError as exc:
            latency = (time.monotonic() - start) * 1000.0
            return self._record(config.name, IntegrationStatus.DOWN, latency, str(exc), failed=True)

        latency = (time.monotonic() - start) * 1000.0
        code = response.status_code
        if code >= 500:
            return self._record(config.name, IntegrationStatus.DOWN, latency, f"HTTP {code}", failed=True)
        if code >= 400:
            return self._record(config.name, IntegrationStatus.DEGRADED, latency, f"HTTP {code}", failed=True)
        if latency >= config.degraded_latency_ms:
            return self._record(
                config.name, IntegrationStatus.DEGRADED, latency,
                f"slow response ({latency:.0f}ms)", failed=False,
            )
        return self._record(config.name, IntegrationStatus.HEALTHY, latency, None, failed=False)

    def _record(
        self,
        name: str,
        status: IntegrationStatus,
        latency_ms: float,
        error: str | None,
        failed: bool,
    ) -> IntegrationCheckResult:
        success = status == IntegrationStatus.HEALTHY
        history = self._history.setdefault(name, deque(maxlen=self._error_window))
        history.append(not failed)
        return IntegrationCheckResult(
            name=name,
            status=status,
            latency_ms=round(latency_ms, 2),
            error_rate=round(self.error_rate(name), 2),
            success=success,
            error=error,
        )
