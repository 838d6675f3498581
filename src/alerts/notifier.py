"""Email notification — the Notifier interface and a Brevo HTTP adapter."""

from __future__ import annotations

import abc

import aiohttp
import structlog
from pydantic import BaseModel

from src.alerts.exceptions import NotificationError
from src.core.config import EmailConfig

logger = structlog.get_logger(__name__)


class EmailResult(BaseModel):
    success: bool
    error: str | None = None
    message_id: str | None = None


class Notifier(abc.ABC):
    """Base class for alert email delivery."""

    @abc.abstractmethod
    async def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        tags: list[str] | None = None,
    ) -> EmailResult:
        """Send one email.

        Delivery failures (HTTP errors, transport errors) are reported in
        the returned ``EmailResult``.  Raises ``NotificationError`` only when
        the notifier itself is not configured to send.
        """

    @abc.abstractmethod
    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""


class BrevoEmailNotifier(Notifier):
    """Delivers alert emails via Brevo's transactional email API."""

    def __init__(self, config: EmailConfig) -> None:
        self._api_url = config.api_url
        self._api_key = config.api_key.get_secret_value()
        self._sender = {"email": config.sender_email, "name": config.sender_name}
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=15),
            )
        return self._session

    async def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        tags: list[str] | None = None,
    ) -> EmailResult:
        if not self._api_key:
            raise NotificationError("email API key is not configured")

        payload: dict[str, object] = {
            "sender": self._sender,
            "to": [{"email": to}],
            "subject": subject,
            "htmlContent": html_body,
        }
        if tags:
            payload["tags"] = tags
        headers = {"api-key": self._api_key, "accept": "application/json"}

        try:
            session = self._get_session()
            async with session.post(self._api_url, json=payload, headers=headers) as resp:
                if resp.status in (200, 201, 202):
                    data = await resp.json(content_type=None)
                    message_id = data.get("messageId") if isinstance(data, dict) else None
                    return EmailResult(success=True, message_id=message_id)
                body = await resp.text()
                logger.warning(
                    "email_send_failed",
                    status=resp.status,
                    body=body[:200],
                )
                return EmailResult(success=False, error=f"HTTP {resp.status}: {body[:200]}")
        except Exception as exc:
            logger.exception("email_send_error")
            return EmailResult(success=False, error=str(exc))

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
