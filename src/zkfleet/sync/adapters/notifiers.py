"""Failure notification adapters.

- WebhookErrorNotifier: POSTs the notification as JSON (Slack/Teams relays,
  e-mail gateways, ...)
- LoggingErrorNotifier: writes the notification to the log; used when no
  webhook is configured
"""

import asyncio
import logging
from typing import Optional

import aiohttp

from ...exceptions import ZKError
from ..domain.entities import ErrorNotification
from ..domain.ports import IErrorNotifier

logger = logging.getLogger(__name__)


class LoggingErrorNotifier(IErrorNotifier):
    """IErrorNotifier that only logs."""

    async def notify(self, notification: ErrorNotification) -> None:
        logger.error(
            f"Device {notification.device_name} ({notification.device_ip}) failed to sync: "
            f"{notification.error_message}"
        )


class WebhookErrorNotifier(IErrorNotifier):
    """IErrorNotifier that POSTs JSON to a webhook.

    Use as an async context manager, or call ``close()`` on shutdown. A
    session is created lazily if ``notify`` is called outside a context.

    Example:
        async with WebhookErrorNotifier(url) as notifier:
            await notifier.notify(notification)
    """

    def __init__(self, url: str, timeout_seconds: float = 10.0):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "WebhookErrorNotifier":
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            )
        return self._session

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def notify(self, notification: ErrorNotification) -> None:
        """POST the notification.

        Raises:
            ZKError: If the webhook is unreachable or answers with an error
        """
        session = self._ensure_session()
        try:
            async with session.post(self.url, json=notification.to_dict()) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise ZKError(
                        f"Webhook answered {response.status}",
                        code="NOTIFICATION_FAILED",
                        details={"status": response.status, "body": body[:200]},
                        recoverable=True,
                    )
        except asyncio.TimeoutError as e:
            raise ZKError(
                f"Webhook timed out after {self.timeout_seconds}s",
                code="NOTIFICATION_FAILED",
                cause=e,
                recoverable=True,
            ) from e
        except aiohttp.ClientError as e:
            raise ZKError(
                f"Webhook request failed: {e}",
                code="NOTIFICATION_FAILED",
                cause=e,
                recoverable=True,
            ) from e

        logger.debug(f"Sent failure notification for {notification.device_name}")
