"""Tests for failure notification adapters."""

import asyncio
import logging
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import aiohttp
import pytest

from src.zkfleet.exceptions import ZKError
from src.zkfleet.sync.adapters.notifiers import LoggingErrorNotifier, WebhookErrorNotifier
from src.zkfleet.sync.domain.entities import ErrorNotification

WEBHOOK_URL = "https://hooks.example.com/zk"


@pytest.fixture
def notification():
    return ErrorNotification(
        device_id=UUID(int=3),
        device_name="Dock",
        device_ip="10.0.0.3",
        error_message="[TRANSPORT_ERROR] unreachable",
        occurred_at=datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc),
        error_code="TRANSPORT_ERROR",
    )


def fake_session(status=200, text="ok", post_error=None):
    """A stand-in for aiohttp.ClientSession whose post() is an async context."""
    response = MagicMock()
    response.status = status
    response.text = AsyncMock(return_value=text)

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()
    if post_error is not None:
        session.post = MagicMock(side_effect=post_error)
    else:
        session.post = MagicMock(return_value=context)
    return session


class TestWebhookErrorNotifier:
    """Tests for WebhookErrorNotifier."""

    @pytest.mark.asyncio
    async def test_posts_json_payload(self, notification):
        notifier = WebhookErrorNotifier(WEBHOOK_URL)
        notifier._session = fake_session()

        await notifier.notify(notification)

        notifier._session.post.assert_called_once_with(WEBHOOK_URL, json=notification.to_dict())

    @pytest.mark.asyncio
    async def test_error_status_raises(self, notification):
        notifier = WebhookErrorNotifier(WEBHOOK_URL)
        notifier._session = fake_session(status=502, text="bad gateway")

        with pytest.raises(ZKError) as exc_info:
            await notifier.notify(notification)

        assert exc_info.value.code == "NOTIFICATION_FAILED"
        assert exc_info.value.details["status"] == 502

    @pytest.mark.asyncio
    async def test_client_error_raises(self, notification):
        notifier = WebhookErrorNotifier(WEBHOOK_URL)
        notifier._session = fake_session(post_error=aiohttp.ClientConnectionError("refused"))

        with pytest.raises(ZKError, match="Webhook request failed"):
            await notifier.notify(notification)

    @pytest.mark.asyncio
    async def test_timeout_raises(self, notification):
        notifier = WebhookErrorNotifier(WEBHOOK_URL, timeout_seconds=2)
        notifier._session = fake_session(post_error=asyncio.TimeoutError())

        with pytest.raises(ZKError, match="timed out after 2"):
            await notifier.notify(notification)

    @pytest.mark.asyncio
    async def test_close(self):
        notifier = WebhookErrorNotifier(WEBHOOK_URL)
        session = fake_session()
        notifier._session = session

        await notifier.close()

        session.close.assert_awaited_once()
        assert notifier._session is None

    @pytest.mark.asyncio
    async def test_context_manager_owns_session(self):
        async with WebhookErrorNotifier(WEBHOOK_URL) as notifier:
            assert isinstance(notifier._session, aiohttp.ClientSession)
            session = notifier._session
        assert session.closed
        assert notifier._session is None


class TestLoggingErrorNotifier:
    @pytest.mark.asyncio
    async def test_logs_error(self, notification, caplog):
        with caplog.at_level(logging.ERROR):
            await LoggingErrorNotifier().notify(notification)
        assert "Dock (10.0.0.3)" in caplog.text
