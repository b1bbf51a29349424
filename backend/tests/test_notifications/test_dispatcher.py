"""
Tests for outbound notification dispatch.

The webhook dispatcher is exercised against ``httpx.MockTransport`` so no
network is involved.
"""

import json

import httpx
import pytest

from src.core.config import Settings
from src.services.notifications.dispatcher import (
    LoggingDispatcher,
    NotificationDispatchError,
    WebhookDispatcher,
    get_notification_dispatcher,
)
from src.services.notifications.templates import OutboundMessage

WEBHOOK_URL = "https://notify.example.test/send"


@pytest.fixture
def message() -> OutboundMessage:
    return OutboundMessage(recipient="424242", text="*Order Received*")


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ============================================================================
# Webhook dispatcher
# ============================================================================


class TestWebhookDispatcher:
    """Posting messages to the configured endpoint."""

    async def test_posts_chat_payload(self, message):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"ok": True})

        async with mock_client(handler) as client:
            await WebhookDispatcher(WEBHOOK_URL, client=client).dispatch(message)

        assert len(requests) == 1
        assert str(requests[0].url) == WEBHOOK_URL
        assert json.loads(requests[0].content) == {
            "chat_id": "424242",
            "text": "*Order Received*",
            "parse_mode": "Markdown",
            "disable_notification": False,
        }

    async def test_error_status_raises(self, message):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="bad gateway")

        async with mock_client(handler) as client:
            with pytest.raises(NotificationDispatchError) as exc_info:
                await WebhookDispatcher(WEBHOOK_URL, client=client).dispatch(message)

        assert exc_info.value.context["status_code"] == 502
        assert exc_info.value.context["recipient"] == "424242"
        assert "502" in exc_info.value.message

    async def test_transport_error_raises(self, message):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with mock_client(handler) as client:
            with pytest.raises(NotificationDispatchError) as exc_info:
                await WebhookDispatcher(WEBHOOK_URL, client=client).dispatch(message)

        assert exc_info.value.context["error_type"] == "ConnectError"


# ============================================================================
# Selection
# ============================================================================


class TestDispatcherSelection:
    def test_webhook_when_url_configured(self):
        dispatcher = get_notification_dispatcher(
            Settings(notification_webhook_url=WEBHOOK_URL, notification_timeout_seconds=3)
        )

        assert isinstance(dispatcher, WebhookDispatcher)
        assert dispatcher.url == WEBHOOK_URL
        assert dispatcher.timeout == 3

    def test_logging_when_unset(self):
        dispatcher = get_notification_dispatcher(Settings(notification_webhook_url=None))

        assert isinstance(dispatcher, LoggingDispatcher)

    async def test_logging_dispatcher_never_fails(self, message):
        await LoggingDispatcher().dispatch(message)
