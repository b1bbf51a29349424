"""
Outbound notification dispatch.

Dispatch is best effort: callers treat ``NotificationDispatchError`` as a
soft failure reported next to the primary result, never as a reason to
undo the state change that triggered the message.
"""

from typing import Any, Optional, Protocol

import httpx

from src.core.config import Settings, get_settings
from src.core.logging import get_logger
from src.services.notifications.templates import OutboundMessage

logger = get_logger(__name__)


class NotificationServiceError(Exception):
    """Base exception for notification errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class NotificationDispatchError(NotificationServiceError):
    """Raised when an outbound message could not be delivered."""

    pass


class NotificationDispatcher(Protocol):
    async def dispatch(self, message: OutboundMessage) -> None:
        ...


class LoggingDispatcher:
    """Records messages in the log instead of sending them."""

    async def dispatch(self, message: OutboundMessage) -> None:
        logger.info(
            "Notification dispatched to log",
            recipient=message.recipient,
            render_mode=message.render_mode,
            length=len(message.text),
        )


class WebhookDispatcher:
    """
    Posts messages as JSON to a delivery endpoint.

    The payload uses the chat platform field names: ``chat_id``, ``text``,
    ``parse_mode`` and ``disable_notification``.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = client

    @staticmethod
    def build_payload(message: OutboundMessage) -> dict[str, Any]:
        return {
            "chat_id": message.recipient,
            "text": message.text,
            "parse_mode": message.render_mode,
            "disable_notification": message.disable_notification,
        }

    async def dispatch(self, message: OutboundMessage) -> None:
        """
        Raises:
            NotificationDispatchError: On transport errors or non-2xx replies
        """
        payload = self.build_payload(message)
        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationDispatchError(
                f"Notification endpoint returned {e.response.status_code}",
                recipient=message.recipient,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise NotificationDispatchError(
                f"Notification delivery failed: {e}",
                recipient=message.recipient,
                error_type=type(e).__name__,
            ) from e

        logger.info(
            "Notification delivered",
            recipient=message.recipient,
            status_code=response.status_code,
        )


def get_notification_dispatcher(settings: Optional[Settings] = None) -> NotificationDispatcher:
    """Webhook dispatcher when an endpoint is configured, log-only otherwise."""
    settings = settings or get_settings()
    if settings.notification_webhook_url:
        return WebhookDispatcher(
            settings.notification_webhook_url,
            timeout=settings.notification_timeout_seconds,
        )
    return LoggingDispatcher()
