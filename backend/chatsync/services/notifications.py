"""Best-effort push fan-out for confirmed chat messages."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol
from urllib import error as urllib_error
from urllib import request as urllib_request

from sqlalchemy.orm import Session

from chatsync.config import get_settings
from chatsync.db.session import SessionLocal
from chatsync.schemas.message import MessageRead
from chatsync.services.messages import list_participant_ids

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 100


class NotificationError(RuntimeError):
    """Raised when a push dispatch fails."""


class NotificationDispatcher(Protocol):
    """Protocol for push-notification providers."""

    def dispatch(self, recipient_ids: list[str], title: str, body: str, data: dict[str, str]) -> None:
        """Deliver one notification to each recipient."""


@dataclass(slots=True)
class WebhookNotificationDispatcher:
    """POST notifications to an HTTP relay in front of the push provider."""

    url: str
    timeout_seconds: int = 10

    def dispatch(self, recipient_ids: list[str], title: str, body: str, data: dict[str, str]) -> None:
        payload = {
            "recipients": recipient_ids,
            "notification": {"title": title, "body": body},
            "data": data,
        }
        req = urllib_request.Request(
            url=self.url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={"Content-Type": "application/json"},
        )
        try:
            with urllib_request.urlopen(req, timeout=self.timeout_seconds) as resp:
                resp.read()
        except urllib_error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise NotificationError(f"Notification relay HTTP {exc.code}: {detail}") from exc
        except urllib_error.URLError as exc:
            raise NotificationError(f"Notification relay request failed: {exc.reason}") from exc


class LoggingNotificationDispatcher:
    """Dispatcher used when no relay is configured."""

    def dispatch(self, recipient_ids: list[str], title: str, body: str, data: dict[str, str]) -> None:
        logger.info(
            "chat.notification_skipped reason=no_relay recipients=%d title=%s",
            len(recipient_ids),
            title,
        )


def get_default_dispatcher() -> NotificationDispatcher:
    """Return the configured dispatcher."""

    settings = get_settings()
    if not settings.notification_webhook_url:
        return LoggingNotificationDispatcher()
    return WebhookNotificationDispatcher(
        url=settings.notification_webhook_url,
        timeout_seconds=settings.notification_timeout_seconds,
    )


def build_notification(message: MessageRead) -> tuple[str, str, dict[str, str]]:
    """Return title, preview body and data payload for a message."""

    body = message.body
    if len(body) > PREVIEW_LENGTH:
        body = body[:PREVIEW_LENGTH] + "..."
    data = {
        "type": "chat_message",
        "conversation_id": message.conversation_id,
        "message_id": str(message.id),
        "sender_id": message.sender_id,
    }
    return f"New message from {message.sender_name}", body, data


def notify_message_confirmed(
    message: MessageRead,
    *,
    session_factory: Callable[[], Session] | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> int:
    """Alert other participants about a confirmed message.

    Failures are logged and swallowed; returns the number of recipients
    notified (0 on failure).
    """

    try:
        with (session_factory or SessionLocal)() as db:
            recipients = list_participant_ids(db, message.conversation_id, exclude=message.sender_id)
        if not recipients:
            return 0
        title, body, data = build_notification(message)
        (dispatcher or get_default_dispatcher()).dispatch(recipients, title, body, data)
    except Exception:
        logger.exception(
            "chat.notification_failed conversation_id=%s message_id=%s",
            message.conversation_id,
            message.id,
        )
        return 0

    logger.info(
        "chat.notification_sent conversation_id=%s message_id=%s recipients=%d",
        message.conversation_id,
        message.id,
        len(recipients),
    )
    return len(recipients)
