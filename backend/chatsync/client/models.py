"""Client-side view types for optimistic chat."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from chatsync.config import Settings
from chatsync.schemas.message import MessageRead

TEMP_ID_PREFIX = "temp-"


class PendingStatus(str, enum.Enum):
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


class ConnectionStatus(str, enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    ONLINE = "online"
    DEGRADED = "degraded"
    RECONNECTING = "reconnecting"
    OFFLINE = "offline"
    CLOSED = "closed"


def new_temp_id() -> str:
    """Return a temporary identity that can never equal a server id."""

    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


def is_temp_id(value: object) -> bool:
    return isinstance(value, str) and value.startswith(TEMP_ID_PREFIX)


@dataclass(slots=True)
class PendingMessage:
    """A message the user sent that the server has not confirmed yet."""

    conversation_id: str
    sender_id: str
    sender_name: str
    body: str
    kind: str = "text"
    sender_avatar: str | None = None
    status: PendingStatus = PendingStatus.SENDING
    id: str = field(default_factory=new_temp_id)
    origin_timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: str | None = None
    confirmed: MessageRead | None = None

    @property
    def timestamp(self) -> datetime:
        if self.confirmed is not None:
            return self.confirmed.timestamp
        return self.origin_timestamp


@dataclass(frozen=True, slots=True)
class ClientOptions:
    """Client behaviour resolved once at startup."""

    snapshot_limit: int = 100
    reconcile_window_seconds: float = 5.0
    reconnect_delay_seconds: float = 5.0
    max_reconnect_attempts: int | None = None
    max_message_length: int = 1000

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> ClientOptions:
        values = {
            "snapshot_limit": settings.chat_snapshot_limit,
            "reconcile_window_seconds": settings.chat_reconcile_window_seconds,
            "reconnect_delay_seconds": settings.chat_reconnect_delay_seconds,
            "max_message_length": settings.message_max_length,
        }
        values.update(overrides)
        return cls(**values)
