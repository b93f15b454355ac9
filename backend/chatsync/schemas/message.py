"""Chat message request/response schemas."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SenderIdentity(BaseModel):
    """Identity supplied by upstream authentication."""

    user_id: str = Field(min_length=1, max_length=255)
    display_name: str = Field(min_length=1, max_length=255)
    avatar_url: str | None = None


class MessageSendRequest(BaseModel):
    """Payload for sending one chat message."""

    text: str
    kind: str = Field(default="text", min_length=1, max_length=32)


class MessageRead(BaseModel):
    """Serialized confirmed message."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    conversation_id: str
    sender_id: str
    sender_name: str
    sender_avatar: str | None = None
    body: str
    kind: str = "text"
    status: str = "sent"
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        # SQLite hands back naive datetimes for timezone-aware columns.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class MessageSnapshot(BaseModel):
    """Ordered message window plus the cursor for the next request."""

    messages: list[MessageRead]
    latest_timestamp: datetime | None = None
    has_new_messages: bool = False
