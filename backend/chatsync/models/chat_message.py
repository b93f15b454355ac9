"""Chat message ORM model."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from chatsync.models.base import Base, IdMixin
from chatsync.schemas.common import CONVERSATION_ID_MAX_LENGTH


class ChatMessage(Base, IdMixin):
    """Confirmed chat message, append-only per conversation."""

    __tablename__ = "chat_messages"
    __table_args__ = (Index("ix_chat_messages_conversation_timestamp", "conversation_id", "timestamp"),)

    conversation_id: Mapped[str] = mapped_column(String(CONVERSATION_ID_MAX_LENGTH), index=True, nullable=False)
    sender_id: Mapped[str] = mapped_column(String(255), nullable=False)
    sender_name: Mapped[str] = mapped_column(String(255), nullable=False)
    sender_avatar: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[str] = mapped_column(String(32), default="text", nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="sent", nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
