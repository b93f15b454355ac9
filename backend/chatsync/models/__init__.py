"""ORM models package exports."""

from chatsync.models.chat_message import ChatMessage

__all__ = ["ChatMessage"]
