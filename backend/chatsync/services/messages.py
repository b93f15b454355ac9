"""Append-only chat message store."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Protocol

from sqlalchemy import func, select, update
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from chatsync.errors import TransientStoreError
from chatsync.models.chat_message import ChatMessage
from chatsync.schemas.message import MessageRead, SenderIdentity
from chatsync.validation import DEFAULT_MAX_MESSAGE_LENGTH, clean_message_body

logger = logging.getLogger(__name__)

_TIMESTAMP_STEP = timedelta(microseconds=1)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@contextmanager
def _store_errors(action: str, conversation_id: str, db: Session | None = None) -> Iterator[None]:
    try:
        yield
    except (OperationalError, PoolTimeoutError) as exc:
        if db is not None:
            db.rollback()
        logger.warning("chat.store_unavailable action=%s conversation_id=%s error=%s", action, conversation_id, exc)
        raise TransientStoreError(f"Message store unavailable during {action}.") from exc
    except DBAPIError as exc:
        if db is not None:
            db.rollback()
        if exc.connection_invalidated:
            raise TransientStoreError(f"Message store connection lost during {action}.") from exc
        raise


def _lock_conversation(db: Session, conversation_id: str) -> None:
    """Serialize appends to one conversation until the transaction ends."""

    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        db.execute(select(func.pg_advisory_xact_lock(func.hashtext(conversation_id))))
    elif dialect == "sqlite":
        # Any write takes the database-wide RESERVED lock, held until commit.
        db.execute(
            update(ChatMessage)
            .where(ChatMessage.id == -1)
            .values(status=ChatMessage.status)
            .execution_options(synchronize_session=False)
        )


def append_message(
    db: Session,
    conversation_id: str,
    *,
    sender: SenderIdentity,
    body: str,
    kind: str = "text",
    max_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
) -> ChatMessage:
    """Persist one message and assign its identity and arrival timestamp."""

    cleaned = clean_message_body(body, max_length=max_length)
    with _store_errors("append", conversation_id, db):
        _lock_conversation(db, conversation_id)
        arrival = datetime.now(timezone.utc)
        latest = db.scalar(
            select(func.max(ChatMessage.timestamp)).where(ChatMessage.conversation_id == conversation_id)
        )
        # Keep arrival strictly increasing so a timestamp cursor never skips a tie.
        if latest is not None and arrival <= as_utc(latest):
            arrival = as_utc(latest) + _TIMESTAMP_STEP

        message = ChatMessage(
            conversation_id=conversation_id,
            sender_id=sender.user_id,
            sender_name=sender.display_name,
            sender_avatar=sender.avatar_url,
            body=cleaned,
            kind=kind,
            status="sent",
            timestamp=arrival,
        )
        db.add(message)
        db.commit()
        db.refresh(message)
    return message


def list_messages_since(
    db: Session,
    conversation_id: str,
    *,
    since: datetime | None = None,
    limit: int = 100,
) -> list[ChatMessage]:
    """Return up to `limit` messages newer than `since`, oldest first."""

    if limit < 1:
        raise ValueError("limit must be at least 1")
    stmt = select(ChatMessage).where(ChatMessage.conversation_id == conversation_id)
    if since is not None:
        stmt = stmt.where(ChatMessage.timestamp > as_utc(since))
    stmt = stmt.order_by(ChatMessage.timestamp.asc(), ChatMessage.id.asc()).limit(limit)
    with _store_errors("list_since", conversation_id):
        return list(db.scalars(stmt).all())


def list_latest_messages(db: Session, conversation_id: str, *, limit: int = 100) -> list[ChatMessage]:
    """Return the newest `limit` messages, oldest first."""

    if limit < 1:
        raise ValueError("limit must be at least 1")
    stmt = (
        select(ChatMessage)
        .where(ChatMessage.conversation_id == conversation_id)
        .order_by(ChatMessage.timestamp.desc(), ChatMessage.id.desc())
        .limit(limit)
    )
    with _store_errors("list_latest", conversation_id):
        rows = list(db.scalars(stmt).all())
    rows.reverse()
    return rows


def count_messages(db: Session, conversation_id: str) -> int:
    """Return the number of persisted messages in a conversation."""

    stmt = select(func.count(ChatMessage.id)).where(ChatMessage.conversation_id == conversation_id)
    with _store_errors("count", conversation_id):
        return int(db.scalar(stmt) or 0)


def list_participant_ids(db: Session, conversation_id: str, *, exclude: str | None = None) -> list[str]:
    """Return distinct sender ids that have posted in a conversation."""

    stmt = (
        select(ChatMessage.sender_id)
        .where(ChatMessage.conversation_id == conversation_id)
        .distinct()
        .order_by(ChatMessage.sender_id.asc())
    )
    if exclude is not None:
        stmt = stmt.where(ChatMessage.sender_id != exclude)
    with _store_errors("participants", conversation_id):
        return list(db.scalars(stmt).all())


class MessageStore(Protocol):
    """Store operations consumed by the change feed and background jobs."""

    def append(
        self, conversation_id: str, *, sender: SenderIdentity, body: str, kind: str = "text"
    ) -> MessageRead:
        """Persist a message and return it."""

    def list_since(self, conversation_id: str, *, since: datetime | None = None, limit: int = 100) -> list[MessageRead]:
        """Return messages newer than `since`, oldest first."""

    def list_latest(self, conversation_id: str, *, limit: int = 100) -> list[MessageRead]:
        """Return the newest messages, oldest first."""

    def count(self, conversation_id: str) -> int:
        """Return the persisted message count."""

    def participant_ids(self, conversation_id: str, *, exclude: str | None = None) -> list[str]:
        """Return distinct sender ids."""


class SqlMessageStore:
    """MessageStore backed by short-lived SQLAlchemy sessions."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        max_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
    ) -> None:
        self._session_factory = session_factory
        self._max_length = max_length

    def append(
        self, conversation_id: str, *, sender: SenderIdentity, body: str, kind: str = "text"
    ) -> MessageRead:
        with self._session_factory() as db:
            message = append_message(
                db, conversation_id, sender=sender, body=body, kind=kind, max_length=self._max_length
            )
            return MessageRead.model_validate(message)

    def list_since(self, conversation_id: str, *, since: datetime | None = None, limit: int = 100) -> list[MessageRead]:
        with self._session_factory() as db:
            rows = list_messages_since(db, conversation_id, since=since, limit=limit)
            return [MessageRead.model_validate(row) for row in rows]

    def list_latest(self, conversation_id: str, *, limit: int = 100) -> list[MessageRead]:
        with self._session_factory() as db:
            rows = list_latest_messages(db, conversation_id, limit=limit)
            return [MessageRead.model_validate(row) for row in rows]

    def count(self, conversation_id: str) -> int:
        with self._session_factory() as db:
            return count_messages(db, conversation_id)

    def participant_ids(self, conversation_id: str, *, exclude: str | None = None) -> list[str]:
        with self._session_factory() as db:
            return list_participant_ids(db, conversation_id, exclude=exclude)
