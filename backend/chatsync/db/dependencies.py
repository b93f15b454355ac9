"""FastAPI dependencies for database access."""

from collections.abc import Iterator

from sqlalchemy.orm import Session

from chatsync.db.session import SessionLocal
from chatsync.services.messages import MessageStore, SqlMessageStore


def get_db() -> Iterator[Session]:
    """Yield a request-scoped session."""

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_message_store() -> MessageStore:
    """Return a store that opens its own short-lived sessions."""

    return SqlMessageStore(SessionLocal)
