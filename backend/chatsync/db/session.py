"""Engine and session factory."""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from chatsync.config import get_settings


def _engine_options(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    settings = get_settings()
    return {
        "pool_pre_ping": True,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_timeout": settings.db_pool_timeout_seconds,
    }


_database_url = get_settings().database_url
engine = create_engine(_database_url, future=True, **_engine_options(_database_url))
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
