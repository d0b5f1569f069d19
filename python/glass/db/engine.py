"""SQLAlchemy engine creation for the local embedded store.

The engine is created once at application startup. The local store is a
single-user SQLite file; in-memory URLs share one connection so every
session sees the same database.
"""

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from glass.config import get_settings
from glass.db.models import Base


def _is_memory_url(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in database_url


def create_db_engine(database_url: str | None = None) -> Engine:
    """Create a SQLAlchemy engine with the given URL.

    Args:
        database_url: SQLAlchemy URL. If None, uses LOCAL_DATABASE_URL.

    Returns:
        Configured SQLAlchemy engine.
    """
    if database_url is None:
        database_url = get_settings().local_database_url

    kwargs: dict = {"echo": False}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if _is_memory_url(database_url):
            kwargs["poolclass"] = StaticPool

    return create_engine(database_url, **kwargs)


def init_local_schema(engine: Engine) -> None:
    """Create any missing local tables.

    Safe to call on every startup.
    """
    Base.metadata.create_all(engine)


@lru_cache
def get_engine() -> Engine:
    """Get the cached database engine with the schema in place."""
    engine = create_db_engine()
    init_local_schema(engine)
    return engine
