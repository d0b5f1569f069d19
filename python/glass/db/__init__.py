"""Local embedded store for Glass.

Provides engine creation, the per-call unit of work, ORM models and the
LocalStore row adapter.
"""

from glass.db.engine import create_db_engine, get_engine, init_local_schema
from glass.db.local_store import LocalStore
from glass.db.models import (
    TABLES,
    AiMessage,
    Base,
    LegacyState,
    MessageRole,
    ModelSelections,
    Preset,
    ProviderSettings,
    Session,
    SessionType,
    Summary,
    Transcript,
    User,
)
from glass.db.session import create_session_factory, unit_of_work

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "init_local_schema",
    "create_session_factory",
    "unit_of_work",
    "LocalStore",
    # Base
    "Base",
    "TABLES",
    # Enums
    "MessageRole",
    "SessionType",
    # Models
    "User",
    "Session",
    "Preset",
    "ProviderSettings",
    "ModelSelections",
    "AiMessage",
    "Summary",
    "Transcript",
    "LegacyState",
]
