"""Sessions for the local embedded store.

Every LocalStore call is one unit of work: a fresh session and a single
transaction, committed when the call succeeds. SQLAlchemy failures roll
back and surface as StorageError(table, operation); anything else rolls
back and propagates unchanged.
"""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from glass.db.engine import get_engine
from glass.errors import StorageError
from glass.logging import get_logger

logger = get_logger(__name__)


def create_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Session factory for the local store, bound to engine or the configured one.

    Rows are converted to dicts after commit, so loaded attributes must not
    expire on commit.
    """
    if engine is None:
        engine = get_engine()
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def unit_of_work(
    session_factory: sessionmaker[Session], table: str, operation: str
) -> Generator[Session, None, None]:
    """Run one store call on table in its own transaction."""
    db = session_factory()
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("local_store_error", table=table, operation=operation, error=str(e))
        raise StorageError(table, operation, str(e)) from e
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
