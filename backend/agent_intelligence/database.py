# backend/agent_intelligence/database.py
"""
Engine, session factory and commit helpers.

Services receive a Session from their caller (a request via get_db, a
scheduled job via get_db_context) and commit their own units of work.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional, Tuple

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from agent_intelligence.config import settings  # config must NOT import agent_intelligence.database

logger = logging.getLogger(__name__)


def build_engine(url: str, **kwargs) -> Engine:
    """Create an engine; SQLite connections get foreign keys enforced."""
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        new_engine = create_engine(url, **kwargs)

        @event.listens_for(new_engine, "connect")
        def _enable_sqlite_fks(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return new_engine

    return create_engine(url, pool_pre_ping=True, pool_recycle=3600, **kwargs)


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db() -> Iterator[Session]:
    """FastAPI dependency: one session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Iterator[Session]:
    """
    Session for code running outside a request (scheduled learning runs).
    Anything left uncommitted when an exception escapes is rolled back.

        with get_db_context() as db:
            services = build_services(db)
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


_ERROR_LABELS = (
    (IntegrityError, "Integrity error"),
    (OperationalError, "Database operational error"),
)


def safe_commit(db: Session, operation: str = "database operation") -> Tuple[bool, Optional[str]]:
    """
    Commit, or roll back and report why.

    Returns (True, None) on success, (False, message) otherwise; callers
    turn the message into StoreUnavailable.
    """
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        label = next((text for kind, text in _ERROR_LABELS if isinstance(e, kind)), "Database error")
        detail = getattr(e, "orig", None) or e
        message = f"{label} during {operation}: {str(detail)[:200]}"
        logger.error(message)
        return False, message
    return True, None
