"""Database engine, session factories and the declarative base."""

import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

# Create base class for models
Base = declarative_base()

SessionFactory = Callable[[], Session]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands datetimes back naive; treat those as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def build_engine(
    database_url: str,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """Create an engine with database-specific tuning."""
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False}
        )

        # SQLite defaults foreign_keys to OFF, so CASCADE constraints are
        # ignored unless enabled on every connection.
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        pool_pre_ping=True,
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def create_tables(engine: Engine) -> None:
    # Import models so every table is registered on Base.metadata.
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=engine)


def session_scope(session_factory: SessionFactory) -> Iterator[Session]:
    """Yield a session, rolling back on unhandled exceptions.

    Used as the body of the FastAPI ``get_db`` dependency so the connection
    is returned to the pool in a clean state.
    """
    db = session_factory()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def open_session(session_factory: SessionFactory) -> Iterator[Session]:
    """Context-managed ``session_scope`` for code outside a request."""
    yield from session_scope(session_factory)


def new_id() -> str:
    return str(uuid.uuid4())
