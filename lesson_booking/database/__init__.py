"""
Database engine, session factory, and metadata shared across the application.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
from typing import Any, Generator, Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker

from lesson_booking.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

Base: DeclarativeMeta = declarative_base()

_DEFAULT_POOL_KWARGS: dict[str, Any] = {
    "pool_size": 5,
    "max_overflow": 10,
    "pool_timeout": 5,
    "pool_recycle": 300,
    "pool_pre_ping": True,
}

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None
_engine_lock = threading.Lock()


def _build_engine_kwargs(settings: Settings) -> dict[str, Any]:
    if settings.is_sqlite:
        # SQLite: allow use from worker threads, wait on the writer lock instead of failing.
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return dict(_DEFAULT_POOL_KWARGS)


def create_engine_for(settings: Settings) -> Engine:
    """Create an engine configured for the given settings."""
    engine = create_engine(
        settings.database_url,
        echo=settings.database_echo,
        future=True,
        **_build_engine_kwargs(settings),
    )

    if settings.is_sqlite:

        @event.listens_for(engine, "connect")
        def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        with _engine_lock:
            if _engine is None:
                _engine = create_engine_for(get_settings())
    return _engine


def SessionLocal() -> Session:
    """Open a session on the default engine."""
    global _session_factory
    if _session_factory is None:
        with _engine_lock:
            if _session_factory is None:
                _session_factory = build_session_factory(get_engine())
    return _session_factory()


def get_db() -> Generator[Session, None, None]:
    """Get database session with proper cleanup."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Provide transactional scope for workers and scripts."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
