from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from loguru import logger
from sqlalchemy import Engine, create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from moveplan.config.settings import settings
from moveplan.db.models import Base

# Lazy initialization to avoid import-time database connections
_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None
_database_url: str | None = None


def configure(database_url: str | None) -> None:
    """Point the session layer at a different database (None reverts to settings).

    Any existing engine is disposed.
    """
    global _engine, _SessionLocal, _database_url
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None
    _database_url = database_url


def _current_url() -> str:
    return _database_url or settings.database_url


def _get_engine() -> Engine:
    """Get or create the database engine (lazy initialization)."""
    global _engine
    if _engine is None:
        url = _current_url()
        logger.info(f"[DB] Initializing database engine: {url}")

        connect_args = {}
        if "sqlite" in url.lower():
            connect_args = {"check_same_thread": False}

        _engine = create_engine(
            url,
            connect_args=connect_args,
            echo=False,
            pool_pre_ping=True,
        )
        logger.info("[DB] Database engine initialized")
    return _engine


def _get_session_local() -> sessionmaker[Session]:
    """Get or create the session factory (lazy initialization)."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_get_engine())
        logger.debug("[DB] Session factory initialized")
    return _SessionLocal


def init_db() -> None:
    """Create all tables and verify the connection."""
    engine = _get_engine()
    Base.metadata.create_all(bind=engine)
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    logger.info("[DB] Schema ready")


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Get database session context manager.

    Commits when the block exits normally; rolls back and re-raises on any
    exception.
    """
    session = _get_session_local()()
    try:
        yield session
        session.commit()
    except Exception as e:
        logger.error(f"[DB] Session error, rolling back: {type(e).__name__}: {e}")
        session.rollback()
        raise
    finally:
        session.close()
