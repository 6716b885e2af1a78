"""Run history storage.

SQLAlchemy engine, session factory and declarative base for the
pipeline run records. The orchestrator worker and the API request
threads share one engine; on SQLite the database runs in WAL mode so
readers are not blocked while a run is being recorded.
"""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from sitepipe.config import get_settings

SQLITE_TIMEOUT = 15.0


class Base(DeclarativeBase):
    """Declarative base of sitepipe tables."""


def _sqlite_path(db_url: str) -> Path | None:
    """File behind a sqlite:/// URL, None for in-memory databases."""
    if not db_url.startswith("sqlite:///"):
        return None
    raw = db_url.removeprefix("sqlite:///")
    if not raw or raw == ":memory:":
        return None
    return Path(raw)


def _enable_wal(dbapi_connection: Any, _record: Any) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
    finally:
        cursor.close()


def get_engine(db_url: str | None = None) -> Engine:
    """Create the engine for the run history database.

    Args:
        db_url: Database URL. Defaults to settings.db_url.

    Returns:
        SQLAlchemy Engine. For SQLite files the parent directory is
        created and connections may be used from any thread.
    """
    if db_url is None:
        db_url = get_settings().db_url

    if not db_url.startswith("sqlite"):
        return create_engine(db_url, echo=False)

    path = _sqlite_path(db_url)
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        db_url,
        connect_args={"check_same_thread": False, "timeout": SQLITE_TIMEOUT},
        echo=False,
    )
    if path is not None:
        event.listen(engine, "connect", _enable_wal)
    return engine


def get_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Session factory whose objects stay readable after commit.

    Runs are handed from the worker to callers after their session has
    closed, so attributes are not expired on commit.
    """
    return sessionmaker(
        bind=engine if engine is not None else get_engine(),
        autoflush=False,
        expire_on_commit=False,
    )


@contextmanager
def get_session(
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """Transactional scope: commit on success, roll back on error.

    Args:
        session_factory: Factory to use; one is created from settings if omitted.

    Yields:
        SQLAlchemy Session instance.
    """
    session = (session_factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Engine | None = None) -> None:
    """Create the run history tables if they do not exist."""
    from sitepipe.pipeline import models  # noqa: F401

    Base.metadata.create_all(bind=engine if engine is not None else get_engine())


__all__ = [
    "Base",
    "create_all_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
]
