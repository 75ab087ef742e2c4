"""Centralized SQLAlchemy engine/session helpers for the workspace.

Usage
-----
from db.client import get_engine, session_scope

with session_scope() as s:
    s.execute(...)

Engines are cached per database URL so several databases (e.g. one SQLite
file per test) can coexist in one process.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

_ENGINES: dict[str, Engine] = {}
_SESSION_MAKERS: dict[str, sessionmaker[Session]] = {}
_LOCK = threading.Lock()


def _database_url(override: str | None = None) -> str:
    url = override or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set and no database_url was passed")
    return url


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    # SQLite ignores FOREIGN KEY clauses unless enabled per connection.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _):  # pragma: no cover - tiny bridge
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()


def get_engine(*, database_url: str | None = None) -> Engine:
    """Return the shared SQLAlchemy engine for a URL, creating it on first use."""

    url = _database_url(database_url)
    with _LOCK:
        engine = _ENGINES.get(url)
        if engine is None:
            engine = create_engine(url, pool_pre_ping=True)
            if engine.dialect.name == "sqlite":
                _enable_sqlite_foreign_keys(engine)
            _SESSION_MAKERS[url] = sessionmaker(
                bind=engine, expire_on_commit=False, class_=Session
            )
            _ENGINES[url] = engine
        return engine


def get_session(*, database_url: str | None = None) -> Session:
    """Return a new session for ``database_url`` (or ``DATABASE_URL``); caller closes it."""

    url = _database_url(database_url)
    get_engine(database_url=url)
    return _SESSION_MAKERS[url]()


@contextmanager
def session_scope(*, database_url: str | None = None) -> Iterator[Session]:
    """Yield a session that commits on success and rolls back on any exception.

    Everything done inside one scope is a single database transaction, which is
    what makes a statement's transaction insert and status update atomic.
    """

    session = get_session(database_url=database_url)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def dispose_engines() -> None:
    """Dispose every cached engine (used by tests between temporary databases)."""

    with _LOCK:
        for engine in _ENGINES.values():
            engine.dispose()
        _ENGINES.clear()
        _SESSION_MAKERS.clear()


__all__ = [
    "dispose_engines",
    "get_engine",
    "get_session",
    "session_scope",
]
