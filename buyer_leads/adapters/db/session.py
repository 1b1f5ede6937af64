"""Engine and session management for the relational store.

A single engine is built lazily from ``settings.db`` and reused for the life of
the process. Request handlers receive a fresh ``Session`` through the
``get_session`` dependency.
"""

from __future__ import annotations

import logging
from typing import Any, Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from buyer_leads.adapters.db.base import Base
from buyer_leads.core.config import DatabaseSettings, settings

logger = logging.getLogger(__name__)

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    # History rows rely on ON DELETE CASCADE, which SQLite ignores unless enabled
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(db_settings: DatabaseSettings) -> Engine:
    """Create an engine for the configured URL.

    In-memory SQLite databases share one connection (StaticPool) so every
    session sees the same data.
    """
    url = db_settings.url
    kwargs: dict[str, Any] = {"echo": db_settings.echo}

    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url.rstrip("/").endswith("sqlite:"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True

    engine = create_engine(url, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)

    logger.info("db.engine_created", extra={"dialect": engine.dialect.name})
    return engine


def get_engine() -> Engine:
    global _engine, _session_factory

    if _engine is None:
        _engine = build_engine(settings.db)
        _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    get_engine()
    assert _session_factory is not None
    return _session_factory


def init_db() -> None:
    """Create any missing tables."""
    Base.metadata.create_all(get_engine())


def drop_db() -> None:
    Base.metadata.drop_all(get_engine())


def dispose_engine() -> None:
    """Close pooled connections and forget the engine."""
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


def ping() -> None:
    """Run a trivial query; raises if the store is unreachable."""
    with get_engine().connect() as conn:
        conn.execute(text("SELECT 1"))


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a request-scoped session."""
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()
