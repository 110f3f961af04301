"""
TaskTrack Database Session Management.

Provides the single entry point for DB initialisation plus a context
manager for unit-of-work DB access.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tasktrack.db.base import Base
from tasktrack.engine.config import DatabaseConfig

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def _engine_options(config: DatabaseConfig) -> Dict[str, Any]:
    """Pool options for the configured URL; SQLite gets a single shared connection."""
    if config.url.startswith("sqlite"):
        options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if config.url in ("sqlite://", "sqlite:///:memory:"):
            options["poolclass"] = StaticPool
        return options
    return {
        "pool_size": config.pool_size,
        "max_overflow": config.max_overflow,
        "pool_timeout": config.pool_timeout,
        "pool_recycle": config.pool_recycle,
        "pool_pre_ping": config.pool_pre_ping,
    }


def init_db(config: DatabaseConfig, create_tables: bool = False) -> sessionmaker:
    """
    Single entry point for database initialisation.

    All callers (API boot, Celery worker, ``tasktrack init`` CLI, tests) go
    through this function.

    Args:
        config:        DatabaseConfig from tasktrack.yaml.
        create_tables: When True, run Base.metadata.create_all(). Used by
                       ``tasktrack init`` and tests.

    Returns:
        A ``sessionmaker`` with ``expire_on_commit=False`` so entities stay
        readable after the unit of work closes.
    """
    global _engine, _session_factory

    # Imported for its side effect of registering tables on Base.metadata
    from tasktrack.db import models  # noqa: F401

    engine = create_engine(config.url, echo=config.echo, **_engine_options(config))
    if create_tables:
        Base.metadata.create_all(engine)

    _engine = engine
    _session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    return _session_factory


def get_session_factory() -> sessionmaker:
    """Get the initialised session factory."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """
    Context manager for DB sessions with auto-commit/rollback.

    Usage:
        with session_scope() as session:
            task = session.get(Task, 1)
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def close_db() -> None:
    """Dispose the engine. Used during shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
