"""Database connection, session management and entity locks."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from settlement_engine.config import get_settings
from settlement_engine.models import Base


def get_engine(database_url: str | None = None) -> Engine:
    """Create database engine."""
    url = database_url or get_settings().database_url
    if url.startswith("sqlite"):
        # In-memory SQLite must share one connection across threads
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=False, **kwargs)
    return create_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


# Global engine and session factory
_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def init_db(database_url: str | None = None) -> tuple[Engine, sessionmaker[Session]]:
    """Initialize database engine and session factory."""
    global _engine, _session_factory
    if _engine is None or _session_factory is None:
        _engine = get_engine(database_url)
        _session_factory = sessionmaker(_engine, expire_on_commit=False, autoflush=False)
    return _engine, _session_factory


def reset_db() -> None:
    """Dispose the global engine (used by tests and the CLI)."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


def create_schema(engine: Engine | None = None) -> None:
    """Create all settlement tables that do not exist yet."""
    if engine is None:
        engine, _ = init_db()
    Base.metadata.create_all(engine)


@contextmanager
def get_session() -> Iterator[Session]:
    """Get a database session; commits on success, rolls back on error."""
    _, factory = init_db()
    with factory() as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise


# =============================================================================
# Entity locks
# =============================================================================


class _EntityLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


_registry_lock = threading.Lock()
_entity_locks: dict[tuple[str, str], _EntityLock] = {}


@contextmanager
def entity_lock(kind: str, key: str) -> Iterator[None]:
    """Serialize in-process writers of one entity (e.g. ("escrow", booking_id)).

    Complements SELECT ... FOR UPDATE for backends that ignore row locks.
    An entry lives only while some thread holds or waits for it.
    """
    entity = (kind, key)
    with _registry_lock:
        entry = _entity_locks.get(entity)
        if entry is None:
            entry = _entity_locks[entity] = _EntityLock()
        entry.users += 1
    try:
        with entry.lock:
            yield
    finally:
        with _registry_lock:
            entry.users -= 1
            if entry.users == 0:
                del _entity_locks[entity]


def held_entity_locks() -> int:
    """Number of entities currently locked or awaited."""
    with _registry_lock:
        return len(_entity_locks)
