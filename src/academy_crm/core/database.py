"""Database engine and sessions for the lead import pipeline.

Commits run in batches and keep using the rows loaded before each batch
commit, so sessions are made with ``expire_on_commit=False``.  On PostgreSQL
an optional schema is put first on every connection's ``search_path`` so
isolated environments can share one database.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

POOL_SIZE = 10
MAX_OVERFLOW = 5


@dataclass
class _Database:
    engine: AsyncEngine
    sessions: async_sessionmaker[AsyncSession]


_db: _Database | None = None


def _require() -> _Database:
    if _db is None:
        msg = "Database not initialized. Call init_engine() first."
        raise RuntimeError(msg)
    return _db


def engine_options(database_url: str, *, schema: str | None = None, echo: bool = False) -> dict[str, Any]:
    """Build ``create_async_engine`` keyword arguments for the URL's backend.

    SQLite gets no pool sizing.  ``schema`` is only meaningful on PostgreSQL.

    Args:
        database_url: Async connection string.
        schema: PostgreSQL schema to search before ``public``.
        echo: Log every SQL statement.

    Returns:
        Engine options.

    Raises:
        ValueError: If a schema is requested on a backend other than PostgreSQL.
    """
    backend = make_url(database_url).get_backend_name()
    options: dict[str, Any] = {"echo": echo}
    if backend != "sqlite":
        options.update(pool_size=POOL_SIZE, max_overflow=MAX_OVERFLOW, pool_pre_ping=True)
    if schema is not None:
        if backend != "postgresql":
            msg = f"database_schema is only supported on PostgreSQL, not {backend}"
            raise ValueError(msg)
        options["connect_args"] = {"server_settings": {"search_path": f"{schema},public"}}
    return options


def init_engine(database_url: str, *, schema: str | None = None, echo: bool = False) -> AsyncEngine:
    """Create the process-wide engine and session factory.

    Returns:
        The created async engine.
    """
    global _db  # noqa: PLW0603
    engine = create_async_engine(database_url, **engine_options(database_url, schema=schema, echo=echo))
    _db = _Database(engine=engine, sessions=async_sessionmaker(engine, expire_on_commit=False))
    return engine


def get_engine() -> AsyncEngine:
    return _require().engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return _require().sessions


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Open a session from the configured factory and close it on exit.

    Raises:
        RuntimeError: If ``init_engine`` has not been called.
    """
    async with get_session_factory()() as session:
        yield session


async def dispose_engine() -> None:
    """Close pooled connections and forget the engine."""
    global _db  # noqa: PLW0603
    if _db is not None:
        await _db.engine.dispose()
        _db = None
