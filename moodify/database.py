"""
database.py — SQLAlchemy 2.0 async engine and session factory.

This module owns ALL database connection infrastructure.
Nothing else in the codebase creates engines or sessions directly.

Usage in routes (via dependency injection):
    from moodify.database import get_db
    async def my_route(db: AsyncSession = Depends(get_db)): ...
"""
import os
from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from moodify.config import settings


# ---------------------------------------------------------------------------
# Declarative base — ALL ORM models inherit from this
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """
    SQLAlchemy declarative base.
    All ORM models in moodify/models/ inherit from Base.
    Defined here (not in models/) to prevent circular imports in alembic/env.py.
    """
    pass


def _engine_kwargs() -> dict[str, Any]:
    """Pool sizing only applies to server databases; SQLite uses the dialect default pool."""
    if settings.is_sqlite:
        return {}
    return {
        "pool_size": 5,           # Core connection pool size
        "max_overflow": 10,       # Extra connections under peak load
        "pool_pre_ping": True,    # Detect and discard stale connections before each use
    }


def absolute_database_url(database_url: str) -> str:
    """
    Anchor a relative SQLite file path to the current working directory.

    The engine resolves a relative path against the process cwd at connect time;
    anything that runs elsewhere (the Alembic subprocess) needs the absolute form
    to open the same file. Other URLs are returned unchanged.
    """
    url = make_url(database_url)
    if not url.drivername.startswith("sqlite"):
        return database_url
    database = url.database
    if not database or database == ":memory:" or database.startswith("file:") or os.path.isabs(database):
        return database_url
    return url.set(database=os.path.abspath(database)).render_as_string(hide_password=False)


def enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """
    Let SQLAlchemy emit BEGIN itself on SQLite so SAVEPOINTs (begin_nested) nest
    inside the request transaction instead of the driver's implicit one.
    """
    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")


# ---------------------------------------------------------------------------
# Async engine — one per application lifetime
# ---------------------------------------------------------------------------
async_engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    **_engine_kwargs(),
)
if settings.is_sqlite:
    enable_sqlite_savepoints(async_engine)

# ---------------------------------------------------------------------------
# Session factory — produces AsyncSession instances
# ---------------------------------------------------------------------------
AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,   # Keep objects usable after commit without re-querying
)


# ---------------------------------------------------------------------------
# FastAPI dependency — yields session, commits or rolls back
# ---------------------------------------------------------------------------
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that yields an AsyncSession per request.

    Automatically commits on success or rolls back on exception.
    One request = one transaction, so a batch insert is all-or-nothing.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
