"""
SmartNotes Backend: Database Session Management
==================================================

What:  Async SQLAlchemy engine, session factory, and FastAPI dependency.
How:   Creates an async engine with connection pooling, provides a session
       dependency that auto-commits on success and auto-rolls-back on error.
Who:   Used by route handlers via FastAPI's dependency injection system.
When:  Engine is created at module import; sessions are created per-request.

Connection Pooling:
    pool_size=20, max_overflow=10, pool_pre_ping, pool_recycle=3600 for
    PostgreSQL. SQLite (tests, local runs) keeps SQLAlchemy's default pool.

JSON columns are serialized with ensure_ascii=False so that free-text
search over tags sees the same characters the user typed.
"""

import json
from typing import Any, AsyncGenerator, Dict

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from smartnotes.config import settings


def _json_serializer(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    Pool options are only passed to server databases; SQLite's pool
    implementation rejects them.
    """
    options: Dict[str, Any] = {
        "echo": echo,
        "json_serializer": _json_serializer,
    }
    if not database_url.startswith("sqlite"):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return create_async_engine(database_url, **options)


# ── Engine Configuration ──────────────────────────────────────────────────
engine = build_engine(
    settings.database_url,
    echo=settings.log_level == "DEBUG",
)

# ── Session Factory ───────────────────────────────────────────────────────
# expire_on_commit=False: services commit inside a request and keep reading
# the committed object afterwards to build the response
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ── Base Model ────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Shares a single metadata object, read by Alembic for migrations.
    """
    pass


# ── Session Dependency ────────────────────────────────────────────────────
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    How it works:
        1. Creates a new session from the factory
        2. Yields it to the route handler
        3. On success: commits anything still pending
        4. On error: rolls back the transaction
        5. Always: closes the session (returns connection to pool)

    NoteStore commits its own writes, so the final commit is usually a no-op.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
async def dispose_engine() -> None:
    """
    What:  Gracefully closes all connections in the pool.
    When:  Called during application shutdown (lifespan handler).
    """
    await engine.dispose()
