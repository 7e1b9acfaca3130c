"""Async SQLAlchemy engine and declarative bases.

Provides:
- EngineBase: Declarative base for tables owned by this service (score cache)
- BackendBase: Declarative base for read-only mappings of the managed backend's
  operational tables (clients, deliverables, invoices, tasks, content)
- get_session(): AsyncSession generator used as the repository session factory
- init_db(): Creates engine-owned tables only; backend tables are never created here
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.app.config import get_settings

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.DATABASE_URL,
            pool_size=10,
            max_overflow=10,
            pool_pre_ping=True,
            echo=False,
        )
    return _engine


# ── Declarative Bases ───────────────────────────────────────────────────────

engine_metadata = MetaData()
backend_metadata = MetaData()


class EngineBase(DeclarativeBase):
    """Base class for tables written by the health engine."""

    metadata = engine_metadata


class BackendBase(DeclarativeBase):
    """Base class for backend tables the engine only reads.

    Maps just the columns the scoring and alerting rules need. The managed
    backend owns these tables and their migrations.
    """

    metadata = backend_metadata


# ── Session Factory ─────────────────────────────────────────────────────────


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession bound to the shared engine."""
    engine = get_engine()
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db() -> None:
    """Create engine-owned tables if they don't exist."""
    from src.app.health import models  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(EngineBase.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
