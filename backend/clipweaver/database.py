from __future__ import annotations
"""SQLAlchemy 2.0 async database engine and session management.

The job store is the single source of truth for every job's lifecycle.
The engine is created lazily so tests and alternative deployments can
point the repository at their own URL.
"""

import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from clipweaver.config import get_settings

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


class Base(DeclarativeBase):
    """Base class for all ORM models."""


def create_engine_for(url: str, *, echo: bool = False) -> AsyncEngine:
    """Build an async engine with pool settings appropriate for the dialect."""
    kwargs: dict = {"echo": echo}
    if not url.startswith("sqlite"):
        kwargs.update(pool_recycle=3600, pool_pre_ping=True, pool_size=10, max_overflow=20)
    return create_async_engine(url, **kwargs)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_engine() -> AsyncEngine:
    """Lazy-init the module-level engine from settings."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine_for(settings.DATABASE_URL, echo=settings.DEBUG)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = make_session_factory(get_engine())
    return _session_factory


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create all tables defined by Base metadata.

    Called once at application startup, before the orchestrator resumes polling.
    """
    import clipweaver.models  # noqa: F401  registers models with Base.metadata

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready")


async def close_db() -> None:
    """Dispose of the engine connection pool.

    Called at application shutdown.
    """
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
