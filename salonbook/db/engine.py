"""Async database engine, session factory, and lifespan helpers.

SQLAlchemy 2.0 async on the asyncpg driver. Sessions are opened per request
(or per unit of work) and wrapped in a SqlAlchemyRepository, which owns commits.
"""

from __future__ import annotations

import contextlib
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from salonbook.config import settings

# ── Async PostgreSQL engine ──────────────────────────────────────────

engine: AsyncEngine = create_async_engine(
    settings.db.database_url,
    echo=settings.log_level == "DEBUG",
    pool_size=settings.db.pool_size,
    max_overflow=settings.db.max_overflow,
    pool_pre_ping=True,
    pool_recycle=3600,
)

# ── Session factory ──────────────────────────────────────────────────

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ── Lifespan helpers ─────────────────────────────────────────────────


async def init_db() -> None:
    """Verify connectivity; outside production also create missing tables.

    Production schemas are managed by Alembic.
    """
    from salonbook.models import Base

    async with engine.begin() as conn:
        if not settings.is_production:
            await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose the connection pool."""
    await engine.dispose()


@contextlib.asynccontextmanager
async def db_lifespan() -> AsyncGenerator[None, None]:
    """Open the pool for the app's lifetime.

    Usage in FastAPI lifespan:
        async with db_lifespan():
            yield
    """
    await init_db()
    try:
        yield
    finally:
        await close_db()
