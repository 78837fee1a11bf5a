"""
Database Connection and Session Management

Async SQLAlchemy 2.0 engine over asyncpg. The booking repository opens one
short session per operation through ``get_db_context``; each session commits
on success and rolls back on any exception.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from app.config import settings
from app.models.database import Base

logger = logging.getLogger(__name__)


def _build_engine() -> AsyncEngine:
    """Create the async engine; a pool size of 0 opens a connection per session."""
    if settings.database_pool_size <= 0:
        return create_async_engine(settings.database_url, echo=settings.debug, poolclass=NullPool)

    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_pre_ping=True,
    )


engine = _build_engine()

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Transactional session scope.

    Usage:
        async with get_db_context() as db:
            result = await db.execute(select(Appointment).where(Appointment.tenant_id == tenant_id))
            appointments = result.scalars().all()

    Yields:
        AsyncSession: Database session
    """
    session = async_session_factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_db() -> None:
    """
    Create booking tables that do not exist yet.

    Development convenience only; production schemas are managed with
    migrations.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the connection pool on shutdown."""
    await engine.dispose()


async def check_db_health() -> bool:
    """Run ``SELECT 1``; False when the database cannot be reached."""
    try:
        async with get_db_context() as db:
            await db.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError) as e:
        logger.warning(f"Database health check failed: {e}")
        return False
