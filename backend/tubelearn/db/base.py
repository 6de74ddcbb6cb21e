"""
Database Base Configuration

Sets up the async SQLAlchemy engine and session management for PostgreSQL.

Usage:
    from tubelearn.db.base import async_session_maker, Base

    # In a service
    async with async_session_maker() as session:
        result = await session.execute(...)
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from tubelearn.config import settings, yaml_config


# Get pool configuration from yaml config
db_config: dict[str, Any] = yaml_config.get("database", {})
pool_size: int = db_config.get("pool_size", 5)
max_overflow: int = db_config.get("max_overflow", 10)
pool_timeout: int = db_config.get("pool_timeout", 30)

# Create async engine
engine = create_async_engine(
    settings.POSTGRES_URL,
    pool_size=pool_size,
    max_overflow=max_overflow,
    pool_timeout=pool_timeout,
    echo=settings.DEBUG,
)

# Create async session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def create_task_session_maker(url: str | None = None) -> async_sessionmaker[AsyncSession]:
    """
    Build a session factory for code that runs under its own event loop.

    Celery tasks call asyncio.run() per invocation, and pooled asyncpg
    connections cannot cross event loops, so these engines use NullPool.

    Args:
        url: Database URL, defaults to the configured PostgreSQL URL

    Returns:
        Session factory bound to a fresh engine
    """
    task_engine = create_async_engine(
        url or settings.POSTGRES_URL,
        poolclass=NullPool,
        echo=settings.DEBUG,
    )
    return async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# Import models AFTER Base is defined to avoid circular imports.
# This ensures all models are registered with Base.metadata.
from tubelearn.db import models  # noqa: F401, E402


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting database sessions in FastAPI routes.

    Usage:
        @app.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
