"""Database connection management.

Provides async database connection using SQLAlchemy. The default is a local
SQLite file through aiosqlite; PostgreSQL works through asyncpg.

## Configuration

Database connection is configured via environment variables:
- DATABASE_URL: Full connection string
- DATABASE_POOL_SIZE: Connection pool size (default: 5, ignored for SQLite)
- DATABASE_MAX_OVERFLOW: Max overflow connections (default: 10, ignored for SQLite)

## Usage

```python
from task_calendar.database import get_db, init_db

# Initialize on startup
await init_db()

async with get_db() as session:
    state = await session.get(CalendarSync, "primary")
```
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from task_calendar.config import get_settings
from task_calendar.database.models import Base

logger = logging.getLogger(__name__)

# Global engine and session factory
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


async def init_db(url: str | None = None) -> None:
    """Initialize the database connection.

    Creates the async engine and session factory. Should be called
    once on startup; calling it again replaces the previous engine.

    Args:
        url: Connection string overriding DATABASE_URL
    """
    global _engine, _session_factory

    settings = get_settings()
    url = url or settings.database_url

    if _engine is not None:
        await close_db()

    logger.info("Initializing database connection")

    engine_args: dict[str, Any] = {"echo": settings.database_echo}
    if not url.startswith("sqlite"):
        engine_args.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,  # Verify connections before use
        )

    _engine = create_async_engine(url, **engine_args)

    _session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info("Database connection initialized")


async def close_db() -> None:
    """Close the database connection."""
    global _engine, _session_factory

    if _engine:
        logger.info("Closing database connection")
        await _engine.dispose()
        _engine = None
        _session_factory = None


async def create_tables() -> None:
    """Create all database tables that do not exist yet."""
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables created")


async def drop_tables() -> None:
    """Drop all database tables.

    For testing only. Use with caution!
    """
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    logger.warning("Database tables dropped")


@asynccontextmanager
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session.

    Use as an async context manager:
    ```python
    async with get_db() as session:
        # Use session
        await session.commit()
    ```

    Transactions are not automatically committed - call commit() explicitly.
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    session = _session_factory()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()
