"""asyncpg pool shared by the Postgres stores."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import asyncpg

from ranking_engine.config import get_settings

logger = logging.getLogger(__name__)

_pool: asyncpg.Pool | None = None


async def init_pool() -> asyncpg.Pool:
    """Create the pool on first call; later calls return the same pool.

    Raises:
        ValueError: If DATABASE_URL is not configured
    """
    global _pool
    if _pool is not None:
        return _pool

    settings = get_settings()
    if not settings.database_url:
        raise ValueError("DATABASE_URL is not configured")

    logger.info(f"Opening database pool (max {settings.pool_max_size} connections)")
    _pool = await asyncpg.create_pool(
        settings.database_url,
        min_size=1,
        max_size=settings.pool_max_size,
        command_timeout=settings.db_command_timeout,
    )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is None:
        return
    pool, _pool = _pool, None
    logger.info("Closing database pool")
    await pool.close()


def get_pool() -> asyncpg.Pool:
    """Raises RuntimeError until init_pool() has run."""
    if _pool is None:
        raise RuntimeError("Database pool not initialized")
    return _pool


@asynccontextmanager
async def get_connection() -> AsyncGenerator[asyncpg.Connection, None]:
    """Borrow a pooled connection for the duration of the block."""
    async with get_pool().acquire() as conn:
        yield conn
