import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

import asyncpg
from asyncpg import Connection, Pool

from endgame.config_secrets import DATABASE_POOL_MAX_SIZE, DATABASE_POOL_MIN_SIZE, DATABASE_URL

logger = logging.getLogger(__name__)

# Database connection pool
pool: Optional[Pool] = None


async def init_db(create_schema: bool = True) -> Pool:
    """Initialize database connection pool"""
    global pool
    if pool is not None:
        return pool

    pool = await asyncpg.create_pool(
        DATABASE_URL,
        min_size=DATABASE_POOL_MIN_SIZE,
        max_size=DATABASE_POOL_MAX_SIZE,
    )
    logger.info("Database pool initialized")

    if create_schema:
        from endgame.utils.create_tables import create_schema as _create_schema

        async with pool.acquire() as conn:
            await _create_schema(conn)

    return pool


async def close_db():
    """Close database connection pool"""
    global pool
    if pool:
        await pool.close()
        pool = None


@asynccontextmanager
async def get_connection() -> AsyncIterator[Connection]:
    """Borrow a connection from the pool for the duration of the block"""
    if pool is None:
        await init_db(create_schema=False)
    assert pool is not None
    conn = await pool.acquire()
    try:
        yield conn
    finally:
        await pool.release(conn)
