# db/pool.py
import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from psycopg import AsyncConnection
from psycopg_pool import AsyncConnectionPool
from psycopg.rows import dict_row, DictRow

from chainindex.core.logger import setup_logger

logger = setup_logger(__name__, include_location=True)

# Pool for the metadata store (connections, jobs, logs); tenant pools live in ConnectionRegistry
_pool: Optional[AsyncConnectionPool] = None
_lock = asyncio.Lock()


async def init_pool(conninfo: str, min_size: int = 2, max_size: int = 10, timeout: float = 10) -> AsyncConnectionPool:
    """
    Initialize the metadata AsyncConnectionPool with dict_row as default.
    Safe to call multiple times.
    """
    global _pool
    async with _lock:
        if _pool is None:
            pool = AsyncConnectionPool(
                conninfo,
                min_size=min_size,
                max_size=max_size,
                timeout=timeout,
                kwargs={"row_factory": dict_row},
                name="chainindex_metadata",
                open=False
            )
            await pool.open(wait=True, timeout=timeout)
            _pool = pool
            logger.info("Metadata store pool opened")
        return _pool


def get_pool() -> AsyncConnectionPool[AsyncConnection[DictRow]]:
    """Return the metadata AsyncConnectionPool."""
    if _pool is None:
        raise RuntimeError("Database pool is not initialized. Call init_pool() first.")
    return _pool


@asynccontextmanager
async def get_pool_connection():
    """Borrow a metadata store connection; commits on success, rolls back on error."""
    async with get_pool().connection() as conn:
        yield conn


async def close_pool():
    """Close and reset the metadata connection pool."""
    global _pool
    async with _lock:
        if _pool is not None:
            await _pool.close()
            _pool = None
            logger.info("Metadata store pool closed")
