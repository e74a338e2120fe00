"""
Connection registry for tenant databases.

One ``AsyncConnectionPool`` per tenant connection identity, created lazily on
first use and cached for the life of the registry. Pools are never shared
across identities, and a pool built from credentials that have since changed
is rebuilt on the next acquire.

The registry is an explicitly constructed object: the server builds one in
its lifespan, hands it to the components that write into tenant databases and
calls ``shutdown()`` on teardown.
"""
import asyncio
import math
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

import psycopg
from psycopg import AsyncConnection
from psycopg.rows import dict_row, DictRow
from psycopg_pool import AsyncConnectionPool

from chainindex.core.errors import ConnectivityError, classify_postgres_error
from chainindex.core.logger import setup_logger
from chainindex.core.models import TenantConnection

logger = setup_logger(__name__, include_location=True)

Params = Optional[Union[Sequence[Any], Dict[str, Any]]]

DEFAULT_PROBE_TIMEOUT = 5.0


@dataclass
class _PoolEntry:
    pool: AsyncConnectionPool
    fingerprint: str
    created_at: float = field(default_factory=time.time)


class ConnectionRegistry:
    """Process wide cache of tenant connection pools."""

    def __init__(
            self,
            min_size: int = 1,
            max_size: int = 5,
            timeout: float = 30.0,
            max_waiting: int = 20,
            max_lifetime: float = 1800.0,
            max_idle: float = 300.0,
            statement_timeout_ms: Optional[int] = 30000,
            probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
            pool_name: str = "tenant",
    ):
        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        self.max_waiting = max_waiting
        self.max_lifetime = max_lifetime
        self.max_idle = max_idle
        self.statement_timeout_ms = statement_timeout_ms
        self.probe_timeout = probe_timeout
        self.pool_name = pool_name

        self._pools: Dict[str, _PoolEntry] = {}
        self._opening: Dict[str, Tuple[str, "asyncio.Task[AsyncConnectionPool]"]] = {}
        self._evictions: Set["asyncio.Task[bool]"] = set()
        self._closed = False
        self.pools_created = 0

    @classmethod
    def from_settings(cls, settings) -> "ConnectionRegistry":
        return cls(
            min_size=settings.tenant_pool_min_size,
            max_size=settings.tenant_pool_max_size,
            timeout=settings.tenant_pool_timeout,
            max_waiting=settings.tenant_pool_max_waiting,
            max_lifetime=settings.tenant_pool_max_lifetime,
            max_idle=settings.tenant_pool_max_idle,
            statement_timeout_ms=settings.statement_timeout_ms,
            probe_timeout=settings.probe_timeout,
        )

    def __contains__(self, identity: str) -> bool:
        return identity in self._pools

    def __len__(self) -> int:
        return len(self._pools)

    # ------------------------------------------------------------------
    # Pool lifecycle
    # ------------------------------------------------------------------

    def _pool_conninfo(self, connection: TenantConnection) -> str:
        extra: Dict[str, Any] = {
            "connect_timeout": max(1, math.ceil(self.timeout)),
            "application_name": "chainindex",
        }
        if self.statement_timeout_ms:
            extra["options"] = f"-c statement_timeout={int(self.statement_timeout_ms)}"
        return connection.conninfo(**extra)

    async def _open_pool(self, connection: TenantConnection) -> AsyncConnectionPool[AsyncConnection[DictRow]]:
        name = f"{self.pool_name}_{connection.id}"
        logger.info(
            f"Creating tenant pool {name} for {connection.describe()} | "
            f"Config: min={self.min_size}, max={self.max_size}, timeout={self.timeout}s, max_waiting={self.max_waiting}"
        )
        identity = connection.id

        def _reconnect_failed(failed_pool: AsyncConnectionPool) -> None:
            # Runs inside one of the pool's own workers, which close() waits
            # for, so the eviction is scheduled rather than awaited here
            logger.error(f"Tenant pool {failed_pool.name} failed to reconnect, evicting")
            task = asyncio.get_running_loop().create_task(self.evict(identity, pool=failed_pool))
            self._evictions.add(task)
            task.add_done_callback(self._evictions.discard)

        pool = AsyncConnectionPool(
            self._pool_conninfo(connection),
            min_size=self.min_size,
            max_size=self.max_size,
            timeout=self.timeout,
            max_waiting=self.max_waiting,
            max_lifetime=self.max_lifetime,
            max_idle=self.max_idle,
            kwargs={"row_factory": dict_row},
            name=name,
            reconnect_failed=_reconnect_failed,
            open=False,
        )
        try:
            await pool.open(wait=True, timeout=self.timeout)
        except Exception as e:
            info = classify_postgres_error(e)
            logger.error(f"Failed to open tenant pool {name} for {connection.describe()}: {info.code} {info.message}")
            await pool.close()
            raise ConnectivityError(f"Cannot open pool for connection {connection.id}", info=info) from e
        self.pools_created += 1
        return pool

    async def acquire(self, connection: TenantConnection) -> AsyncConnectionPool[AsyncConnection[DictRow]]:
        """
        Return the pool for ``connection.id``, creating it on first use.

        Concurrent callers for the same uncached identity share one in-flight
        open and all receive the single pool it built. If that open fails they
        all see the same error, once, and the next acquire starts a new one.

        Raises:
            ConnectivityError: if a new pool cannot be opened
            RuntimeError: if the registry has been shut down
        """
        identity = connection.id
        fingerprint = connection.fingerprint
        while True:
            if self._closed:
                raise RuntimeError("ConnectionRegistry has been shut down")
            entry = self._pools.get(identity)
            if entry is not None and entry.fingerprint == fingerprint:
                logger.debug(f"Reusing tenant pool {entry.pool.name}")
                return entry.pool

            opening = self._opening.get(identity)
            if opening is None:
                task = asyncio.get_running_loop().create_task(self._replace_pool(connection, fingerprint))
                opening = (fingerprint, task)
                self._opening[identity] = opening
                task.add_done_callback(lambda _, i=identity, o=opening: self._opening_done(i, o))

            opening_fingerprint, task = opening
            if opening_fingerprint == fingerprint:
                # Shielded so a cancelled caller does not abort the open for the others
                return await asyncio.shield(task)
            # An open for older credentials is in flight; let it settle, then rebuild
            await asyncio.wait([task])

    def _opening_done(self, identity: str, opening) -> None:
        if self._opening.get(identity) is opening:
            del self._opening[identity]

    async def _replace_pool(self, connection: TenantConnection, fingerprint: str) -> AsyncConnectionPool:
        stale = self._pools.pop(connection.id, None)
        if stale is not None:
            logger.info(f"Credentials changed for connection {connection.id}, rebuilding its pool")
            await self._close_pool(stale.pool)
        pool = await self._open_pool(connection)
        if self._closed:
            await self._close_pool(pool)
            raise RuntimeError("ConnectionRegistry has been shut down")
        self._pools[connection.id] = _PoolEntry(pool=pool, fingerprint=fingerprint)
        return pool

    async def _close_pool(self, pool: AsyncConnectionPool) -> None:
        try:
            await pool.close()
        except Exception as e:
            logger.error(f"Error closing tenant pool {pool.name}: {e}")

    async def evict(self, identity: str, pool: Optional[AsyncConnectionPool] = None) -> bool:
        """
        Remove and close the pool cached for ``identity``.

        When ``pool`` is given, only that exact pool is evicted, so a failure
        observed on an old pool never tears down its replacement.
        """
        entry = self._pools.get(identity)
        if entry is None or (pool is not None and entry.pool is not pool):
            return False
        self._pools.pop(identity, None)
        logger.info(f"Evicting tenant pool {entry.pool.name}")
        await self._close_pool(entry.pool)
        return True

    async def shutdown(self) -> None:
        """Close every cached pool. The registry refuses new acquires afterwards."""
        self._closed = True
        pending = [task for _, task in self._opening.values()] + list(self._evictions)
        if pending:
            await asyncio.wait(pending)
        entries = list(self._pools.items())
        self._pools.clear()
        for identity, entry in entries:
            logger.info(f"Closing tenant pool {entry.pool.name}")
            await self._close_pool(entry.pool)

    # ------------------------------------------------------------------
    # Query execution
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def connection(self, connection: TenantConnection):
        """
        Borrow a pooled connection for several statements in one transaction.

        The connection returns to the pool when the block exits; the
        transaction commits on success and rolls back on error. Pool-fatal
        errors evict the pool before being re-raised.
        """
        pool = await self.acquire(connection)
        acquire_start = time.time()
        try:
            async with pool.connection(timeout=self.timeout) as conn:
                logger.debug(f"Connection acquired from {pool.name} in {(time.time() - acquire_start) * 1000:.1f}ms")
                yield conn
        except Exception as e:
            info = classify_postgres_error(e)
            if info.pool_fatal:
                logger.warning(f"Pool-fatal error on {pool.name} ({info.code}), evicting")
                await self.evict(connection.id, pool=pool)
            raise

    async def execute(self, connection: TenantConnection, query, params: Params = None) -> List[Dict[str, Any]]:
        """
        Run one statement on a pooled connection and return its rows.

        Statements without a result set return an empty list. Errors are
        raised to the caller and never retried here.
        """
        async with self.connection(connection) as conn:
            async with conn.cursor() as cursor:
                await cursor.execute(query, params)
                if cursor.description is None:
                    return []
                return await cursor.fetchall()

    # ------------------------------------------------------------------
    # Connectivity probe
    # ------------------------------------------------------------------

    async def probe(self, connection: TenantConnection, timeout: Optional[float] = None) -> bool:
        """
        Check that a database is reachable with the given credentials.

        Uses a short-lived connection outside the pool cache, runs a trivial
        query and closes it. The whole attempt is bounded by ``timeout``
        seconds (default ``probe_timeout``).
        """
        timeout = self.probe_timeout if timeout is None else timeout
        conninfo = connection.conninfo(connect_timeout=max(1, math.ceil(timeout)))

        async def _probe_once() -> None:
            async with await psycopg.AsyncConnection.connect(conninfo, autocommit=True) as conn:
                await conn.execute("SELECT NOW()")

        try:
            await asyncio.wait_for(_probe_once(), timeout=timeout)
            logger.debug(f"Connectivity probe succeeded for {connection.describe()}")
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Connectivity probe timed out after {timeout}s for {connection.describe()}")
            return False
        except Exception as e:
            info = classify_postgres_error(e)
            logger.warning(f"Connectivity probe failed for {connection.describe()}: {info.code} {info.message}")
            return False

    def stats(self) -> Dict[str, Dict[str, Any]]:
        """Per-identity pool statistics."""
        stats = {}
        for identity, entry in self._pools.items():
            try:
                pool_stats = entry.pool.get_stats()
                stats[identity] = {
                    "name": entry.pool.name,
                    "size": pool_stats.get("pool_size", 0),
                    "available": pool_stats.get("pool_available", 0),
                    "waiting": pool_stats.get("requests_waiting", 0),
                    "age_seconds": round(time.time() - entry.created_at, 1),
                }
            except Exception as e:
                logger.debug(f"Could not get stats for tenant pool {identity}: {e}")
                stats[identity] = {"error": str(e)}
        return stats
