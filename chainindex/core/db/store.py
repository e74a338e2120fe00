"""
Metadata store: tenant connections, indexing jobs and their ingestion logs.

Backed by the service's own PostgreSQL database through a psycopg async pool.
All statements are parameterized; the tenant password column is only read
where a live ``TenantConnection`` is needed and is never returned by the API.
"""
import uuid
from typing import Any, Dict, List, Optional

from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from chainindex.core.logger import setup_logger
from chainindex.core.models import (
    IndexingJob,
    IndexingStatus,
    IngestionLogEntry,
    LogLevel,
    TenantConnection,
)
from chainindex.core.sanitize import sanitize_sensitive_data

logger = setup_logger(__name__, include_location=True)

SCHEMA_DDL = [
    """
    CREATE TABLE IF NOT EXISTS tenant_connection (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        name TEXT NOT NULL,
        host TEXT NOT NULL,
        port INTEGER NOT NULL,
        database TEXT NOT NULL,
        username TEXT NOT NULL,
        password TEXT NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tenant_connection_tenant ON tenant_connection (tenant_id)",
    """
    CREATE TABLE IF NOT EXISTS indexing_job (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        name TEXT NOT NULL,
        description TEXT,
        data_type TEXT NOT NULL,
        config JSONB NOT NULL DEFAULT '{}'::jsonb,
        status TEXT NOT NULL DEFAULT 'INACTIVE',
        connection_id TEXT NOT NULL REFERENCES tenant_connection (id),
        subscription_id TEXT,
        last_run TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_indexing_job_tenant ON indexing_job (tenant_id)",
    "CREATE INDEX IF NOT EXISTS idx_indexing_job_connection ON indexing_job (connection_id)",
    """
    CREATE TABLE IF NOT EXISTS indexing_log (
        id BIGSERIAL PRIMARY KEY,
        job_id TEXT NOT NULL REFERENCES indexing_job (id) ON DELETE CASCADE,
        timestamp TIMESTAMPTZ NOT NULL DEFAULT now(),
        level TEXT NOT NULL,
        message TEXT NOT NULL,
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_indexing_log_job_ts ON indexing_log (job_id, timestamp DESC)",
]

_CONNECTION_COLUMNS = "id, tenant_id, name, host, port, database, username, password, is_active, created_at, updated_at"
_JOB_COLUMNS = (
    "id, tenant_id, name, description, data_type, config, status, connection_id, "
    "subscription_id, last_run, created_at, updated_at"
)
_UPDATABLE_CONNECTION_FIELDS = ("name", "host", "port", "database", "username", "password")
_UPDATABLE_JOB_FIELDS = ("name", "description", "config")


def new_id() -> str:
    return uuid.uuid4().hex


def _connection_from_row(row: Dict[str, Any], prefix: str = "") -> TenantConnection:
    return TenantConnection(
        id=row[f"{prefix}id"],
        tenant_id=row[f"{prefix}tenant_id"],
        name=row[f"{prefix}name"],
        host=row[f"{prefix}host"],
        port=row[f"{prefix}port"],
        database=row[f"{prefix}database"],
        username=row[f"{prefix}username"],
        password=row[f"{prefix}password"],
        is_active=row[f"{prefix}is_active"],
        created_at=row[f"{prefix}created_at"],
        updated_at=row[f"{prefix}updated_at"],
    )


def _job_from_row(row: Dict[str, Any]) -> IndexingJob:
    return IndexingJob(
        id=row["id"],
        tenant_id=row["tenant_id"],
        name=row["name"],
        description=row["description"],
        data_type=row["data_type"],
        config=row["config"] or {},
        status=IndexingStatus(row["status"]),
        connection_id=row["connection_id"],
        subscription_id=row["subscription_id"],
        last_run=row["last_run"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class MetadataStore:
    """CRUD over the metadata tables."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    async def _fetchone(self, query: str, params: Any = None) -> Optional[Dict[str, Any]]:
        async with self.pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cursor:
                await cursor.execute(query, params)
                if cursor.description is None:
                    return None
                return await cursor.fetchone()

    async def _fetchall(self, query: str, params: Any = None) -> List[Dict[str, Any]]:
        async with self.pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cursor:
                await cursor.execute(query, params)
                return await cursor.fetchall()

    async def ensure_schema(self) -> None:
        """Create the metadata tables if they do not exist."""
        async with self.pool.connection() as conn:
            for statement in SCHEMA_DDL:
                await conn.execute(statement)
        logger.info("Metadata schema ensured")

    # ------------------------------------------------------------------
    # Tenant connections
    # ------------------------------------------------------------------

    async def create_connection(
            self,
            tenant_id: str,
            name: str,
            host: str,
            port: int,
            database: str,
            username: str,
            password: str,
            is_active: bool = False,
    ) -> TenantConnection:
        row = await self._fetchone(
            f"""
            INSERT INTO tenant_connection (id, tenant_id, name, host, port, database, username, password, is_active)
            VALUES (%(id)s, %(tenant_id)s, %(name)s, %(host)s, %(port)s, %(database)s, %(username)s, %(password)s, %(is_active)s)
            RETURNING {_CONNECTION_COLUMNS}
            """,
            {
                "id": new_id(),
                "tenant_id": tenant_id,
                "name": name,
                "host": host,
                "port": port,
                "database": database,
                "username": username,
                "password": password,
                "is_active": is_active,
            },
        )
        return _connection_from_row(row)

    async def get_connection(self, connection_id: str, tenant_id: Optional[str] = None) -> Optional[TenantConnection]:
        query = f"SELECT {_CONNECTION_COLUMNS} FROM tenant_connection WHERE id = %(id)s"
        params: Dict[str, Any] = {"id": connection_id}
        if tenant_id is not None:
            query += " AND tenant_id = %(tenant_id)s"
            params["tenant_id"] = tenant_id
        row = await self._fetchone(query, params)
        return _connection_from_row(row) if row else None

    async def list_connections(self, tenant_id: str) -> List[TenantConnection]:
        rows = await self._fetchall(
            f"SELECT {_CONNECTION_COLUMNS} FROM tenant_connection WHERE tenant_id = %(tenant_id)s ORDER BY created_at DESC",
            {"tenant_id": tenant_id},
        )
        return [_connection_from_row(r) for r in rows]

    async def update_connection(self, connection_id: str, fields: Dict[str, Any]) -> Optional[TenantConnection]:
        updates = {k: v for k, v in fields.items() if k in _UPDATABLE_CONNECTION_FIELDS and v is not None}
        if not updates:
            return await self.get_connection(connection_id)
        assignments = ", ".join(f"{column} = %({column})s" for column in updates)
        row = await self._fetchone(
            f"""
            UPDATE tenant_connection SET {assignments}, updated_at = now()
            WHERE id = %(id)s
            RETURNING {_CONNECTION_COLUMNS}
            """,
            {**updates, "id": connection_id},
        )
        return _connection_from_row(row) if row else None

    async def set_connection_active(self, connection_id: str, is_active: bool) -> None:
        await self._fetchone(
            "UPDATE tenant_connection SET is_active = %(is_active)s, updated_at = now() WHERE id = %(id)s",
            {"id": connection_id, "is_active": is_active},
        )

    async def delete_connection(self, connection_id: str) -> bool:
        row = await self._fetchone(
            "DELETE FROM tenant_connection WHERE id = %(id)s RETURNING id",
            {"id": connection_id},
        )
        return row is not None

    async def count_jobs_for_connection(self, connection_id: str) -> int:
        row = await self._fetchone(
            "SELECT count(*) AS n FROM indexing_job WHERE connection_id = %(id)s",
            {"id": connection_id},
        )
        return int(row["n"]) if row else 0

    # ------------------------------------------------------------------
    # Indexing jobs
    # ------------------------------------------------------------------

    async def create_job(
            self,
            tenant_id: str,
            name: str,
            data_type: str,
            config: Dict[str, Any],
            connection_id: str,
            description: Optional[str] = None,
    ) -> IndexingJob:
        row = await self._fetchone(
            f"""
            INSERT INTO indexing_job (id, tenant_id, name, description, data_type, config, status, connection_id)
            VALUES (%(id)s, %(tenant_id)s, %(name)s, %(description)s, %(data_type)s, %(config)s, %(status)s, %(connection_id)s)
            RETURNING {_JOB_COLUMNS}
            """,
            {
                "id": new_id(),
                "tenant_id": tenant_id,
                "name": name,
                "description": description,
                "data_type": data_type,
                "config": Json(config or {}),
                "status": IndexingStatus.INACTIVE.value,
                "connection_id": connection_id,
            },
        )
        return _job_from_row(row)

    async def get_job(
            self,
            job_id: str,
            tenant_id: Optional[str] = None,
            include_connection: bool = False,
    ) -> Optional[IndexingJob]:
        params: Dict[str, Any] = {"id": job_id}
        tenant_clause = ""
        if tenant_id is not None:
            tenant_clause = " AND j.tenant_id = %(tenant_id)s"
            params["tenant_id"] = tenant_id

        if not include_connection:
            row = await self._fetchone(
                f"SELECT {_JOB_COLUMNS} FROM indexing_job j WHERE j.id = %(id)s{tenant_clause}",
                params,
            )
            return _job_from_row(row) if row else None

        connection_columns = ", ".join(f"c.{c.strip()} AS c_{c.strip()}" for c in _CONNECTION_COLUMNS.split(","))
        job_columns = ", ".join(f"j.{c.strip()}" for c in _JOB_COLUMNS.split(","))
        row = await self._fetchone(
            f"""
            SELECT {job_columns}, {connection_columns}
            FROM indexing_job j
            LEFT JOIN tenant_connection c ON c.id = j.connection_id
            WHERE j.id = %(id)s{tenant_clause}
            """,
            params,
        )
        if not row:
            return None
        job = _job_from_row(row)
        if row.get("c_id") is not None:
            job.connection = _connection_from_row(row, prefix="c_")
        return job

    async def list_jobs(self, tenant_id: str) -> List[IndexingJob]:
        rows = await self._fetchall(
            f"SELECT {_JOB_COLUMNS} FROM indexing_job WHERE tenant_id = %(tenant_id)s ORDER BY updated_at DESC",
            {"tenant_id": tenant_id},
        )
        return [_job_from_row(r) for r in rows]

    async def update_job(self, job_id: str, fields: Dict[str, Any]) -> Optional[IndexingJob]:
        """Update user editable fields; data type, status and connection are not editable here."""
        updates = {k: v for k, v in fields.items() if k in _UPDATABLE_JOB_FIELDS and v is not None}
        if not updates:
            return await self.get_job(job_id)
        if "config" in updates:
            updates["config"] = Json(updates["config"])
        assignments = ", ".join(f"{column} = %({column})s" for column in updates)
        row = await self._fetchone(
            f"UPDATE indexing_job SET {assignments}, updated_at = now() WHERE id = %(id)s RETURNING {_JOB_COLUMNS}",
            {**updates, "id": job_id},
        )
        return _job_from_row(row) if row else None

    async def set_job_status(self, job_id: str, status: IndexingStatus, stamp_last_run: bool = False) -> Optional[IndexingJob]:
        last_run = ", last_run = now()" if stamp_last_run else ""
        row = await self._fetchone(
            f"""
            UPDATE indexing_job SET status = %(status)s{last_run}, updated_at = now()
            WHERE id = %(id)s
            RETURNING {_JOB_COLUMNS}
            """,
            {"id": job_id, "status": IndexingStatus(status).value},
        )
        return _job_from_row(row) if row else None

    async def set_job_subscription(self, job_id: str, subscription_id: Optional[str]) -> None:
        await self._fetchone(
            "UPDATE indexing_job SET subscription_id = %(subscription_id)s, updated_at = now() WHERE id = %(id)s",
            {"id": job_id, "subscription_id": subscription_id},
        )

    async def delete_job(self, job_id: str) -> bool:
        row = await self._fetchone("DELETE FROM indexing_job WHERE id = %(id)s RETURNING id", {"id": job_id})
        return row is not None

    # ------------------------------------------------------------------
    # Ingestion logs
    # ------------------------------------------------------------------

    async def append_log(
            self,
            job_id: str,
            level: LogLevel,
            message: str,
            metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self._fetchone(
            """
            INSERT INTO indexing_log (job_id, level, message, metadata)
            VALUES (%(job_id)s, %(level)s, %(message)s, %(metadata)s)
            """,
            {
                "job_id": job_id,
                "level": LogLevel(level).value,
                "message": message,
                "metadata": Json(sanitize_sensitive_data(metadata or {})),
            },
        )

    async def append_log_if_job_exists(
            self,
            job_id: str,
            level: LogLevel,
            message: str,
            metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Append a log entry only when ``job_id`` names an existing job, in one statement."""
        row = await self._fetchone(
            """
            INSERT INTO indexing_log (job_id, level, message, metadata)
            SELECT %(job_id)s, %(level)s, %(message)s, %(metadata)s
            WHERE EXISTS (SELECT 1 FROM indexing_job WHERE id = %(job_id)s)
            RETURNING id
            """,
            {
                "job_id": job_id,
                "level": LogLevel(level).value,
                "message": message,
                "metadata": Json(sanitize_sensitive_data(metadata or {})),
            },
        )
        return row is not None

    async def list_logs(self, job_id: str, limit: int = 20) -> List[IngestionLogEntry]:
        rows = await self._fetchall(
            """
            SELECT id, job_id, timestamp, level, message, metadata
            FROM indexing_log WHERE job_id = %(job_id)s
            ORDER BY timestamp DESC, id DESC
            LIMIT %(limit)s
            """,
            {"job_id": job_id, "limit": limit},
        )
        return [
            IngestionLogEntry(
                id=r["id"], job_id=r["job_id"], timestamp=r["timestamp"],
                level=LogLevel(r["level"]), message=r["message"], metadata=r["metadata"] or {},
            )
            for r in rows
        ]


async def log_job_event(
        store,
        job_id: str,
        message: str,
        level: LogLevel = LogLevel.INFO,
        metadata: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Append an IngestionLog entry for a job, never raising.

    Failures are logged and swallowed; the caller always proceeds.
    """
    try:
        await store.append_log(job_id, level, message, metadata)
    except Exception as e:
        logger.error(f"Error writing ingestion log for job {job_id}: {e}")
