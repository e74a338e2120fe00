import re
import uuid
from collections import defaultdict
from datetime import datetime, timezone

import pytest

from chainindex.core.models import (
    IndexingJob,
    IndexingStatus,
    IngestionLogEntry,
    LogLevel,
    TenantConnection,
)

WEBHOOK_SECRET = "test-webhook-secret"

_INSERT_RE = re.compile(r'INSERT INTO "?(\w+)"? \(([^)]*)\) VALUES', re.S)


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: needs a live PostgreSQL (CHAININDEX_TEST_POSTGRES_DSN)")


class FakeStore:
    """In-memory stand-in for MetadataStore."""

    def __init__(self):
        self.connections = {}
        self.jobs = {}
        self.logs = []
        self.get_job_calls = 0
        self.fail_get_job = None

    @staticmethod
    def _now():
        return datetime.now(timezone.utc)

    # connections
    async def create_connection(self, tenant_id, name, host, port, database, username, password, is_active=False):
        connection = TenantConnection(
            id=uuid.uuid4().hex, tenant_id=tenant_id, name=name, host=host, port=port,
            database=database, username=username, password=password, is_active=is_active,
            created_at=self._now(), updated_at=self._now(),
        )
        self.connections[connection.id] = connection
        return connection.model_copy()

    async def get_connection(self, connection_id, tenant_id=None):
        connection = self.connections.get(connection_id)
        if connection is None or (tenant_id is not None and connection.tenant_id != tenant_id):
            return None
        return connection.model_copy()

    async def list_connections(self, tenant_id):
        return [c.model_copy() for c in self.connections.values() if c.tenant_id == tenant_id]

    async def update_connection(self, connection_id, fields):
        connection = self.connections.get(connection_id)
        if connection is None:
            return None
        updated = TenantConnection(**{**connection.model_dump(), **fields, "updated_at": self._now()})
        self.connections[connection_id] = updated
        return updated.model_copy()

    async def set_connection_active(self, connection_id, is_active):
        if connection_id in self.connections:
            self.connections[connection_id] = self.connections[connection_id].model_copy(update={"is_active": is_active})

    async def delete_connection(self, connection_id):
        return self.connections.pop(connection_id, None) is not None

    async def count_jobs_for_connection(self, connection_id):
        return sum(1 for j in self.jobs.values() if j.connection_id == connection_id)

    # jobs
    async def create_job(self, tenant_id, name, data_type, config, connection_id, description=None):
        job = IndexingJob(
            id=uuid.uuid4().hex, tenant_id=tenant_id, name=name, description=description,
            data_type=data_type, config=config or {}, connection_id=connection_id,
            created_at=self._now(), updated_at=self._now(),
        )
        self.jobs[job.id] = job
        return job.model_copy()

    def add_job(self, **fields):
        job = IndexingJob(id=fields.pop("id", uuid.uuid4().hex), **fields)
        self.jobs[job.id] = job
        return job

    async def get_job(self, job_id, tenant_id=None, include_connection=False):
        self.get_job_calls += 1
        if self.fail_get_job is not None:
            raise self.fail_get_job
        job = self.jobs.get(job_id)
        if job is None or (tenant_id is not None and job.tenant_id != tenant_id):
            return None
        job = job.model_copy()
        if include_connection:
            job.connection = self.connections.get(job.connection_id)
        return job

    async def list_jobs(self, tenant_id):
        return [j.model_copy() for j in self.jobs.values() if j.tenant_id == tenant_id]

    async def update_job(self, job_id, fields):
        if job_id not in self.jobs:
            return None
        self.jobs[job_id] = self.jobs[job_id].model_copy(update=fields)
        return self.jobs[job_id].model_copy()

    async def set_job_status(self, job_id, status, stamp_last_run=False):
        if job_id not in self.jobs:
            return None
        update = {"status": IndexingStatus(status)}
        if stamp_last_run:
            update["last_run"] = self._now()
        self.jobs[job_id] = self.jobs[job_id].model_copy(update=update)
        return self.jobs[job_id].model_copy()

    async def set_job_subscription(self, job_id, subscription_id):
        if job_id in self.jobs:
            self.jobs[job_id] = self.jobs[job_id].model_copy(update={"subscription_id": subscription_id})

    async def delete_job(self, job_id):
        self.logs = [entry for entry in self.logs if entry.job_id != job_id]
        return self.jobs.pop(job_id, None) is not None

    # logs
    async def append_log(self, job_id, level, message, metadata=None):
        self.logs.append(IngestionLogEntry(
            id=len(self.logs) + 1, job_id=job_id, timestamp=self._now(),
            level=LogLevel(level), message=message, metadata=metadata or {},
        ))

    async def append_log_if_job_exists(self, job_id, level, message, metadata=None):
        if job_id not in self.jobs:
            return False
        await self.append_log(job_id, level, message, metadata)
        return True

    async def list_logs(self, job_id, limit=20):
        entries = [e for e in self.logs if e.job_id == job_id]
        return list(reversed(entries))[:limit]

    def logs_for(self, job_id, level=None):
        return [e for e in self.logs if e.job_id == job_id and (level is None or e.level == level)]


class FakeTenantDatabase:
    """
    Stand-in for ConnectionRegistry backed by in-memory tables.

    Understands the single-row INSERT ... ON CONFLICT statements the
    processors issue and the token price statement; anything else (DDL) is
    recorded and answers no rows.
    """

    def __init__(self):
        self.tables = defaultdict(list)
        self.unique = {}
        self.executed = []
        self.error = None
        self.fail_on = None
        self.probe_result = True
        self.probed = []
        self.evicted = []

    async def execute(self, connection, query, params=None):
        self.executed.append((query, params))
        if self.error is not None:
            raise self.error
        if self.fail_on is not None and self.fail_on in query:
            raise RuntimeError(f"statement failed: {self.fail_on}")

        if "token_price_history" in query and isinstance(params, dict):
            return self._token_price(params)

        match = _INSERT_RE.search(query)
        if match is None:
            return []
        table = match.group(1)
        columns = [c.strip().strip('"') for c in match.group(2).split(",")]
        row = dict(zip(columns, params))
        key = self.unique.get(table, "transaction_signature" if "transaction_signature" in columns else None)
        if key is not None and any(r.get(key) == row.get(key) for r in self.tables[table]):
            return []
        self.tables[table].append(row)
        return [{"id": len(self.tables[table])}]

    def _token_price(self, params):
        history = self.tables["token_price_history"]
        key = (params["token_mint"], params["platform"], params["observed_at"])
        if any((r["token_mint"], r["platform"], r["timestamp"]) == key for r in history):
            return []
        history.append({
            "token_mint": params["token_mint"], "platform": params["platform"],
            "price_usd": params["price_usd"], "volume_usd": params["volume_usd"],
            "timestamp": params["observed_at"],
        })
        current = [
            r for r in self.tables["token_prices"]
            if r["token_mint"] == params["token_mint"] and r["platform"] == params["platform"]
        ]
        values = {
            "price_usd": params["price_usd"],
            "volume_24h_usd": params["volume_usd"],
            "last_updated_at": params["observed_at"],
        }
        if current:
            current[0].update(values)
        else:
            self.tables["token_prices"].append({
                "token_mint": params["token_mint"], "platform": params["platform"], **values,
            })
        return [{"id": len(history)}]

    async def probe(self, connection, timeout=None):
        self.probed.append(connection)
        return self.probe_result

    async def evict(self, identity, pool=None):
        self.evicted.append(identity)
        return True


class FakeSubscriptions:
    def __init__(self, webhook_id="wh-1", unsubscribe_error=None):
        self.webhook_id = webhook_id
        self.unsubscribe_error = unsubscribe_error
        self.subscribed = []
        self.unsubscribed = []

    async def subscribe(self, job):
        self.subscribed.append(job.id)
        return self.webhook_id

    async def unsubscribe(self, subscription_id):
        if self.unsubscribe_error is not None:
            raise self.unsubscribe_error
        self.unsubscribed.append(subscription_id)


def make_connection(**overrides):
    fields = {
        "id": "conn-1",
        "tenant_id": "tenant-1",
        "name": "analytics",
        "host": "db.example.com",
        "port": 5432,
        "database": "chain",
        "username": "indexer",
        "password": "hunter2",
        "is_active": True,
    }
    fields.update(overrides)
    return TenantConnection(**fields)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def tenant_db():
    return FakeTenantDatabase()


@pytest.fixture
def connection(store):
    conn = make_connection()
    store.connections[conn.id] = conn
    return conn


@pytest.fixture
def settings_env():
    return {
        "POSTGRES_USER": "chainindex",
        "POSTGRES_PASSWORD": "metadata-pass",
        "POSTGRES_DB": "chainindex",
        "POSTGRES_HOST": "localhost",
        "POSTGRES_PORT": "5432",
        "CHAININDEX_PUBLIC_URL": "https://indexer.example.com/",
        "CHAININDEX_WEBHOOK_SECRET": WEBHOOK_SECRET,
        "HELIUS_API_URL": "https://api.helius.test/v0",
        "HELIUS_API_KEY": "helius-key",
    }


@pytest.fixture
def connection_factory():
    return make_connection


@pytest.fixture
def webhook_secret():
    return WEBHOOK_SECRET


@pytest.fixture
def subscriptions_factory():
    return FakeSubscriptions
