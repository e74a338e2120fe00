import json

import pytest
from fastapi.testclient import TestClient

from chainindex.core.models import IndexingStatus, LogLevel
from chainindex.indexing.lifecycle import JobLifecycle
from chainindex.indexing.router import IngestionRouter
from chainindex.server.app import _create_app
from chainindex.tenant.provisioner import SchemaProvisioner

TENANT = {"X-Tenant-Id": "tenant-1"}

CONNECTION_BODY = {
    "name": "analytics",
    "host": "db.example.com",
    "port": 5432,
    "database": "chain",
    "username": "indexer",
    "password": "hunter2",
}


@pytest.fixture
def subscriptions(subscriptions_factory):
    return subscriptions_factory()


@pytest.fixture
def client(store, tenant_db, subscriptions, webhook_secret):
    app = _create_app()
    app.state.store = store
    app.state.registry = tenant_db
    app.state.lifecycle = JobLifecycle(store, SchemaProvisioner(tenant_db), subscriptions)
    app.state.ingestion_router = IngestionRouter(store, tenant_db, webhook_secret)
    return TestClient(app)


def _create_job(client, connection_id, data_type="NFT_BIDS", config=None):
    return client.post("/api/indexing-jobs", headers=TENANT, json={
        "name": "bids",
        "data_type": data_type,
        "config": config if config is not None else {"mint": "Mint1"},
        "connection_id": connection_id,
    })


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_missing_tenant_header_is_unauthorized(client):
    assert client.get("/api/connections").status_code == 401


def test_create_connection_probes_and_hides_password(client, tenant_db):
    response = client.post("/api/connections", headers=TENANT, json=CONNECTION_BODY)

    assert response.status_code == 201
    body = response.json()
    assert body["is_active"] is True
    assert "password" not in body
    assert "hunter2" not in response.text
    assert len(tenant_db.probed) == 1


def test_unreachable_connection_is_stored_inactive(client, tenant_db):
    tenant_db.probe_result = False

    body = client.post("/api/connections", headers=TENANT, json=CONNECTION_BODY).json()

    assert body["is_active"] is False


def test_connection_list_and_get_never_return_password(client, connection):
    listed = client.get("/api/connections", headers=TENANT)
    fetched = client.get(f"/api/connections/{connection.id}", headers=TENANT)

    assert [c["id"] for c in listed.json()["items"]] == [connection.id]
    assert fetched.json()["host"] == "db.example.com"
    assert "hunter2" not in listed.text + fetched.text


def test_connection_of_other_tenant_is_not_found(client, connection):
    response = client.get(f"/api/connections/{connection.id}", headers={"X-Tenant-Id": "tenant-2"})

    assert response.status_code == 404


def test_credential_update_evicts_pool_and_reprobes(client, connection, tenant_db):
    response = client.put(f"/api/connections/{connection.id}", headers=TENANT, json={"password": "rotated"})

    assert response.status_code == 200
    assert tenant_db.evicted == [connection.id]
    assert tenant_db.probed[-1].password.get_secret_value() == "rotated"
    assert "rotated" not in response.text


def test_rename_does_not_evict_pool(client, connection, tenant_db):
    response = client.put(f"/api/connections/{connection.id}", headers=TENANT, json={"name": "renamed"})

    assert response.json()["name"] == "renamed"
    assert tenant_db.evicted == []


def test_test_endpoint_updates_active_flag(client, connection, store, tenant_db):
    tenant_db.probe_result = False

    response = client.post(f"/api/connections/{connection.id}/test", headers=TENANT)

    assert response.json() == {"id": connection.id, "is_active": False}
    assert store.connections[connection.id].is_active is False


def test_delete_connection_refused_while_jobs_reference_it(client, connection, store):
    store.add_job(id="job-1", tenant_id="tenant-1", name="j", data_type="NFT_BIDS", connection_id=connection.id)

    response = client.delete(f"/api/connections/{connection.id}", headers=TENANT)

    assert response.status_code == 400
    assert connection.id in store.connections


def test_delete_unused_connection(client, connection, store, tenant_db):
    response = client.delete(f"/api/connections/{connection.id}", headers=TENANT)

    assert response.json() == {"success": True}
    assert connection.id not in store.connections
    assert tenant_db.evicted == [connection.id]


def test_create_job_provisions_and_subscribes(client, connection, store, tenant_db, subscriptions):
    response = _create_job(client, connection.id)

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "INACTIVE"
    assert body["subscription_id"] == "wh-1"
    assert body["connection"]["id"] == connection.id
    assert subscriptions.subscribed == [body["id"]]
    assert any('"nft_bids"' in q for q, _ in tenant_db.executed)


def test_create_job_with_unknown_connection(client):
    assert _create_job(client, "missing").status_code == 404


def test_create_job_with_unsupported_data_type(client, connection, store):
    response = _create_job(client, connection.id, data_type="NFT_MINTS")

    assert response.status_code == 400
    assert store.jobs == {}


def test_create_job_keeps_record_when_provisioning_fails(client, connection, store, tenant_db, subscriptions):
    tenant_db.fail_on = "CREATE TABLE"

    response = _create_job(client, connection.id)

    assert response.status_code == 500
    assert response.json() == {"detail": "Failed to create tables in the database"}
    (job,) = store.jobs.values()
    assert job.status == IndexingStatus.INACTIVE
    assert subscriptions.subscribed == []


def test_get_job_includes_recent_logs(client, connection, store):
    job_id = _create_job(client, connection.id).json()["id"]

    body = client.get(f"/api/indexing-jobs/{job_id}", headers=TENANT).json()

    assert body["connection"]["host"] == "db.example.com"
    assert [entry["message"] for entry in body["logs"]] == ["Tables provisioned"]


def test_update_job_cannot_change_data_type(client, connection):
    job_id = _create_job(client, connection.id).json()["id"]

    response = client.put(f"/api/indexing-jobs/{job_id}", headers=TENANT, json={"data_type": "NFT_PRICES"})

    assert response.status_code == 400


def test_job_actions(client, connection):
    job_id = _create_job(client, connection.id).json()["id"]

    started = client.post(f"/api/indexing-jobs/{job_id}/actions", headers=TENANT, json={"action": "start"})
    paused = client.post(f"/api/indexing-jobs/{job_id}/actions", headers=TENANT, json={"action": "pause"})

    assert started.json()["status"] == "ACTIVE"
    assert started.json()["last_run"] is not None
    assert paused.json()["status"] == "PAUSED"


def test_invalid_action_is_rejected(client, connection, store):
    job_id = _create_job(client, connection.id).json()["id"]

    response = client.post(f"/api/indexing-jobs/{job_id}/actions", headers=TENANT, json={"action": "restart"})

    assert response.status_code == 400
    assert store.jobs[job_id].status == IndexingStatus.INACTIVE


def test_start_requires_active_connection(client, connection, store):
    job_id = _create_job(client, connection.id).json()["id"]
    store.connections[connection.id] = connection.model_copy(update={"is_active": False})

    started = client.post(f"/api/indexing-jobs/{job_id}/actions", headers=TENANT, json={"action": "start"})
    stopped = client.post(f"/api/indexing-jobs/{job_id}/actions", headers=TENANT, json={"action": "stop"})

    assert started.status_code == 400
    assert stopped.status_code == 200


def test_delete_job_removes_webhook_and_logs(client, connection, store, subscriptions):
    job_id = _create_job(client, connection.id).json()["id"]

    response = client.delete(f"/api/indexing-jobs/{job_id}", headers=TENANT)

    assert response.json() == {"success": True}
    assert subscriptions.unsubscribed == ["wh-1"]
    assert job_id not in store.jobs
    assert store.logs_for(job_id) == []


def test_logs_endpoint_limit(client, connection, store):
    job_id = _create_job(client, connection.id).json()["id"]

    body = client.get(f"/api/indexing-jobs/{job_id}/logs", headers=TENANT, params={"limit": 1}).json()

    assert body["job_id"] == job_id
    assert len(body["items"]) == 1
    assert client.get(f"/api/indexing-jobs/{job_id}/logs", headers=TENANT, params={"limit": 0}).status_code == 422


def _event(signature="sigA"):
    return {
        "transactionSignature": signature,
        "timestamp": 1700000000000,
        "metadata": {"amount": 1000, "buyer": "Buyer1", "nft": {"mint": "Mint1"}},
    }


@pytest.fixture
def active_job(store, connection):
    return store.add_job(
        id="job-live", tenant_id="tenant-1", name="bids", data_type="NFT_BIDS",
        config={"mint": "Mint1"}, status=IndexingStatus.ACTIVE, connection_id=connection.id,
    )


def test_webhook_delivery_writes_row(client, active_job, tenant_db, webhook_secret):
    response = client.post(
        f"/webhooks/helius/{active_job.id}",
        headers={"Authorization": f"Bearer {webhook_secret}"},
        content=json.dumps([_event("sig1"), _event("sig2")]),
    )

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert len(tenant_db.tables["nft_bids"]) == 2


def test_webhook_with_bad_secret(client, active_job, store, tenant_db):
    response = client.post(
        f"/webhooks/helius/{active_job.id}",
        headers={"Authorization": "Bearer nope"},
        json=_event(),
    )

    assert response.status_code == 401
    assert tenant_db.executed == []
    assert store.logs_for(active_job.id, LogLevel.ERROR)


def test_webhook_for_unknown_job(client, webhook_secret):
    response = client.post(
        "/webhooks/helius/missing",
        headers={"Authorization": f"Bearer {webhook_secret}"},
        json=_event(),
    )

    assert response.status_code == 404


def test_webhook_for_unknown_provider(client, active_job, webhook_secret):
    response = client.post(
        f"/webhooks/other/{active_job.id}",
        headers={"Authorization": f"Bearer {webhook_secret}"},
        json=_event(),
    )

    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "unknown_provider"}


def test_webhook_with_processing_failure_answers_200(client, active_job, webhook_secret):
    event = _event()
    del event["metadata"]["amount"]

    response = client.post(
        f"/webhooks/helius/{active_job.id}",
        headers={"Authorization": f"Bearer {webhook_secret}"},
        json=event,
    )

    assert response.status_code == 200
    assert response.json()["success"] is False
