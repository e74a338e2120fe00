import json

import pytest

from chainindex.core.models import IndexingStatus, LogLevel
from chainindex.indexing.router import IngestionReason, IngestionRouter, IngestionState, parse_events
from chainindex.core.errors import ValidationError


def _body(signature="sigA", **metadata):
    if not metadata:
        metadata = {"amount": 1000, "buyer": "Buyer1", "nft": {"mint": "Mint1"}}
    return json.dumps({
        "transactionSignature": signature,
        "timestamp": 1700000000000,
        "metadata": metadata,
    }).encode()


@pytest.fixture
def router(store, tenant_db, webhook_secret):
    return IngestionRouter(store, tenant_db, webhook_secret)


@pytest.fixture
def auth(webhook_secret):
    return f"Bearer {webhook_secret}"


@pytest.fixture
def bid_job(store, connection):
    return store.add_job(
        id="job-bids", tenant_id="tenant-1", name="bids", data_type="NFT_BIDS",
        config={"mint": "Mint1"}, status=IndexingStatus.ACTIVE, connection_id=connection.id,
    )


def test_parse_events_accepts_object_and_array():
    assert len(parse_events(_body())) == 1
    array = json.dumps([json.loads(_body("a")), json.loads(_body("b"))])
    assert [e.transaction_signature for e in parse_events(array)] == ["a", "b"]


@pytest.mark.parametrize("body", [b"not json", b"[]", b"42", b'{"metadata": {}}', b'{"transactionSignature": ""}'])
def test_parse_events_rejects_malformed_bodies(body):
    with pytest.raises(ValidationError):
        parse_events(body)


@pytest.mark.asyncio
async def test_event_is_written_once_and_redelivery_succeeds(router, auth, bid_job, tenant_db):
    first = await router.ingest(bid_job.id, auth, _body())
    again = await router.ingest(bid_job.id, auth, _body())

    assert first.state == IngestionState.WRITTEN and first.success
    assert again.state == IngestionState.WRITTEN and again.success
    assert len(tenant_db.tables["nft_bids"]) == 1
    assert first.status_code == 200


@pytest.mark.asyncio
async def test_bad_credential_rejected_before_any_job_lookup(router, bid_job, store, tenant_db):
    outcome = await router.ingest(bid_job.id, "Bearer wrong", _body())

    assert outcome.state == IngestionState.REJECTED
    assert outcome.reason == IngestionReason.UNAUTHORIZED
    assert outcome.status_code == 401
    assert store.get_job_calls == 0
    assert tenant_db.executed == []
    (audit,) = store.logs_for(bid_job.id, LogLevel.ERROR)
    assert "authorization" in audit.message.lower()


@pytest.mark.asyncio
async def test_bad_credential_for_unknown_job_logs_nothing(router, store):
    outcome = await router.ingest("no-such-job", None, _body())

    assert outcome.reason == IngestionReason.UNAUTHORIZED
    assert store.logs == []


@pytest.mark.asyncio
async def test_unknown_job_is_not_found(router, auth, store):
    outcome = await router.ingest("no-such-job", auth, _body())

    assert outcome.reason == IngestionReason.NOT_FOUND
    assert outcome.status_code == 404
    assert store.logs == []


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [IndexingStatus.PAUSED, IndexingStatus.INACTIVE, IndexingStatus.ERROR])
async def test_non_active_job_drops_events(router, auth, bid_job, store, tenant_db, status):
    store.jobs[bid_job.id] = bid_job.model_copy(update={"status": status})

    outcome = await router.ingest(bid_job.id, auth, _body())

    assert outcome.reason == IngestionReason.INACTIVE
    assert outcome.status_code == 400
    assert tenant_db.tables["nft_bids"] == []


@pytest.mark.asyncio
async def test_missing_amount_fails_without_row(router, auth, bid_job, store, tenant_db):
    outcome = await router.ingest(bid_job.id, auth, _body(buyer="Buyer1", nft={"mint": "Mint1"}))

    assert outcome.success is False
    assert outcome.state == IngestionState.ERRORED
    assert outcome.reason == IngestionReason.PROCESSING_FAILED
    assert outcome.to_response()["success"] is False
    assert tenant_db.tables["nft_bids"] == []
    assert store.logs_for(bid_job.id, LogLevel.WARNING)


@pytest.mark.asyncio
async def test_array_succeeds_only_if_every_event_succeeds(router, auth, bid_job, tenant_db):
    good = json.loads(_body("sig1"))
    bad = json.loads(_body("sig2", buyer="B"))

    outcome = await router.ingest(bid_job.id, auth, json.dumps([good, bad]))

    assert outcome.success is False
    assert outcome.events == 2 and outcome.succeeded == 1
    assert len(tenant_db.tables["nft_bids"]) == 1


@pytest.mark.asyncio
async def test_unsupported_data_type_is_reported(router, auth, store, connection):
    job = store.add_job(
        id="job-odd", tenant_id="tenant-1", name="odd", data_type="NFT_MINTS",
        status=IndexingStatus.ACTIVE, connection_id=connection.id,
    )

    outcome = await router.ingest(job.id, auth, _body())

    assert outcome.state == IngestionState.ERRORED
    assert outcome.reason == IngestionReason.UNSUPPORTED_DATA_TYPE
    assert outcome.status_code == 400
    assert store.logs_for(job.id, LogLevel.ERROR)


@pytest.mark.asyncio
async def test_unparseable_body_is_rejected(router, auth, bid_job):
    outcome = await router.ingest(bid_job.id, auth, b"{")

    assert outcome.reason == IngestionReason.INVALID_PAYLOAD
    assert outcome.status_code == 400


@pytest.mark.asyncio
async def test_unexpected_error_becomes_internal_outcome(router, auth, bid_job, store):
    store.fail_get_job = RuntimeError("metadata store down")

    outcome = await router.ingest(bid_job.id, auth, _body())

    assert outcome.state == IngestionState.ERRORED
    assert outcome.reason == IngestionReason.INTERNAL
    assert outcome.status_code == 500
    assert outcome.to_response() == {"success": False, "error": "internal"}
