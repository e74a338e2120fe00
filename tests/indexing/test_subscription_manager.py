import json

import httpx
import pytest

from chainindex.core.config import settings_from_env
from chainindex.core.errors import EventSourceError
from chainindex.core.models import IndexingJob, LogLevel
from chainindex.helius.client import HeliusClient
from chainindex.indexing.subscription import SubscriptionManager, extract_addresses


def _job(data_type, config, job_id="job-1"):
    return IndexingJob(id=job_id, data_type=data_type, config=config, connection_id="conn-1")


@pytest.mark.parametrize("data_type,config,expected", [
    ("NFT_BIDS", {"mint": "Mint1"}, ["Mint1"]),
    ("NFT_PRICES", {"mint": ["Mint1", "Mint2"]}, ["Mint1", "Mint2"]),
    ("TOKEN_BORROW", {"token": "Tok1"}, ["Tok1"]),
    ("TOKEN_PRICES", {"tokens": ["A", " B ", "", "A"]}, ["A", "B"]),
    ("CUSTOM", {"addresses": ["X", None, 3]}, ["X"]),
    ("NFT_BIDS", {}, []),
    ("NFT_MINTS", {"mint": "Mint1"}, []),
])
def test_extract_addresses(data_type, config, expected):
    assert extract_addresses(_job(data_type, config)) == expected


class HeliusRecorder:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.body = body if body is not None else {"webhookID": "wh-123"}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body)


@pytest.fixture
def settings(settings_env):
    return settings_from_env(settings_env)


def _manager(settings, recorder, store=None):
    client = HeliusClient(
        api_url=settings.helius_api_url,
        api_key=settings.helius_api_key,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(recorder)),
    )
    return SubscriptionManager(client, settings, store=store)


@pytest.mark.asyncio
async def test_subscribe_registers_callback_for_job(settings, webhook_secret, store):
    recorder = HeliusRecorder()
    manager = _manager(settings, recorder, store)
    job = _job("NFT_BIDS", {"mint": "Mint1"}, job_id="job-42")

    webhook_id = await manager.subscribe(job)

    assert webhook_id == "wh-123"
    (request,) = recorder.requests
    assert request.method == "POST"
    assert request.url.path == "/v0/webhooks"
    assert request.headers["Authorization"] == "Bearer helius-key"
    payload = json.loads(request.content)
    assert payload["webhookURL"] == "https://indexer.example.com/webhooks/helius/job-42"
    assert payload["accountAddresses"] == ["Mint1"]
    assert payload["authHeader"] == f"Bearer {webhook_secret}"
    assert payload["webhookType"] == "enhanced"
    (entry,) = store.logs_for("job-42", LogLevel.INFO)
    assert entry.metadata["webhook_id"] == "wh-123"


@pytest.mark.asyncio
async def test_subscribe_returns_none_when_provider_fails(settings, store):
    recorder = HeliusRecorder(status_code=500, body={"error": "boom"})
    manager = _manager(settings, recorder, store)

    assert await manager.subscribe(_job("NFT_BIDS", {"mint": "Mint1"})) is None

    (entry,) = store.logs_for("job-1", LogLevel.ERROR)
    assert entry.metadata["error"]["http_status"] == 500


@pytest.mark.asyncio
async def test_subscribe_without_webhook_id_in_response_returns_none(settings):
    manager = _manager(settings, HeliusRecorder(body={"ok": True}))

    assert await manager.subscribe(_job("NFT_BIDS", {"mint": "Mint1"})) is None


@pytest.mark.asyncio
async def test_subscribe_without_addresses_skips_provider(settings, store):
    recorder = HeliusRecorder()
    manager = _manager(settings, recorder, store)

    assert await manager.subscribe(_job("NFT_BIDS", {})) is None
    assert recorder.requests == []
    assert store.logs_for("job-1", LogLevel.WARNING)


@pytest.mark.asyncio
async def test_unsubscribe_deletes_webhook(settings):
    recorder = HeliusRecorder(body={})
    manager = _manager(settings, recorder)

    await manager.unsubscribe("wh-123")

    (request,) = recorder.requests
    assert request.method == "DELETE"
    assert request.url.path == "/v0/webhooks/wh-123"


@pytest.mark.asyncio
async def test_unsubscribe_propagates_provider_errors(settings):
    manager = _manager(settings, HeliusRecorder(status_code=404, body={"error": "not found"}))

    with pytest.raises(EventSourceError) as exc_info:
        await manager.unsubscribe("wh-gone")

    assert exc_info.value.info.http_status == 404
