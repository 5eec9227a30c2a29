import asyncio
import time
from datetime import timezone

import httpx
import pytest
from fastapi.testclient import TestClient
from structlog.testing import capture_logs

from conftest import make_config, make_storage
from ingestion_service.api.lifespan import CacheWarmer, StorageState
from ingestion_service.api.main import create_app
from ingestion_service.core.exceptions import InvalidTransition


def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# ============================================================================
# Storage connection
# ============================================================================

@pytest.mark.asyncio
async def test_storage_opens_and_fires_callbacks_once(storage):
    calls = []
    storage.on_open(lambda: calls.append("sync"))

    async def async_callback():
        calls.append("async")

    storage.on_open(async_callback)

    assert storage.state == StorageState.CONNECTING
    assert await storage.connect() is True
    assert storage.state == StorageState.OPEN
    assert storage.client.admin.commands == ["ping"]
    assert storage.database == "prj"

    assert await storage.connect() is True
    assert calls == ["sync", "async"]


@pytest.mark.asyncio
async def test_storage_failure_is_logged_not_raised(failing_storage):
    calls = []
    failing_storage.on_open(lambda: calls.append("opened"))

    with capture_logs() as logs:
        assert await failing_storage.connect() is False

    assert failing_storage.state == StorageState.FAILED
    assert failing_storage.error == "mongo unreachable"
    assert calls == []
    assert any(entry["event"] == "storage_connection_failed" for entry in logs)


@pytest.mark.asyncio
async def test_storage_callback_error_does_not_escalate(storage):
    def broken():
        raise ValueError("bad callback")

    storage.on_open(broken)

    with capture_logs() as logs:
        assert await storage.connect() is True

    assert any(entry["event"] == "storage_open_callback_failed" for entry in logs)


@pytest.mark.asyncio
async def test_storage_states_never_go_back(storage):
    await storage.connect()

    with pytest.raises(InvalidTransition):
        storage._transition(StorageState.CONNECTING)
    with pytest.raises(InvalidTransition):
        storage._transition(StorageState.FAILED)


@pytest.mark.asyncio
async def test_storage_close_closes_client(storage):
    await storage.connect()
    client = storage.client

    await storage.close()

    assert client.closed is True
    assert storage.client is None


@pytest.mark.asyncio
async def test_storage_passes_timeout_to_driver():
    storage = make_storage()
    storage.timeout_ms = 1500

    await storage.connect()

    assert storage.client.kwargs == {"serverSelectionTimeoutMS": 1500}


@pytest.mark.asyncio
async def test_component_timestamps_are_utc_aware(storage):
    await storage.connect()
    snapshot = storage.get_metrics()

    assert storage.started_at.tzinfo is timezone.utc
    assert snapshot["state"] == "open"
    assert snapshot["changed_at"].endswith("+00:00")
    assert snapshot["uptime_seconds"] >= 0


# ============================================================================
# Cache warm-up
# ============================================================================

@pytest.mark.asyncio
async def test_warmup_issues_two_patch_requests(warmer, recorded_requests):
    warmer.trigger()
    await asyncio.gather(*warmer.pending)

    assert sorted((r.method, r.url.path) for r in recorded_requests) == [
        ("PATCH", "/api/v1/wifis/patch/reloadFeatureCache"),
        ("PATCH", "/api/v1/wifis/patch/reloadHeatmapData"),
    ]
    assert {r.url.host for r in recorded_requests} == {"localhost"}
    assert warmer.pending == set()


@pytest.mark.asyncio
async def test_warmup_triggers_once(warmer, recorded_requests):
    warmer.trigger()
    warmer.trigger()
    await asyncio.gather(*warmer.pending)

    assert len(recorded_requests) == 2


@pytest.mark.asyncio
async def test_warmup_failures_are_only_logged():
    def handler(request):
        if request.url.path.endswith("reloadFeatureCache"):
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(500)

    warmer = CacheWarmer("http://localhost:5000", "/api/v1/", transport=httpx.MockTransport(handler))

    with capture_logs() as logs:
        warmer.trigger()
        results = await asyncio.gather(*warmer.pending, return_exceptions=True)

    assert results == [None, None]
    failed = [entry for entry in logs if entry["event"] == "cache_warmup_failed"]
    assert {entry["target"] for entry in failed} == {"feature_cache", "heatmap"}


def test_trigger_returns_before_requests_finish():
    async def scenario():
        release = asyncio.Event()

        async def slow(request):
            await release.wait()
            return httpx.Response(200)

        warmer = CacheWarmer("http://localhost:5000", "/api/v1/", transport=httpx.MockTransport(slow))
        warmer.trigger()
        in_flight = len(warmer.pending)
        release.set()
        await asyncio.gather(*warmer.pending)
        return in_flight

    assert asyncio.run(scenario()) == 2


# ============================================================================
# Application lifespan
# ============================================================================

def test_lifespan_connects_storage_and_warms_cache(storage, warmer, recorded_requests):
    app = create_app(make_config(cache_warmup_enabled=True), storage=storage, warmer=warmer)

    with TestClient(app) as client:
        assert wait_until(lambda: len(recorded_requests) == 2)
        assert storage.state == StorageState.OPEN
        assert client.get("/alive").text == "OK"

    assert app.state.storage.client is None


def test_no_warmup_when_disabled(storage, warmer, recorded_requests):
    app = create_app(make_config(cache_warmup_enabled=False), storage=storage, warmer=warmer)

    with TestClient(app):
        assert wait_until(lambda: storage.state == StorageState.OPEN)
        time.sleep(0.05)

    assert warmer.triggered is False
    assert recorded_requests == []


def test_storage_failure_keeps_service_reachable(failing_storage, warmer, recorded_requests):
    app = create_app(make_config(cache_warmup_enabled=True), storage=failing_storage, warmer=warmer)

    with TestClient(app) as client:
        assert wait_until(lambda: failing_storage.state == StorageState.FAILED)
        response = client.get("/alive")

    assert response.status_code == 200
    assert response.text == "OK"
    assert recorded_requests == []


def test_default_storage_uses_configured_url():
    app = create_app(make_config(storage_url="mongodb://db.internal:27017/prj"))

    assert app.state.storage.url == "mongodb://db.internal:27017/prj"
    assert app.state.warmer.base_url == "http://localhost:0"

