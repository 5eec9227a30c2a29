import asyncio

import pytest
from fastapi import APIRouter, HTTPException, Request, Response
from fastapi.responses import PlainTextResponse

from ingestion_service.api.lifespan import CacheWarmer, StorageConnection
from ingestion_service.core.config import ServiceConfig
from ingestion_service.core.exceptions import RouteError
from ingestion_service.core.faults import reset_fault_reporter


class FakeAdmin:
    def __init__(self, error=None):
        self.error = error
        self.commands = []

    async def command(self, name):
        self.commands.append(name)
        if self.error:
            raise self.error
        return {"ok": 1.0}


class FakeMongoClient:
    """Stands in for AsyncMongoClient: ping + close."""

    def __init__(self, url, error=None, **kwargs):
        self.url = url
        self.kwargs = kwargs
        self.admin = FakeAdmin(error)
        self.closed = False

    def get_default_database(self):
        return self.url.rsplit("/", 1)[-1]

    async def close(self):
        self.closed = True


def fake_client_factory(error=None):
    def factory(url, **kwargs):
        return FakeMongoClient(url, error=error, **kwargs)
    return factory


def make_config(**overrides) -> ServiceConfig:
    values = {
        "listen_port": 0,
        "host": "127.0.0.1",
        "storage_url": "mongodb://localhost:27017/prj",
        "rate_limit_max": 1000,
    }
    values.update(overrides)
    return ServiceConfig(**values)


def make_storage(error=None) -> StorageConnection:
    return StorageConnection("mongodb://localhost:27017/prj", client_factory=fake_client_factory(error))


def build_routes() -> APIRouter:
    router = APIRouter()
    router.hits = 0
    router.reloads = []

    @router.get("/items")
    async def list_items():
        router.hits += 1
        return {"items": [1, 2, 3]}

    @router.post("/echo")
    async def echo(request: Request):
        router.hits += 1
        return {"body": request.state.body, "raw_length": len(await request.body())}

    @router.get("/large")
    async def large():
        return PlainTextResponse("wifi-reading " * 2000)

    @router.get("/tagged")
    async def tagged():
        return Response("tagged", headers={"ETag": '"abc123"'})

    @router.get("/boom")
    async def boom():
        raise RuntimeError("secret database password leaked")

    @router.get("/route-error")
    async def route_error():
        raise RouteError("Heat-map query failed", details={"collection": "wifis"})

    @router.get("/teapot")
    async def teapot():
        raise HTTPException(status_code=418, detail="short and stout")

    @router.patch("/wifis/patch/reloadFeatureCache")
    async def reload_feature_cache():
        router.reloads.append("feature_cache")
        return {"reloaded": True}

    @router.patch("/wifis/patch/reloadHeatmapData")
    async def reload_heatmap():
        router.reloads.append("heatmap")
        return {"reloaded": True}

    @router.get("/slow")
    async def slow():
        await asyncio.sleep(0.3)
        return {"done": True}

    return router


@pytest.fixture
def routes():
    return build_routes()


@pytest.fixture
def storage():
    return make_storage()


@pytest.fixture
def failing_storage():
    return make_storage(error=ConnectionError("mongo unreachable"))


@pytest.fixture
def recorded_requests():
    return []


@pytest.fixture
def warmer(recorded_requests):
    import httpx

    def handler(request):
        recorded_requests.append(request)
        return httpx.Response(200)

    return CacheWarmer(
        "http://localhost:5000", "/api/v1/", transport=httpx.MockTransport(handler)
    )


@pytest.fixture(autouse=True)
def fresh_fault_reporter():
    reset_fault_reporter()
    yield
    reset_fault_reporter()
