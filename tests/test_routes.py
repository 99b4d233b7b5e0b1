from contextlib import asynccontextmanager

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from ndnsrouter.config import load_config
from ndnsrouter.routes import setup_metrics_routes, setup_routes, setup_server_routes
from ndnsrouter.services import ServerService

ENVIRON = {
    "PORT": "8080",
    "APP_ENV": "test",
    "CLOUD_RUN_URL": "cloudrun.example.com",
    "LAMBDA_URL": "lambda.example.com",
    "SERVERLESS_SERVERS": "invalid.invalid",
}


@asynccontextmanager
async def serve(app):
    async with TestClient(TestServer(app)) as client:
        yield client


@pytest.mark.asyncio
async def test_setup_routes_serves_management_endpoints():
    app = web.Application()
    service = setup_routes(app, load_config(ENVIRON))
    async with serve(app) as client:
        added = await client.post("/servers/add", json={"serverId": "s1", "url": "s1.example.com"})
        listed = await client.get("/servers")
        listed_slash = await client.get("/servers/")
        body = await listed.json()
        body_slash = await listed_slash.json()
    assert added.status == 200
    assert listed.status == 200
    assert [item["serverId"] for item in body["data"]] == ["s1"]
    assert body_slash["data"] == body["data"]
    assert service.get_server("s1").url == "s1.example.com"


@pytest.mark.asyncio
async def test_setup_routes_metrics_and_internal():
    app = web.Application()
    service = setup_routes(app, load_config(ENVIRON))
    async with serve(app) as client:
        metrics = await client.post(
            "/metrics/update", json={"app_name": "m1", "server_url": "m1.example.com", "cpu_usage": 7.0}
        )
        optimal = await client.put(
            "/internal/server/optimal",
            json={"servers": [{"serverId": "o1", "metrics": {"score": 88.0}}]},
        )
        optimal_body = await optimal.json()
        removed = await client.delete("/servers/remove", params={"serverId": "m1"})
    assert metrics.status == 200
    assert optimal.status == 200
    assert optimal_body["data"]["optimal_server"] == "o1"
    assert removed.status == 200
    assert service.get_server("m1") is None
    assert service.get_server("o1").url == "o1"


@pytest.mark.asyncio
async def test_setup_routes_uses_configured_serverless():
    app = web.Application()
    service = setup_routes(app, load_config(ENVIRON))
    fallback = service.serverless_server()
    assert fallback.server_id == "invalid.invalid"
    assert fallback.metrics.score == 100.0


@pytest.mark.asyncio
async def test_unreachable_upstream_gives_bad_gateway():
    app = web.Application()
    setup_routes(app, load_config(ENVIRON))
    async with serve(app) as client:
        response = await client.post("/api/test", json={"test": "data"})
        body = await response.json()
    assert response.status == 502
    assert body["success"] is False


@pytest.mark.asyncio
async def test_individual_route_groups():
    app = web.Application()
    service = ServerService(serverless_servers=["fallback.example.com"])
    setup_server_routes(app, service)
    setup_metrics_routes(app, service)
    async with serve(app) as client:
        update = await client.post("/metrics/update/", json={"app_name": "g1", "server_url": "g1.example.com"})
        internal = await client.put("/internal/server/optimal", json={"servers": []})
    assert update.status == 200
    assert internal.status == 404
    assert service.get_server("g1").url == "g1.example.com"