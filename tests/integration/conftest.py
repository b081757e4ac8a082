"""Shared fixtures for integration tests."""

import asyncio
from collections.abc import AsyncGenerator

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from outbound_gateway.core.metrics import GatewayMetrics
from outbound_gateway.core.options import GatewayOptions
from outbound_gateway.core.pipeline import GatewayPipeline

PROXY_PATH = "/api/proxy"


@pytest.fixture
def upstream_hits() -> list[web.Request]:
    """Requests received by the mock upstream, in arrival order."""
    return []


@pytest.fixture
def mock_upstream_app(upstream_hits: list[web.Request]) -> web.Application:
    """Create a mock external API for testing."""

    @web.middleware
    async def record(request: web.Request, handler):
        upstream_hits.append(request)
        return await handler(request)

    app = web.Application(middlewares=[record])

    async def echo_handler(request: web.Request) -> web.Response:
        """Echo back the received call."""
        body = await request.text()
        return web.json_response(
            {
                "method": request.method,
                "path": request.path,
                "headers": dict(request.headers),
                "body": body,
            }
        )

    async def todo_handler(request: web.Request) -> web.Response:
        return web.json_response({"id": int(request.match_info["todo_id"]), "secret": "x"})

    async def list_handler(request: web.Request) -> web.Response:
        return web.json_response([1, 2, 3])

    async def text_handler(request: web.Request) -> web.Response:
        return web.Response(text="plain text body")

    async def binary_handler(request: web.Request) -> web.Response:
        return web.Response(body=bytes([0xFF, 0xFE, 0xFD]), content_type="application/octet-stream")

    async def status_handler(request: web.Request) -> web.Response:
        status = int(request.match_info["code"])
        return web.json_response({"upstream_error": status}, status=status)

    async def slow_handler(request: web.Request) -> web.Response:
        await asyncio.sleep(2)
        return web.json_response({"message": "Slow response"})

    app.router.add_route("*", "/echo", echo_handler)
    app.router.add_route("*", "/todos/{todo_id}", todo_handler)
    app.router.add_get("/list", list_handler)
    app.router.add_get("/text", text_handler)
    app.router.add_get("/binary", binary_handler)
    app.router.add_route("*", "/status/{code}", status_handler)
    app.router.add_get("/slow", slow_handler)

    return app


@pytest.fixture
async def mock_upstream_server(
    mock_upstream_app: web.Application,
) -> AsyncGenerator[TestServer, None]:
    """Create and start a test server for the mock external API."""
    server = TestServer(mock_upstream_app)
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture
def upstream_url(mock_upstream_server: TestServer) -> str:
    """Base URL of the mock external API."""
    return f"http://{mock_upstream_server.host}:{mock_upstream_server.port}"


@pytest.fixture
async def make_client(metrics: GatewayMetrics) -> AsyncGenerator:
    """Factory mounting a pipeline on a fresh application and returning a test client."""
    clients: list[TestClient] = []

    async def factory(options: GatewayOptions | None = None, **pipeline_kwargs) -> TestClient:
        app = web.Application()
        pipeline_kwargs.setdefault("metrics", metrics)
        pipeline = GatewayPipeline(options or GatewayOptions(), **pipeline_kwargs)
        pipeline.mount(app, PROXY_PATH)

        client = TestClient(TestServer(app))
        await client.start_server()
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.close()
