import socket
from typing import AsyncGenerator, Callable

import httpx
import pytest
import pytest_asyncio
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route


def status_app(statuses: dict[str, int], default: int = 404, json_bodies=None) -> Starlette:
    """App answering each path with a fixed status code."""
    json_bodies = json_bodies or {}

    async def endpoint(request: Request) -> Response:
        path = request.url.path
        if path in json_bodies:
            return JSONResponse(json_bodies[path])
        status = statuses.get(path, default)
        return PlainTextResponse(f'{status} {path}', status_code=status)

    return Starlette(
        routes=[
            Route(
                '/{path:path}',
                endpoint,
                methods=['GET', 'HEAD', 'POST', 'PUT', 'PATCH', 'DELETE'],
            )
        ]
    )


@pytest_asyncio.fixture
async def asgi_client() -> AsyncGenerator[Callable[[Starlette], httpx.AsyncClient], None]:
    clients = []

    def make(app: Starlette) -> httpx.AsyncClient:
        client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app))
        clients.append(client)
        return client

    yield make
    for client in clients:
        await client.aclose()


@pytest.fixture
def unreachable_client():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError('Connection refused', request=request)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]
