import time

from probebox.runner.health import (
    check_health,
    host_variants,
    wait_for_healthy,
    wait_for_port,
)

from conftest import status_app

BASE_URL = 'http://127.0.0.1:3000'


async def test_check_health_prefers_first_endpoint(asgi_client):
    client = asgi_client(status_app({'/health': 200, '/api/health': 200}))
    result = await check_health(BASE_URL, client=client)
    assert result.reachable
    assert result.endpoint == '/health'
    assert result.status_code == 200


async def test_check_health_accepts_client_errors(asgi_client):
    client = asgi_client(status_app({'/health': 500, '/api/health': 401}))
    result = await check_health(BASE_URL, client=client)
    assert result.reachable
    assert result.endpoint == '/api/health'
    assert result.status_code == 401


async def test_check_health_all_failing(asgi_client):
    client = asgi_client(status_app({}, default=503))
    result = await check_health(BASE_URL, client=client)
    assert not result.reachable
    assert result.error == 'All health check endpoints failed'


async def test_check_health_unreachable(unreachable_client):
    async with unreachable_client:
        result = await check_health(BASE_URL, client=unreachable_client)
    assert not result.reachable


async def test_wait_for_healthy_times_out(asgi_client):
    client = asgi_client(status_app({}, default=502))
    started = time.monotonic()
    result = await wait_for_healthy(BASE_URL, timeout=0.3, interval=0.1, client=client)
    assert not result.reachable
    assert 'timed out' in result.error
    assert time.monotonic() - started < 5


async def test_wait_for_healthy_returns_reachable(asgi_client):
    client = asgi_client(status_app({'/healthz': 204}, default=500))
    result = await wait_for_healthy(BASE_URL, timeout=5, interval=0.1, client=client)
    assert result.reachable
    assert result.endpoint == '/healthz'


def test_host_variants():
    assert host_variants('http://127.0.0.1:3000') == [
        'http://127.0.0.1:3000',
        'http://localhost:3000',
    ]
    assert host_variants('http://localhost:8080') == [
        'http://localhost:8080',
        'http://127.0.0.1:8080',
    ]
    assert host_variants('http://example.test') == ['http://example.test']


async def test_wait_for_port_without_listener(free_port):
    timeout = 1.0
    started = time.monotonic()
    assert not await wait_for_port(free_port, timeout)
    elapsed = time.monotonic() - started
    assert elapsed >= timeout
    # one poll interval of slack, plus scheduling jitter
    assert elapsed <= timeout + 0.5 + 0.25


async def test_wait_for_port_with_listener(asgi_client):
    client = asgi_client(status_app({}, default=404))
    assert await wait_for_port(3000, 2, client=client)
