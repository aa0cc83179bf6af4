import asyncio
import logging
import time

import httpx

from probebox.const import (
    HEALTH_ENDPOINTS,
    HEALTH_POLL_INTERVAL,
    HEALTH_REQUEST_TIMEOUT,
    PORT_POLL_INTERVAL,
    PORT_PROBE_TIMEOUT,
)
from probebox.schemas import HealthCheckResult
from probebox.utils import describe_error, elapsed_ms, http_client, join_url

logger = logging.getLogger(__name__)

HEALTH_ACCEPT = 'text/html,application/json,*/*'


async def wait_for_port(
    port: int,
    timeout: float,
    host: str = '127.0.0.1',
    client: httpx.AsyncClient | None = None,
) -> bool:
    url = f'http://{host}:{port}/'
    deadline = time.monotonic() + timeout
    async with http_client(client) as c:
        while (remaining := deadline - time.monotonic()) > 0:
            try:
                response = await c.head(
                    url, timeout=min(PORT_PROBE_TIMEOUT, remaining)
                )
                if response.status_code < 500:
                    return True
            except httpx.HTTPError:
                # nothing listening yet
                pass
            await asyncio.sleep(PORT_POLL_INTERVAL)
    return False


async def _try_endpoint(
    client: httpx.AsyncClient, base_url: str, endpoint: str, timeout: float
) -> HealthCheckResult:
    started = time.monotonic()
    try:
        response = await client.get(
            join_url(base_url, endpoint),
            headers={'Accept': HEALTH_ACCEPT},
            timeout=timeout,
        )
    except httpx.HTTPError as e:
        return HealthCheckResult(
            reachable=False,
            endpoint=endpoint,
            response_time_ms=elapsed_ms(started),
            error=describe_error(e),
        )

    # 4xx usually means auth or routing, the app itself is up
    if response.status_code < 500:
        return HealthCheckResult(
            reachable=True,
            endpoint=endpoint,
            status_code=response.status_code,
            response_time_ms=elapsed_ms(started),
        )
    return HealthCheckResult(
        reachable=False,
        endpoint=endpoint,
        status_code=response.status_code,
        response_time_ms=elapsed_ms(started),
        error=f'Server returned {response.status_code}',
    )


async def check_health(
    base_url: str,
    timeout: float = 10.0,
    client: httpx.AsyncClient | None = None,
) -> HealthCheckResult:
    async with http_client(client) as c:
        for endpoint in HEALTH_ENDPOINTS:
            result = await _try_endpoint(c, base_url, endpoint, timeout)
            if result.reachable:
                return result

    return HealthCheckResult(
        reachable=False,
        endpoint='/',
        response_time_ms=0,
        error='All health check endpoints failed',
    )


def host_variants(base_url: str) -> list[str]:
    urls = [base_url]
    if '://127.0.0.1' in base_url:
        urls.append(base_url.replace('://127.0.0.1', '://localhost', 1))
    elif '://localhost' in base_url:
        urls.append(base_url.replace('://localhost', '://127.0.0.1', 1))
    return urls


async def wait_for_healthy(
    base_url: str,
    timeout: float,
    interval: float = HEALTH_POLL_INTERVAL,
    client: httpx.AsyncClient | None = None,
) -> HealthCheckResult:
    urls = host_variants(base_url)
    deadline = time.monotonic() + timeout
    async with http_client(client) as c:
        while time.monotonic() < deadline:
            for url in urls:
                result = await check_health(url, HEALTH_REQUEST_TIMEOUT, client=c)
                if result.reachable:
                    logger.debug(f'{url}{result.endpoint} answered {result.status_code}')
                    return result
            await asyncio.sleep(interval)

    return HealthCheckResult(
        reachable=False,
        endpoint='/',
        response_time_ms=int(timeout * 1000),
        error=f'Health check timed out after {timeout:g}s',
    )
