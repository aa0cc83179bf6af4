import math
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx


def elapsed_ms(started: float) -> int:
    """Milliseconds since ``started``, a ``time.monotonic()`` reading."""
    return int((time.monotonic() - started) * 1000)


def join_url(base_url: str, path: str) -> str:
    return base_url.rstrip('/') + path


def describe_error(e: BaseException) -> str:
    message = str(e)
    return message or type(e).__name__


@asynccontextmanager
async def http_client(
    client: httpx.AsyncClient | None = None,
) -> AsyncIterator[httpx.AsyncClient]:
    """Reuse ``client`` when given, otherwise open a short-lived one."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(follow_redirects=True) as new_client:
        yield new_client


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def percent(part: int, total: int) -> int:
    """Whole percentage of ``part`` in ``total``, 0 for an empty total."""
    if total <= 0:
        return 0
    return round_half_up(part / total * 100)
