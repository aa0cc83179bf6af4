import json
import logging
import time
from pathlib import Path
from typing import Any

import httpx
import yaml
from pydantic import BaseModel, ConfigDict
from yaml import YAMLError

from probebox.const import (
    COMMON_API_ENDPOINTS,
    MAX_OPENAPI_ENDPOINTS,
    OPENAPI_FETCH_TIMEOUT,
    OPENAPI_LOCAL_PATHS,
    OPENAPI_METHODS,
    OPENAPI_REMOTE_PATHS,
)
from probebox.schemas import ApiTestResult, StageKind, StageResult, StageStatus
from probebox.utils import (
    describe_error,
    elapsed_ms,
    http_client,
    join_url,
    percent,
)

logger = logging.getLogger(__name__)


class ApiProbePolicy(BaseModel):
    """Which response codes count as a working endpoint.

    Client errors are accepted by default: a 401 from an endpoint that needs a
    token still proves the route exists and the server handles it.
    """

    model_config = ConfigDict(frozen=True)

    max_passing_status: int = 499

    def passes(self, status: int) -> bool:
        return 0 < status <= self.max_passing_status

    @staticmethod
    def note_for(status: int) -> str | None:
        if status in (401, 403):
            return 'Auth required (expected)'
        if status == 404:
            return 'Endpoint not found'
        if 400 <= status < 500:
            return 'Client error'
        return None


DEFAULT_POLICY = ApiProbePolicy()


def is_openapi_document(document: Any) -> bool:
    return isinstance(document, dict) and bool(
        document.get('openapi') or document.get('swagger')
    )


async def _fetch_remote_spec(
    client: httpx.AsyncClient, base_url: str
) -> dict | None:
    for spec_path in OPENAPI_REMOTE_PATHS:
        try:
            response = await client.get(
                join_url(base_url, spec_path), timeout=OPENAPI_FETCH_TIMEOUT
            )
            if not response.is_success:
                continue
            document = response.json()
        except (httpx.HTTPError, ValueError):
            continue
        if is_openapi_document(document):
            logger.info(f'Found OpenAPI spec at {spec_path}')
            return document
    return None


def load_local_spec(project_path: Path | str) -> dict | None:
    root = Path(project_path)
    for local_path in OPENAPI_LOCAL_PATHS:
        file = root / local_path
        if not file.is_file():
            continue
        try:
            text = file.read_text(encoding='utf-8')
            if file.suffix in ('.yaml', '.yml'):
                document = yaml.safe_load(text)
            else:
                document = json.loads(text)
        except (OSError, ValueError, YAMLError):
            continue
        if is_openapi_document(document):
            logger.info(f'Found local OpenAPI spec at {local_path}')
            return document
    return None


async def find_openapi_spec(
    base_url: str,
    project_path: Path | str | None,
    client: httpx.AsyncClient | None = None,
) -> dict | None:
    async with http_client(client) as c:
        if (document := await _fetch_remote_spec(c, base_url)) is not None:
            return document
    if project_path is None:
        return None
    return load_local_spec(project_path)


def extract_endpoints(
    document: dict, limit: int = MAX_OPENAPI_ENDPOINTS
) -> list[tuple[str, str]]:
    endpoints = []
    paths = document.get('paths')
    if not isinstance(paths, dict):
        return endpoints
    for path, item in paths.items():
        if not isinstance(path, str) or not isinstance(item, dict):
            continue
        for method in OPENAPI_METHODS:
            # an empty operation object still declares the operation
            if item.get(method) is not None:
                endpoints.append((method.upper(), path))
    # sort is stable, GET first and declaration order otherwise
    endpoints.sort(key=lambda endpoint: endpoint[0] != 'GET')
    return endpoints[:limit]


async def probe_endpoint(
    client: httpx.AsyncClient,
    base_url: str,
    method: str,
    path: str,
    timeout: float,
    policy: ApiProbePolicy = DEFAULT_POLICY,
) -> ApiTestResult:
    started = time.monotonic()
    try:
        response = await client.request(
            method,
            join_url(base_url, path),
            headers={'Accept': 'application/json'},
            timeout=timeout,
        )
    except httpx.HTTPError as e:
        return ApiTestResult(
            endpoint=path,
            method=method,
            status=0,
            passed=False,
            response_time_ms=elapsed_ms(started),
            error=describe_error(e),
        )

    status = response.status_code
    passed = policy.passes(status)
    return ApiTestResult(
        endpoint=path,
        method=method,
        status=status,
        passed=passed,
        response_time_ms=elapsed_ms(started),
        error=None if passed else f'Server returned {status}',
        note=policy.note_for(status),
    )


async def run_api_tests(
    base_url: str,
    project_path: Path | str | None,
    timeout: float = 10.0,
    client: httpx.AsyncClient | None = None,
    policy: ApiProbePolicy = DEFAULT_POLICY,
) -> StageResult:
    started = time.monotonic()
    async with http_client(client) as c:
        document = await find_openapi_spec(base_url, project_path, client=c)
        if document is not None:
            endpoints = extract_endpoints(document)
        else:
            endpoints = list(COMMON_API_ENDPOINTS)

        results = []
        for method, path in endpoints:
            results.append(
                await probe_endpoint(c, base_url, method, path, timeout, policy)
            )

    passed_count = sum(1 for r in results if r.passed)
    total = len(results)
    score = percent(passed_count, total)
    errors = [
        f'{r.method} {r.endpoint}: {r.error}'
        for r in results
        if not r.passed and r.error
    ]
    logger.info(f'API tests: {passed_count}/{total} passed')

    return StageResult(
        stage=StageKind.api,
        status=StageStatus.passed if passed_count > 0 else StageStatus.failed,
        duration_ms=elapsed_ms(started),
        score=score,
        details={
            'total_tests': total,
            'passed': passed_count,
            'failed': total - passed_count,
            'has_openapi': document is not None,
            'results': [r.model_dump() for r in results],
        },
        errors=errors,
    )
