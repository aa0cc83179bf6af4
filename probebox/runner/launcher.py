import asyncio
import logging
import time
from urllib.parse import urlsplit

import httpx
from pydantic import BaseModel, ConfigDict

from probebox.const import OUTPUT_TAIL_SIZE, PROCESS_LIFETIME_BUFFER
from probebox.runner.health import wait_for_healthy
from probebox.runner.process import ProcessHandle, launch
from probebox.schemas import HealthCheckResult, StageKind, StageResult, StageStatus
from probebox.schemas.runconfig import RunConfig
from probebox.utils import elapsed_ms

logger = logging.getLogger(__name__)
app_logger = logging.getLogger('probebox.app')


class LaunchResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    base_url: str
    port: int
    startup_stage: StageResult
    health_stage: StageResult
    process: ProcessHandle | None = None

    @property
    def stages(self) -> list[StageResult]:
        return [self.startup_stage, self.health_stage]


def health_result_to_stage(result: HealthCheckResult, duration_ms: int) -> StageResult:
    return StageResult(
        stage=StageKind.health,
        status=StageStatus.passed if result.reachable else StageStatus.failed,
        duration_ms=duration_ms,
        score=100 if result.reachable else 0,
        details={
            'endpoint': result.endpoint,
            'status_code': result.status_code,
            'response_time_ms': result.response_time_ms,
        },
        errors=[result.error] if result.error else [],
    )


def port_from_url(url: str) -> int:
    try:
        parts = urlsplit(url)
        return parts.port or (443 if parts.scheme == 'https' else 80)
    except ValueError:
        return 80


def _log_stdout(chunk: str):
    app_logger.debug(chunk.rstrip())


def _log_stderr(chunk: str):
    app_logger.debug('[stderr] %s', chunk.rstrip())


async def _wait_until_healthy_or_crashed(
    handle: ProcessHandle,
    base_url: str,
    timeout: float,
    client: httpx.AsyncClient | None,
) -> HealthCheckResult:
    health = asyncio.create_task(wait_for_healthy(base_url, timeout, client=client))
    exit_code = asyncio.create_task(handle.wait_for_exit())
    try:
        done, _ = await asyncio.wait(
            (health, exit_code), return_when=asyncio.FIRST_COMPLETED
        )
        # a zero exit can be a launcher that daemonized the real server
        if health not in done and exit_code.result() != 0:
            health.cancel()
            return HealthCheckResult(
                reachable=False,
                endpoint='/',
                response_time_ms=0,
                error=(
                    f'Process exited with code {exit_code.result()} '
                    'before becoming healthy'
                ),
            )
        return await health
    finally:
        for task in (health, exit_code):
            if not task.done():
                task.cancel()


async def attach_to_running(
    base_url: str, timeout: float, client: httpx.AsyncClient | None = None
) -> LaunchResult:
    started = time.monotonic()
    health = await wait_for_healthy(base_url, timeout, client=client)
    return LaunchResult(
        success=health.reachable,
        base_url=base_url,
        port=port_from_url(base_url),
        startup_stage=StageResult.skipped(
            StageKind.startup, 'base_url provided, skipping startup'
        ),
        health_stage=health_result_to_stage(health, elapsed_ms(started)),
    )


async def launch_application(
    run_config: RunConfig, client: httpx.AsyncClient | None = None
) -> LaunchResult:
    started = time.monotonic()
    base_url = run_config.base_url
    port = run_config.port

    if run_config.needs_config:
        error = run_config.config_error or 'Unable to detect start command'
        logger.warning(f'Cannot start project: {error}')
        return LaunchResult(
            success=False,
            base_url=base_url,
            port=port,
            startup_stage=StageResult(
                stage=StageKind.startup,
                status=StageStatus.needs_config,
                duration_ms=elapsed_ms(started),
                details={'error': error},
                errors=[error],
            ),
            health_stage=StageResult.skipped(StageKind.health, 'Startup failed'),
        )

    logger.info(f'Starting: {run_config.command_line}')
    logger.info(f'CWD: {run_config.cwd}, Port: {port}')
    handle = await launch(
        run_config.command,
        run_config.args,
        run_config.cwd,
        run_config.env,
        timeout=run_config.timeouts.total + PROCESS_LIFETIME_BUFFER,
        on_stdout=_log_stdout,
        on_stderr=_log_stderr,
    )

    if handle.spawn_error is not None:
        return LaunchResult(
            success=False,
            base_url=base_url,
            port=port,
            startup_stage=StageResult(
                stage=StageKind.startup,
                status=StageStatus.failed,
                duration_ms=elapsed_ms(started),
                score=0,
                details={'command': run_config.command_line},
                errors=[f'Failed to launch {run_config.command!r}: {handle.spawn_error}'],
                logs=handle.logs,
            ),
            health_stage=StageResult.skipped(StageKind.health, 'Launch failed'),
            process=handle,
        )

    logger.info(f'Waiting for app to be healthy at {base_url}...')
    health = await _wait_until_healthy_or_crashed(
        handle, base_url, run_config.timeouts.startup, client
    )
    startup_ms = elapsed_ms(started)

    if not health.reachable:
        await handle.kill()
        stdout_tail, stderr_tail = handle.tail(OUTPUT_TAIL_SIZE)
        return LaunchResult(
            success=False,
            base_url=base_url,
            port=port,
            startup_stage=StageResult(
                stage=StageKind.startup,
                status=StageStatus.failed,
                duration_ms=startup_ms,
                score=0,
                details={
                    'command': run_config.command_line,
                    'exit_code': handle.returncode,
                    'stdout_tail': stdout_tail,
                    'stderr_tail': stderr_tail,
                },
                errors=['Application failed to start or health check timed out'],
                logs=handle.logs,
            ),
            health_stage=health_result_to_stage(health, startup_ms),
            process=handle,
        )

    logger.info(
        f'App is healthy at {health.endpoint} ({health.response_time_ms}ms)'
    )
    return LaunchResult(
        success=True,
        base_url=base_url,
        port=port,
        startup_stage=StageResult(
            stage=StageKind.startup,
            status=StageStatus.passed,
            duration_ms=startup_ms,
            score=100,
            details={
                'command': run_config.command_line,
                'framework': run_config.framework,
                'port': port,
                'pid': handle.pid,
            },
        ),
        health_stage=health_result_to_stage(health, startup_ms),
        process=handle,
    )
