import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable

import httpx

from probebox.config import config
from probebox.detect import detect_project, get_project_name, load_env_file
from probebox.exceptions import ConfigurationError, ProbeboxError
from probebox.report import build_rerun_command, default_report_dir, generate_report
from probebox.runner.api import run_api_tests
from probebox.runner.launcher import LaunchResult, attach_to_running, launch_application
from probebox.runner.process import ProcessHandle
from probebox.schemas import (
    EvalArtifacts,
    EvalReport,
    EvaluationType,
    StageKind,
    StageResult,
    StageStatus,
)
from probebox.schemas.runconfig import RunConfig, Timeouts
from probebox.ui import run_ui_evaluation
from probebox.ui.session import BrowserSession
from probebox.utils import describe_error, elapsed_ms

logger = logging.getLogger(__name__)

RUNTIME_TYPES = (EvaluationType.dynamic, EvaluationType.full)
UI_TYPES = (EvaluationType.ui, EvaluationType.full)


class Runner:
    project_path: Path
    project_name: str
    evaluation_type: EvaluationType
    port: int | None
    base_url: str | None
    env_file: Path | None
    report_dir: Path
    timeouts: Timeouts
    process: ProcessHandle | None

    def __init__(
        self,
        project_path: Path | str,
        evaluation_type: EvaluationType = EvaluationType.dynamic,
        *,
        port: int | None = None,
        base_url: str | None = None,
        env_file: Path | None = None,
        report_dir: Path | None = None,
        timeouts: Timeouts | None = None,
        client: httpx.AsyncClient | None = None,
        session_factory: Callable[[bool], BrowserSession] = BrowserSession,
    ):
        self.project_path = Path(project_path).absolute()
        if not self.project_path.is_dir():
            raise ConfigurationError(f'Project path {self.project_path} is not a directory')
        self.project_name = get_project_name(self.project_path)
        self.evaluation_type = EvaluationType(evaluation_type)
        self.port = port
        self.base_url = base_url
        self.env_file = env_file or config.env_file
        self.report_dir = report_dir or default_report_dir(
            config.reports_dir, self.project_name
        )
        self.timeouts = timeouts or Timeouts()
        self.process = None
        self._client = client
        self._session_factory = session_factory

    @property
    def rerun_command(self) -> str:
        return build_rerun_command(
            self.project_path,
            self.evaluation_type,
            port=self.port,
            base_url=self.base_url,
            env_file=self.env_file,
        )

    def build_run_config(self) -> RunConfig:
        port = self.port or config.default_port
        try:
            env = load_env_file(self.project_path, self.env_file)
            return detect_project(self.project_path, port, env, self.timeouts)
        except (OSError, ProbeboxError) as e:
            return RunConfig(
                cwd=self.project_path,
                port=port,
                timeouts=self.timeouts,
                needs_config=True,
                config_error=f'Unable to read project configuration: {e}',
            )

    async def launch(self) -> LaunchResult:
        if self.base_url:
            return await attach_to_running(
                self.base_url, self.timeouts.health, client=self._client
            )
        result = await launch_application(self.build_run_config(), client=self._client)
        self.process = result.process
        return result

    def _skip_downstream(self, reason: str) -> list[StageResult]:
        stages = []
        if self.evaluation_type in RUNTIME_TYPES:
            stages.append(StageResult.skipped(StageKind.api, reason))
        if self.evaluation_type in UI_TYPES:
            stages.append(StageResult.skipped(StageKind.ui, reason))
        return stages

    @staticmethod
    async def _contain(kind: StageKind, stage: Awaitable[StageResult]) -> StageResult:
        started = time.monotonic()
        try:
            return await stage
        except Exception as e:
            logger.exception(f'Unexpected error in {kind.value} stage')
            error = describe_error(e)
            return StageResult(
                stage=kind,
                status=StageStatus.failed,
                duration_ms=elapsed_ms(started),
                score=0,
                details={'error': error},
                errors=[error],
            )

    async def _evaluate(self, artifacts: EvalArtifacts) -> list[StageResult]:
        if self.evaluation_type == EvaluationType.static:
            return [
                StageResult.skipped(
                    StageKind.static, 'Static analysis is provided by a separate tool'
                )
            ]

        launched = await self.launch()
        stages = launched.stages
        if not launched.success:
            logger.info('Launch failed, skipping API and UI evaluation')
            return stages + self._skip_downstream('Skipped due to startup failure')

        if self.evaluation_type in RUNTIME_TYPES:
            logger.info('Running API tests...')
            stages.append(
                await self._contain(
                    StageKind.api,
                    run_api_tests(
                        launched.base_url,
                        self.project_path,
                        self.timeouts.api,
                        client=self._client,
                    ),
                )
            )

        if self.evaluation_type in UI_TYPES:
            logger.info('Running UI evaluation...')
            ui_result = await run_ui_evaluation(
                self.project_path,
                launched.base_url,
                self.report_dir,
                timeout=self.timeouts.ui,
                headless=config.headless,
                session_factory=self._session_factory,
            )
            stages.append(ui_result.stage)
            artifacts.screenshots += ui_result.screenshots
        return stages

    async def run(self) -> EvalReport:
        started_at = datetime.now(timezone.utc)
        artifacts = EvalArtifacts()
        try:
            stages = await self._evaluate(artifacts)
        finally:
            if self.process is not None:
                logger.info('Cleaning up...')
                await self.process.kill()

        return generate_report(
            self.project_path,
            self.project_name,
            self.evaluation_type,
            stages,
            started_at,
            datetime.now(timezone.utc),
            self.rerun_command,
            artifacts,
        )
