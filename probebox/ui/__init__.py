import logging
import time
from pathlib import Path
from typing import Callable

from pydantic import BaseModel

from probebox.config import config
from probebox.const import MAX_CONSOLE_ERRORS_PER_FLOW
from probebox.schemas import StageKind, StageResult, StageStatus, UiFlowResult
from probebox.ui.flows import baseline_flow, build_exploratory_flow, detect_custom_flow
from probebox.ui.session import BrowserSession, FlowRunner
from probebox.utils import describe_error, elapsed_ms, percent

logger = logging.getLogger(__name__)


class UiEvalResult(BaseModel):
    stage: StageResult
    screenshots: list[str] = []

    @property
    def success(self) -> bool:
        return self.stage.status == StageStatus.passed


def flows_to_stage(flows: list[UiFlowResult], duration_ms: int) -> StageResult:
    total_steps = sum(len(flow.steps) for flow in flows)
    passed_steps = sum(flow.passed_steps for flow in flows)

    errors = []
    for flow in flows:
        errors += [
            f'{flow.name}/{step.action}: {step.error}'
            for step in flow.steps
            if step.error
        ]
        errors += flow.console_errors[:MAX_CONSOLE_ERRORS_PER_FLOW]

    return StageResult(
        stage=StageKind.ui,
        status=(
            StageStatus.passed
            if flows and all(flow.passed for flow in flows)
            else StageStatus.failed
        ),
        duration_ms=duration_ms,
        score=percent(passed_steps, total_steps),
        details={
            'flows': len(flows),
            'total_steps': total_steps,
            'passed_steps': passed_steps,
            'results': [flow.model_dump() for flow in flows],
        },
        errors=errors,
    )


def _screenshots(flows: list[UiFlowResult]) -> list[str]:
    return [step.screenshot for flow in flows for step in flow.steps if step.screenshot]


async def run_ui_evaluation(
    project_path: Path | str | None,
    base_url: str,
    report_dir: Path | str,
    timeout: float = config.ui_timeout,
    headless: bool = config.headless,
    session_factory: Callable[[bool], BrowserSession] = BrowserSession,
) -> UiEvalResult:
    started = time.monotonic()
    screenshot_dir = Path(report_dir) / 'screenshots'
    logger.info(f'Starting UI evaluation of {base_url}, screenshots in {screenshot_dir}')

    flows: list[UiFlowResult] = []
    try:
        async with session_factory(headless) as session:
            runner = FlowRunner(
                session.page, session.errors, base_url, screenshot_dir, timeout
            )
            baseline = await runner.run('Baseline Flow', baseline_flow())
            flows.append(baseline)

            if baseline.passed:
                steps = await build_exploratory_flow(session.page, base_url)
                flows.append(await runner.run('Exploratory Flow', steps))

            if (marker := detect_custom_flow(project_path)) is not None:
                flows.append(marker.to_flow_result())
    except Exception as e:
        # browser failed to start or crashed mid-flow
        logger.exception('UI evaluation error')
        error = describe_error(e)
        return UiEvalResult(
            stage=StageResult(
                stage=StageKind.ui,
                status=StageStatus.failed,
                duration_ms=elapsed_ms(started),
                score=0,
                details={'error': error, 'results': [f.model_dump() for f in flows]},
                errors=[error],
            ),
            screenshots=_screenshots(flows),
        )

    stage = flows_to_stage(flows, elapsed_ms(started))
    logger.info(f'UI evaluation complete. Score: {stage.score}')
    return UiEvalResult(stage=stage, screenshots=_screenshots(flows))


__all__ = [
    'UiEvalResult',
    'flows_to_stage',
    'run_ui_evaluation',
]
