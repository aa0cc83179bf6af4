from typing import Iterable

from probebox.schemas import (
    EvalMetrics,
    ReportStatus,
    StageKind,
    StageResult,
    StageStatus,
)
from probebox.utils import round_half_up

RUNTIME_STAGES = (StageKind.startup, StageKind.health, StageKind.api)


def _mean(scores: list[int]) -> int | None:
    if not scores:
        return None
    return round_half_up(sum(scores) / len(scores))


def _score_of(stages: list[StageResult], kind: StageKind) -> int | None:
    for stage in stages:
        if stage.stage == kind and stage.score is not None:
            return stage.score
    return None


def calculate_metrics(stages: Iterable[StageResult]) -> EvalMetrics:
    stages = list(stages)
    runtime_score = _mean(
        [s.score for s in stages if s.stage in RUNTIME_STAGES and s.score is not None]
    )
    static_score = _score_of(stages, StageKind.static)
    ui_score = _score_of(stages, StageKind.ui)

    present = [s for s in (static_score, runtime_score, ui_score) if s is not None]
    return EvalMetrics(
        overall_score=_mean(present) or 0,
        static_score=static_score,
        runtime_score=runtime_score,
        ui_score=ui_score,
    )


def overall_status(stages: Iterable[StageResult]) -> ReportStatus:
    statuses = [stage.status for stage in stages]
    failed = StageStatus.failed in statuses
    passed = StageStatus.passed in statuses
    if failed and passed:
        return ReportStatus.partial
    if failed:
        return ReportStatus.failed
    return ReportStatus.passed


def aggregate(stages: Iterable[StageResult]) -> tuple[ReportStatus, EvalMetrics]:
    stages = list(stages)
    return overall_status(stages), calculate_metrics(stages)
