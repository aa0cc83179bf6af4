from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Annotated, Any, Literal

Score = Annotated[int, Field(ge=0, le=100)]


class StageKind(str, Enum):
    static = 'static'
    startup = 'startup'
    health = 'health'
    api = 'api'
    ui = 'ui'


class StageStatus(str, Enum):
    passed = 'passed'
    failed = 'failed'
    skipped = 'skipped'
    needs_config = 'needs_config'
    running = 'running'


class ReportStatus(str, Enum):
    passed = 'passed'
    failed = 'failed'
    partial = 'partial'


class EvaluationType(str, Enum):
    static = 'static'
    dynamic = 'dynamic'
    ui = 'ui'
    full = 'full'


class HealthCheckResult(BaseModel):
    reachable: bool
    endpoint: str
    status_code: int | None = None
    response_time_ms: int
    error: str | None = None


class ApiTestResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    endpoint: str
    method: str
    status: int
    passed: bool
    response_time_ms: int
    error: str | None = None
    note: str | None = None


UiAction = Literal[
    'navigate', 'wait', 'click', 'fill', 'screenshot', 'check_element', 'check_text'
]


class FlowStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: UiAction
    target: str | None = None
    value: str | None = None


class UiFlowStep(BaseModel):
    action: UiAction
    target: str | None = None
    value: str | None = None
    passed: bool
    screenshot: str | None = None
    error: str | None = None
    duration_ms: int


class UiFlowResult(BaseModel):
    name: str
    steps: list[UiFlowStep]
    passed: bool
    duration_ms: int
    console_errors: list[str] = []
    network_errors: list[str] = []

    @property
    def passed_steps(self) -> int:
        return sum(1 for step in self.steps if step.passed)


class StageResult(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    stage: StageKind
    status: StageStatus
    duration_ms: int = 0
    score: Score | None = None
    details: dict[str, Any] = {}
    errors: list[str] = []
    logs: str | None = None

    @classmethod
    def skipped(cls, stage: StageKind, reason: str) -> 'StageResult':
        return cls(
            stage=stage, status=StageStatus.skipped, details={'reason': reason}
        )


class EvalMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    overall_score: Score
    static_score: Score | None = None
    runtime_score: Score | None = None
    ui_score: Score | None = None


class EvalArtifacts(BaseModel):
    screenshots: list[str] = []
    traces: list[str] = []
    logs: list[str] = []


class EvalReport(BaseModel):
    id: str
    project_path: str
    project_name: str
    evaluation_type: EvaluationType
    status: ReportStatus
    started_at: str
    completed_at: str
    duration_ms: int
    stages: list[StageResult]
    artifacts: EvalArtifacts
    metrics: EvalMetrics
    errors: list[str]
    warnings: list[str]
    rerun_command: str
