import logging
import shlex
import uuid
from datetime import datetime
from pathlib import Path

from probebox.aggregate import aggregate
from probebox.schemas import (
    EvalArtifacts,
    EvalReport,
    EvaluationType,
    StageResult,
    StageStatus,
)

logger = logging.getLogger(__name__)

NEEDS_CONFIG_WARNING = (
    'Some stages require configuration. '
    'Create evaluation.config.yml to fix.'
)


def build_rerun_command(
    project_path: Path,
    evaluation_type: EvaluationType,
    port: int | None = None,
    base_url: str | None = None,
    env_file: Path | None = None,
) -> str:
    parts = ['python', '-m', 'probebox', '--type', evaluation_type.value]
    if port:
        parts += ['--port', str(port)]
    if base_url:
        parts += ['--base-url', base_url]
    if env_file:
        parts += ['--env-file', str(env_file)]
    parts.append(str(project_path))
    return shlex.join(parts)


def generate_report(
    project_path: Path,
    project_name: str,
    evaluation_type: EvaluationType,
    stages: list[StageResult],
    started_at: datetime,
    completed_at: datetime,
    rerun_command: str,
    artifacts: EvalArtifacts | None = None,
) -> EvalReport:
    status, metrics = aggregate(stages)
    warnings = []
    if any(stage.status == StageStatus.needs_config for stage in stages):
        warnings.append(NEEDS_CONFIG_WARNING)

    return EvalReport(
        id=str(uuid.uuid4()),
        project_path=str(project_path),
        project_name=project_name,
        evaluation_type=evaluation_type,
        status=status,
        started_at=started_at.isoformat(),
        completed_at=completed_at.isoformat(),
        duration_ms=int((completed_at - started_at).total_seconds() * 1000),
        stages=stages,
        artifacts=artifacts or EvalArtifacts(),
        metrics=metrics,
        errors=[error for stage in stages for error in stage.errors],
        warnings=warnings,
        rerun_command=rerun_command,
    )


def render_markdown(report: EvalReport) -> str:
    """Human-readable summary of ``report``."""
    metrics = report.metrics
    lines = [
        f'# Evaluation Report: {report.project_name}',
        '',
        f'> Generated: {report.completed_at}',
        '',
        '## Summary',
        '',
        '| Metric | Value |',
        '|--------|-------|',
        f'| Status | **{report.status.value.upper()}** |',
        f'| Overall Score | **{metrics.overall_score}** |',
        f'| Duration | {report.duration_ms}ms |',
        f'| Evaluation Type | {report.evaluation_type.value} |',
        '',
    ]

    breakdown = [
        (label, score)
        for label, score in (
            ('Static Analysis', metrics.static_score),
            ('Runtime', metrics.runtime_score),
            ('UI', metrics.ui_score),
        )
        if score is not None
    ]
    if breakdown:
        lines += ['### Score Breakdown', '']
        lines += [f'- **{label}**: {score}' for label, score in breakdown]
        lines.append('')

    lines += ['## Stages', '']
    for stage in report.stages:
        lines += [
            f'### {stage.stage.value.capitalize()}',
            '',
            f'- **Status**: {stage.status.value}',
            f'- **Duration**: {stage.duration_ms}ms',
        ]
        if stage.score is not None:
            lines.append(f'- **Score**: {stage.score}')
        if stage.errors:
            lines.append('- **Errors**:')
            lines += [f'  - {error}' for error in stage.errors]
        lines.append('')

    if report.errors:
        lines += ['## Errors', '', *(f'- {error}' for error in report.errors), '']
    if report.warnings:
        lines += ['## Warnings', '', *(f'- {warning}' for warning in report.warnings), '']

    lines += ['## Rerun Command', '', '```bash', report.rerun_command, '```', '']

    artifacts = report.artifacts
    counts = [
        (label, len(files))
        for label, files in (
            ('Screenshots', artifacts.screenshots),
            ('Traces', artifacts.traces),
            ('Logs', artifacts.logs),
        )
        if files
    ]
    if counts:
        lines += ['## Artifacts', '']
        lines += [f'- {label}: {count} files' for label, count in counts]
        lines.append('')

    return '\n'.join(lines)


def save_report(report: EvalReport, report_dir: Path) -> tuple[Path, Path]:
    """Write ``report.json`` and ``report.md`` into ``report_dir``."""
    report_dir.mkdir(parents=True, exist_ok=True)
    json_path = report_dir / 'report.json'
    json_path.write_text(report.model_dump_json(indent=2))
    md_path = report_dir / 'report.md'
    md_path.write_text(render_markdown(report))
    logger.info(f'Report saved to {json_path} and {md_path}')
    return json_path, md_path


def default_report_dir(reports_dir: Path, project_name: str) -> Path:
    timestamp = datetime.now().strftime('%Y%m%d-%H%M%S')
    return reports_dir / project_name.replace('/', '_') / timestamp
