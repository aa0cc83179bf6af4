import argparse
import asyncio
import logging
import sys
from pathlib import Path

from probebox.config import config
from probebox.exceptions import ConfigurationError
from probebox.report import save_report
from probebox.runner import Runner
from probebox.schemas import EvalReport, EvaluationType, ReportStatus
from probebox.schemas.runconfig import Timeouts

logger = logging.getLogger('probebox')


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog='probebox',
        description='Start a project and check that it runs, answers and renders.',
    )
    parser.add_argument('project_path', type=Path)
    parser.add_argument(
        '-t',
        '--type',
        choices=[t.value for t in EvaluationType],
        default=EvaluationType.dynamic.value,
        help='evaluation type (default: %(default)s)',
    )
    parser.add_argument('-p', '--port', type=int, help='port the application listens on')
    parser.add_argument(
        '-b', '--base-url', help='URL of an already running instance, skips startup'
    )
    parser.add_argument('-e', '--env-file', type=Path, help='extra environment file')
    parser.add_argument(
        '--timeout',
        type=float,
        help=f'startup timeout in seconds (default: {config.startup_timeout:g})',
    )
    parser.add_argument('-r', '--report-dir', type=Path, help='where to write the report')
    return parser.parse_args(argv)


def print_summary(report: EvalReport, json_path: Path, md_path: Path):
    print()
    print(f'Evaluation {report.status.value.upper()}')
    print(f'Overall score: {report.metrics.overall_score}')
    print(f'Duration: {report.duration_ms}ms')
    print()
    print('Stages:')
    for stage in report.stages:
        score = f' ({stage.score})' if stage.score is not None else ''
        print(f'  {stage.stage.value}{score}: {stage.status.value}')
    if report.errors:
        print()
        print('Errors:')
        for error in report.errors[:5]:
            print(f'  - {error}')
        if len(report.errors) > 5:
            print(f'  ... and {len(report.errors) - 5} more')
    for warning in report.warnings:
        print(f'Warning: {warning}')
    print()
    print(f'Report saved to {json_path}')
    print(f'Summary saved to {md_path}')


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    timeouts = Timeouts(startup=args.timeout) if args.timeout else Timeouts()
    try:
        runner = Runner(
            args.project_path,
            EvaluationType(args.type),
            port=args.port,
            base_url=args.base_url,
            env_file=args.env_file,
            report_dir=args.report_dir,
            timeouts=timeouts,
        )
    except ConfigurationError as e:
        logger.error(str(e))
        return 2

    logger.info(f'Evaluating {runner.project_path} ({runner.evaluation_type.value})')
    report = asyncio.run(runner.run())
    json_path, md_path = save_report(report, runner.report_dir)
    print_summary(report, json_path, md_path)
    return 1 if report.status == ReportStatus.failed else 0


if __name__ == '__main__':
    sys.exit(main())
