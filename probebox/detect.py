import json
import logging
import os
from pathlib import Path
from types import MappingProxyType

import yaml
from dotenv import dotenv_values
from pydantic import ValidationError
from yaml import YAMLError

from probebox.const import (
    DOCKER_COMPOSE_FILES,
    NODE_FRAMEWORKS,
    NODE_PORT_ARGS,
    NODE_SCRIPT_PRIORITY,
    PROJECT_CONFIG_FILES,
    PYTHON_ENTRY_POINTS,
)
from probebox.exceptions import ConfigurationError
from probebox.schemas.runconfig import ProjectConfig, RunConfig, Timeouts

logger = logging.getLogger(__name__)

CONFIG_HINT = (
    'Create evaluation.config.yml with a start_command to tell probebox '
    'how to start this project.'
)


def load_project_config(project_path: Path) -> ProjectConfig | None:
    for name in PROJECT_CONFIG_FILES:
        file = project_path / name
        if not file.is_file():
            continue
        try:
            if file.suffix == '.json':
                data = json.loads(file.read_text())
            else:
                data = yaml.safe_load(file.read_text())
            return ProjectConfig.model_validate(data)
        except (ValueError, YAMLError, ValidationError) as e:
            raise ConfigurationError(f'Invalid {name}: {e}')
    return None


def load_env_file(project_path: Path, env_file: Path | None = None) -> dict[str, str]:
    """Extra environment for the target, from the first env file that exists.

    Lookup order is ``$PROBEBOX_ENV_FILE``, then ``env_file``, then the
    project's own ``.env``.
    """
    candidates = [
        os.getenv('PROBEBOX_ENV_FILE'),
        env_file,
        project_path / '.env',
    ]
    for candidate in candidates:
        if candidate and Path(candidate).is_file():
            logger.info(f'Loaded env from {candidate}')
            return {k: v for k, v in dotenv_values(candidate).items() if v is not None}
    logger.info('No .env file found, continuing without additional env vars')
    return {}


def _needs_config(
    project_path: Path, port: int, message: str, framework: str | None = None
) -> RunConfig:
    return RunConfig(
        cwd=project_path,
        port=port,
        framework=framework,
        needs_config=True,
        config_error=message,
    )


def _node_framework(package: dict) -> str:
    deps = {}
    for key in ('dependencies', 'devDependencies'):
        if isinstance(package.get(key), dict):
            deps |= package[key]
    return next((name for dep, name in NODE_FRAMEWORKS if dep in deps), 'node')


def _detect_node(project_path: Path, port: int) -> RunConfig:
    try:
        package = json.loads((project_path / 'package.json').read_text())
    except ValueError as e:
        return _needs_config(project_path, port, f'Invalid package.json: {e}', 'node')
    if not isinstance(package, dict):
        package = {}
    scripts = package.get('scripts')
    if not isinstance(scripts, dict):
        scripts = {}
    framework = _node_framework(package)

    for script in NODE_SCRIPT_PRIORITY:
        if script in scripts:
            port_args = [
                arg.format(port=port) for arg in NODE_PORT_ARGS.get(framework, ())
            ]
            return RunConfig(
                cwd=project_path,
                command='npm',
                args=('run', script, *port_args),
                env={'PORT': str(port)},
                port=port,
                framework=framework,
            )
    available = ', '.join(scripts) or 'none'
    return _needs_config(
        project_path,
        port,
        f'No suitable start script found in package.json. Available scripts: {available}',
        framework,
    )


def _detect_python(project_path: Path, port: int) -> RunConfig:
    entry = next(
        (name for name in PYTHON_ENTRY_POINTS if (project_path / name).is_file()), None
    )
    if entry is None:
        return _needs_config(
            project_path,
            port,
            'Unable to detect Python entry point. ' + CONFIG_HINT,
            'python',
        )
    source = (project_path / entry).read_text(errors='replace')
    if 'fastapi' in source.lower():
        return RunConfig(
            cwd=project_path,
            command='uvicorn',
            args=(
                f'{entry.removesuffix(".py")}:app',
                '--host',
                '127.0.0.1',
                '--port',
                str(port),
            ),
            port=port,
            framework='fastapi',
        )
    return RunConfig(
        cwd=project_path,
        command='python',
        args=(entry,),
        env={'PORT': str(port), 'FLASK_RUN_PORT': str(port)},
        port=port,
        framework='flask' if 'flask' in source.lower() else 'python',
    )


def detect_project(
    project_path: Path | str,
    port: int,
    env: dict[str, str] | None = None,
    timeouts: Timeouts | None = None,
) -> RunConfig:
    """Work out how to start the project, or why that isn't possible."""
    project_path = Path(project_path).absolute()
    try:
        project_config = load_project_config(project_path)
    except ConfigurationError as e:
        detected = _needs_config(project_path, port, f'{e}. {CONFIG_HINT}', 'custom')
    else:
        if project_config is not None:
            command, *args = project_config.argv
            detected = RunConfig(
                cwd=project_path,
                command=command,
                args=(*args, *project_config.start_args),
                env=project_config.env,
                port=project_config.port or port,
                framework=project_config.framework,
            )
        elif (project_path / 'package.json').is_file():
            detected = _detect_node(project_path, port)
        elif (project_path / 'requirements.txt').is_file() or (
            project_path / 'pyproject.toml'
        ).is_file():
            detected = _detect_python(project_path, port)
        elif any((project_path / name).is_file() for name in DOCKER_COMPOSE_FILES):
            detected = RunConfig(
                cwd=project_path,
                command='docker-compose',
                args=('up', '-d'),
                port=port,
                framework='docker',
            )
        else:
            detected = _needs_config(
                project_path, port, 'Unable to detect project type. ' + CONFIG_HINT
            )

    updates = {}
    if env:
        updates['env'] = MappingProxyType({**detected.env, **env})
    if timeouts is not None:
        updates['timeouts'] = timeouts
    return detected.model_copy(update=updates) if updates else detected


def get_project_name(project_path: Path | str) -> str:
    project_path = Path(project_path)
    try:
        package = json.loads((project_path / 'package.json').read_text())
        name = package.get('name') if isinstance(package, dict) else None
        if isinstance(name, str) and name.strip():
            return name.strip()
    except (OSError, ValueError):
        pass
    return project_path.absolute().name
