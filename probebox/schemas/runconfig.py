import shlex
from pathlib import Path
from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator
from types import MappingProxyType
from typing import Annotated, Mapping

from probebox.config import config

Seconds = Annotated[float, Field(gt=0)]


class Timeouts(BaseModel):
    model_config = ConfigDict(frozen=True)

    startup: Seconds = config.startup_timeout
    health: Seconds = config.health_timeout
    api: Seconds = config.api_timeout
    ui: Seconds = config.ui_timeout

    @property
    def total(self) -> float:
        return self.startup + self.health + self.api + self.ui


class RunConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    cwd: Path
    command: str = ''
    args: tuple[str, ...] = ()
    env: Mapping[str, str] = Field(default_factory=dict, validate_default=True)
    port: int
    framework: str | None = None
    timeouts: Timeouts = Timeouts()
    needs_config: bool = False
    config_error: str | None = None

    # noinspection PyNestedDecorators
    @field_validator('env', mode='after')
    @classmethod
    def freeze_env(cls, v: Mapping[str, str]):
        return MappingProxyType({str(k): str(val) for k, val in v.items()})

    @property
    def command_line(self) -> str:
        return ' '.join((self.command, *self.args)).strip()

    @property
    def base_url(self) -> str:
        return f'http://127.0.0.1:{self.port}'


class ProjectConfig(BaseModel):
    """Contents of an ``evaluation.config.{yml,json}`` file in the target project."""

    start_command: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
    start_args: list[str] = []
    port: int | None = None
    env: dict[str, str] = {}
    framework: str = 'custom'

    # noinspection PyNestedDecorators
    @field_validator('start_command', mode='after')
    @classmethod
    def splittable(cls, v: str):
        shlex.split(v)
        return v

    @property
    def argv(self) -> list[str]:
        return shlex.split(self.start_command)
