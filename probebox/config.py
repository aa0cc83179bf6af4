import os
import yaml
from pathlib import Path
from pydantic import AfterValidator, Field, field_validator
from pydantic_core.core_schema import ValidationInfo
from pydantic_settings import BaseSettings
from typing import Annotated


def _default_data_dir() -> Path:
    data_home = os.getenv('XDG_DATA_HOME') or os.path.expanduser('~/.local/share')
    return Path(data_home) / 'probebox'


class Config(BaseSettings):
    debug: bool = False

    data_dir: Annotated[Path, AfterValidator(lambda path: path.absolute())] = (
        _default_data_dir()
    )
    reports_dir: Path = Field(None, validate_default=True)

    default_port: int = 3000
    env_file: Path | None = None
    headless: bool = True

    # seconds
    startup_timeout: float = 30.0
    health_timeout: float = 10.0
    api_timeout: float = 10.0
    ui_timeout: float = 60.0

    # noinspection PyNestedDecorators
    @field_validator('reports_dir', mode='before')
    @classmethod
    def default_dirs(cls, v: Path | None, info: ValidationInfo):
        if v is not None:
            return v
        if 'data_dir' not in info.data:
            # let the data_dir error surface on its own
            return ''
        dirname = info.field_name.removesuffix('_dir').replace('_', '-')
        return info.data['data_dir'] / dirname


config_home = Path(os.getenv('XDG_CONFIG_HOME') or os.path.expanduser('~/.config'))
config_file = config_home / 'probebox' / 'config.yml'
if config_file.is_file():
    config_values = yaml.safe_load(config_file.read_text()) or {}
else:
    config_values = {}
config = Config(**config_values, _env_file='.env', _env_prefix='PROBEBOX_')

__all__ = ['Config', 'config']
