from probebox.runner.api import run_api_tests
from probebox.runner.health import check_health, wait_for_healthy, wait_for_port
from probebox.runner.launcher import launch_application
from probebox.runner.process import ProcessHandle, find_available_port, launch
from probebox.runner.runner import Runner

__all__ = [
    'ProcessHandle',
    'Runner',
    'check_health',
    'find_available_port',
    'launch',
    'launch_application',
    'run_api_tests',
    'wait_for_healthy',
    'wait_for_port',
]
