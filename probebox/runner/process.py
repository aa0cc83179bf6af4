import asyncio
import codecs
import logging
import os
import signal
from asyncio import create_subprocess_exec
from asyncio.subprocess import Process
from pathlib import Path
from subprocess import DEVNULL, PIPE
from types import MappingProxyType
from typing import Callable, Mapping

from probebox.const import KILL_GRACE_PERIOD, SPAWN_FAILURE_EXIT_CODE
from probebox.exceptions import LaunchError

logger = logging.getLogger(__name__)

OutputObserver = Callable[[str], None]

READ_CHUNK_SIZE = 4096
READER_DRAIN_TIMEOUT = 1.0


def merge_env(overrides: Mapping[str, str] | None) -> Mapping[str, str]:
    """Snapshot the current environment with ``overrides`` applied on top."""
    merged = dict(os.environ)
    if overrides:
        merged |= {str(k): str(v) for k, v in overrides.items()}
    return MappingProxyType(merged)


class OutputBuffer:
    """Append-only text accumulated from one output stream."""

    _chunks: list[str]

    def __init__(self):
        self._chunks = []

    def append(self, chunk: str):
        if chunk:
            self._chunks.append(chunk)

    @property
    def text(self) -> str:
        if len(self._chunks) > 1:
            self._chunks = [''.join(self._chunks)]
        return self._chunks[0] if self._chunks else ''

    def tail(self, size: int) -> str:
        return self.text[-size:]

    def __len__(self):
        return len(self.text)


class ProcessHandle:
    """Sole owner of one spawned child process and its captured output."""

    _process: Process | None
    _stdout: OutputBuffer
    _stderr: OutputBuffer
    _returncode: int | None
    _exited: asyncio.Event
    _tasks: list[asyncio.Task]
    _watchdog: asyncio.Task | None
    _kill_task: asyncio.Task | None
    spawn_error: str | None
    killed: bool

    def __init__(self, process: Process | None):
        self._process = process
        self._stdout = OutputBuffer()
        self._stderr = OutputBuffer()
        self._returncode = None
        self._exited = asyncio.Event()
        self._tasks = []
        self._watchdog = None
        self._kill_task = None
        self.killed = False
        self.spawn_error = None

    @property
    def pid(self) -> int:
        return self._process.pid if self._process else 0

    @property
    def stdout(self) -> str:
        return self._stdout.text

    @property
    def stderr(self) -> str:
        return self._stderr.text

    @property
    def logs(self) -> str:
        return self.stdout + '\n---STDERR---\n' + self.stderr

    @property
    def returncode(self) -> int | None:
        return self._returncode

    @property
    def exited(self) -> bool:
        return self._exited.is_set()

    def tail(self, size: int = 2000) -> tuple[str, str]:
        return self._stdout.tail(size), self._stderr.tail(size)

    def _start(
        self,
        timeout: float,
        on_stdout: OutputObserver | None,
        on_stderr: OutputObserver | None,
    ):
        readers = [
            asyncio.create_task(
                self._pump(self._process.stdout, self._stdout, on_stdout)
            ),
            asyncio.create_task(
                self._pump(self._process.stderr, self._stderr, on_stderr)
            ),
        ]
        self._tasks = [*readers, asyncio.create_task(self._wait(readers))]
        self._watchdog = asyncio.create_task(self._expire(timeout))

    def _fail_spawn(self, error: OSError):
        self.spawn_error = str(error)
        self._stderr.append(f'\nProcess error: {error}')
        self._returncode = SPAWN_FAILURE_EXIT_CODE
        self._exited.set()

    @staticmethod
    async def _pump(
        stream: asyncio.StreamReader,
        buffer: OutputBuffer,
        observer: OutputObserver | None,
    ):
        decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        while True:
            data = await stream.read(READ_CHUNK_SIZE)
            text = decoder.decode(data, final=not data)
            if text:
                buffer.append(text)
                if observer is not None:
                    try:
                        observer(text)
                    except Exception:
                        logger.exception('Output observer failed')
            if not data:
                break

    async def _wait(self, readers: list[asyncio.Task]):
        returncode = await self._process.wait()
        # Grandchildren may still hold the pipes open, don't block on them forever
        _, pending = await asyncio.wait(readers, timeout=READER_DRAIN_TIMEOUT)
        for reader in pending:
            reader.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._returncode = returncode
        self._exited.set()
        logger.debug(f'Process {self.pid} exited with code {returncode}')
        if self._watchdog is not None and self._watchdog is not asyncio.current_task():
            self._watchdog.cancel()

    async def _expire(self, timeout: float):
        await asyncio.sleep(timeout)
        if not self.exited:
            logger.info(f'Timeout reached ({timeout}s), killing process {self.pid}')
            await self.kill()

    def _signal(self, sig: int):
        try:
            # Started in its own session, so the group id is the pid
            os.killpg(self.pid, sig)
        except ProcessLookupError:
            pass
        except PermissionError:
            self._process.send_signal(sig)

    async def _terminate(self):
        self.killed = True
        self._signal(signal.SIGTERM)
        try:
            await asyncio.wait_for(self._exited.wait(), KILL_GRACE_PERIOD)
        except asyncio.TimeoutError:
            logger.warning(
                f'Process {self.pid} ignored SIGTERM for {KILL_GRACE_PERIOD}s, '
                'sending SIGKILL'
            )
            self._signal(signal.SIGKILL)
            await self._exited.wait()

    async def kill(self):
        if self._process is None or self.exited and self._kill_task is None:
            return
        if self._kill_task is None:
            self._kill_task = asyncio.create_task(self._terminate())
        await asyncio.shield(self._kill_task)

    async def wait_for_exit(self) -> int:
        await self._exited.wait()
        return self._returncode


async def launch(
    command: str,
    args: list[str] | tuple[str, ...],
    cwd: Path | str,
    env: Mapping[str, str] | None,
    timeout: float,
    on_stdout: OutputObserver | None = None,
    on_stderr: OutputObserver | None = None,
) -> ProcessHandle:
    merged_env = merge_env(env)
    try:
        process = await create_subprocess_exec(
            command,
            *args,
            cwd=cwd,
            env=dict(merged_env),
            stdin=DEVNULL,
            stdout=PIPE,
            stderr=PIPE,
            start_new_session=True,
        )
    except OSError as e:
        logger.error(f'Failed to spawn {command!r}: {e}')
        handle = ProcessHandle(None)
        handle._fail_spawn(e)
        return handle

    logger.debug(f'Spawned {command} {" ".join(args)} as pid {process.pid}')
    handle = ProcessHandle(process)
    handle._start(timeout, on_stdout, on_stderr)
    return handle


async def find_available_port(start_port: int = 3000, max_attempts: int = 100) -> int:
    for port in range(start_port, start_port + max_attempts):
        if await _is_port_available(port):
            return port
    raise LaunchError(f'Unable to find available port starting from {start_port}')


async def _is_port_available(port: int) -> bool:
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection('127.0.0.1', port), 0.5
        )
    except (OSError, asyncio.TimeoutError):
        return True
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        # the listener reset the connection, still in use
        pass
    return False
