"""
External command execution for report generation.

Runs one child process with piped stdin/stdout/stderr and a hard timeout:

1. Rewrite a bare prompt flag (-p / --prompt) into an inline argument
2. Spawn with an augmented PATH in the requested working directory
3. Pump stdout/stderr incrementally into lock-guarded accumulators
4. Write stdin (if any) and always close it
5. Race process exit against the timeout through a one-shot gate
"""

import asyncio
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

from loguru import logger

from .errors import (
    EmptyCommandError,
    ExecutionFailedError,
    FailedToLaunchError,
    StdinWriteFailedError,
    TimedOutError,
)

PROMPT_FLAGS = ("-p", "--prompt")
READ_CHUNK_SIZE = 4096
DRAIN_GRACE_SECONDS = 1.0


def fallback_search_paths() -> List[str]:
    return [
        str(Path.home() / ".local" / "bin"),
        "/usr/local/bin",
        "/opt/homebrew/bin",
        "/usr/bin",
        "/bin",
    ]


def build_execution_environment() -> dict:
    """Current environment with well-known install locations appended to PATH."""
    environment = dict(os.environ)
    components = [p for p in environment.get("PATH", "").split(os.pathsep) if p]
    for fallback in fallback_search_paths():
        if fallback not in components:
            components.append(fallback)
    environment["PATH"] = os.pathsep.join(components)
    return environment


@dataclass(frozen=True)
class PreparedExecutionInput:
    arguments: List[str]
    stdin_text: Optional[str]


def prepare_execution_input(arguments: Sequence[str], input_text: Optional[str]) -> PreparedExecutionInput:
    """
    Some CLIs require a value for their prompt flag. When the flag is the
    last argument, pass the input inline instead of through stdin.
    """
    arguments = list(arguments)
    if not input_text:
        return PreparedExecutionInput(arguments, input_text)

    for index, argument in enumerate(arguments):
        if any(argument.startswith(f"{flag}=") for flag in PROMPT_FLAGS):
            return PreparedExecutionInput(arguments, input_text)
        if argument not in PROMPT_FLAGS:
            continue
        if index + 1 < len(arguments):
            return PreparedExecutionInput(arguments, input_text)
        return PreparedExecutionInput(arguments + [input_text], None)

    return PreparedExecutionInput(arguments, input_text)


class _OutputAccumulator:
    """Byte buffer shared by a reader task and the completion/timeout paths."""

    def __init__(self):
        self._lock = threading.Lock()
        self._data = bytearray()

    def append(self, chunk: bytes) -> None:
        with self._lock:
            self._data.extend(chunk)

    @property
    def text(self) -> str:
        with self._lock:
            return self._data.decode("utf-8", errors="replace")


class _CompletionGate:
    """Delivers exactly one outcome; later attempts are no-ops."""

    def __init__(self, future: asyncio.Future):
        self._lock = threading.Lock()
        self._completed = False
        self._future = future

    @property
    def is_completed(self) -> bool:
        with self._lock:
            return self._completed

    def _claim(self) -> bool:
        with self._lock:
            if self._completed:
                return False
            self._completed = True
            return True

    async def wait(self) -> str:
        return await self._future

    def succeed(self, output: str) -> bool:
        if not self._claim():
            return False
        if not self._future.done():
            self._future.set_result(output)
        return True

    def fail(self, error: BaseException) -> bool:
        if not self._claim():
            return False
        if not self._future.done():
            self._future.set_exception(error)
        return True


def _merge_output(stdout_text: str, stderr_text: str) -> str:
    parts = [part.strip() for part in (stdout_text, stderr_text)]
    return "\n".join(part for part in parts if part)


class CLIExecutor:
    """asyncio subprocess executor with stdin/stdout piping and timeout handling."""

    async def execute(
        self,
        command: str,
        arguments: Sequence[str] = (),
        input_text: Optional[str] = None,
        timeout_seconds: float = 300,
        cwd: Optional[Union[str, Path]] = None,
    ) -> str:
        """Run command and return trimmed stdout, or raise a CLIExecutorError."""
        normalized_command = command.strip()
        if not normalized_command:
            raise EmptyCommandError()

        prepared = prepare_execution_input(arguments, input_text)
        logger.debug(
            f"Launching {normalized_command} with {len(prepared.arguments)} argument(s), "
            f"timeout={timeout_seconds}s"
        )

        try:
            process = await asyncio.create_subprocess_exec(
                normalized_command,
                *prepared.arguments,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd is not None else None,
                env=build_execution_environment(),
            )
        except OSError as e:
            raise FailedToLaunchError(normalized_command, str(e)) from e

        loop = asyncio.get_running_loop()
        gate = _CompletionGate(loop.create_future())
        stdout_buffer = _OutputAccumulator()
        stderr_buffer = _OutputAccumulator()
        readers = [
            asyncio.create_task(self._pump(process.stdout, stdout_buffer)),
            asyncio.create_task(self._pump(process.stderr, stderr_buffer)),
        ]

        watcher = asyncio.create_task(
            self._watch_exit(process, normalized_command, readers, stdout_buffer, stderr_buffer, gate)
        )
        timer = asyncio.create_task(
            self._expire(process, normalized_command, timeout_seconds, readers, gate)
        )

        try:
            await self._write_input(process, prepared.stdin_text, normalized_command, gate)
            return await gate.wait()
        finally:
            timer.cancel()
            watcher.cancel()
            for reader in readers:
                reader.cancel()
            await asyncio.gather(timer, watcher, *readers, return_exceptions=True)
            if process.returncode is None:
                self._kill(process)
                await process.wait()

    @staticmethod
    async def _pump(stream: Optional[asyncio.StreamReader], accumulator: _OutputAccumulator) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                return
            accumulator.append(chunk)

    @staticmethod
    async def _write_input(
        process: asyncio.subprocess.Process,
        stdin_text: Optional[str],
        command: str,
        gate: _CompletionGate,
    ) -> None:
        stdin = process.stdin
        if stdin is None:
            return
        try:
            if stdin_text:
                stdin.write(stdin_text.encode("utf-8"))
                await stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # Child closed stdin early (fast failure or command ignores input).
            logger.debug(f"{command} closed stdin before input was fully written")
        except OSError as e:
            gate.fail(StdinWriteFailedError(command, str(e)))
        finally:
            stdin.close()
            try:
                await stdin.wait_closed()
            except (BrokenPipeError, ConnectionResetError):
                pass

    @staticmethod
    async def _watch_exit(
        process: asyncio.subprocess.Process,
        command: str,
        readers: List[asyncio.Task],
        stdout_buffer: _OutputAccumulator,
        stderr_buffer: _OutputAccumulator,
        gate: _CompletionGate,
    ) -> None:
        exit_code = await process.wait()

        # Grandchildren may inherit the pipes; don't wait on them forever.
        _, pending = await asyncio.wait(readers, timeout=DRAIN_GRACE_SECONDS)
        for reader in pending:
            reader.cancel()

        stdout_text = stdout_buffer.text
        logger.debug(f"{command} exited with status {exit_code}")
        if exit_code != 0:
            gate.fail(ExecutionFailedError(command, exit_code, _merge_output(stdout_text, stderr_buffer.text)))
            return
        gate.succeed(stdout_text.strip())

    async def _expire(
        self,
        process: asyncio.subprocess.Process,
        command: str,
        timeout_seconds: float,
        readers: List[asyncio.Task],
        gate: _CompletionGate,
    ) -> None:
        await asyncio.sleep(timeout_seconds)
        if gate.is_completed:
            return

        for reader in readers:
            reader.cancel()
        self._kill(process)
        if gate.fail(TimedOutError(command, timeout_seconds)):
            logger.warning(f"{command} timed out after {timeout_seconds}s and was terminated")

    @staticmethod
    def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            pass
