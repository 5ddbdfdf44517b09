"""Process Runner: spawns commands and observes their completion."""

import asyncio
import logging
import os
import signal
import time
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .errors import ExecutionError

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """Observed outcome of a single process invocation."""

    exit_code: int | None  # None when the process was killed on timeout
    stdout: bytes
    stderr: bytes
    elapsed: float  # Wall time in seconds
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.exit_code == 0


class ProcessRunner(Protocol):
    """Capability to run a command with arguments, environment overlay and timeout."""

    async def run(
        self,
        command: str,
        args: list[str],
        env: Mapping[str, str],
        timeout: float | None,
        cwd: Path | None = None,
    ) -> ProcessResult: ...


class SubprocessRunner:
    """Runs commands as asyncio subprocesses in their own process group.

    On timeout or cancellation the whole group receives SIGTERM, then SIGKILL
    once ``kill_grace_seconds`` have passed, so children spawned by the
    command do not outlive the attempt.
    """

    def __init__(self, kill_grace_seconds: float = 5.0):
        self.kill_grace_seconds = kill_grace_seconds

    async def run(
        self,
        command: str,
        args: list[str],
        env: Mapping[str, str],
        timeout: float | None,
        cwd: Path | None = None,
    ) -> ProcessResult:
        """
        Run a command to completion or until the timeout expires.

        Args:
            command: Executable name or path
            args: Rendered argument list
            env: Environment overlay merged onto the inherited environment
            timeout: Seconds before the process is aborted (None or 0 = no limit)
            cwd: Working directory

        Returns:
            ProcessResult with exit code, captured output and elapsed time

        Raises:
            ExecutionError: If the process cannot be started
            asyncio.CancelledError: If cancelled; the process is terminated first
        """
        full_env = os.environ.copy()
        full_env.update(env)

        start = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=full_env,
                cwd=str(cwd) if cwd else None,
                start_new_session=os.name == "posix",
            )
        except OSError as e:
            raise ExecutionError(f"Failed to execute '{command}': {e}") from e

        logger.debug(f"Started '{command}' (pid {process.pid})")

        stdout = bytearray()
        stderr = bytearray()

        async def collect() -> int:
            await asyncio.gather(self._drain(process.stdout, stdout), self._drain(process.stderr, stderr))
            return await process.wait()

        try:
            exit_code = await asyncio.wait_for(collect(), timeout=timeout or None)
        except asyncio.TimeoutError:
            logger.warning(f"'{command}' (pid {process.pid}) exceeded {timeout}s, terminating")
            await self._terminate(process)
            return ProcessResult(
                exit_code=None,
                stdout=bytes(stdout),
                stderr=bytes(stderr),
                elapsed=time.monotonic() - start,
                timed_out=True,
            )
        except asyncio.CancelledError:
            logger.info(f"Cancelling '{command}' (pid {process.pid})")
            await self._terminate(process)
            raise

        return ProcessResult(
            exit_code=exit_code,
            stdout=bytes(stdout),
            stderr=bytes(stderr),
            elapsed=time.monotonic() - start,
        )

    @staticmethod
    async def _drain(stream: asyncio.StreamReader | None, buffer: bytearray) -> None:
        """Append everything read from the stream; output read before a timeout is kept."""
        if stream is None:
            return
        while True:
            chunk = await stream.read(65536)
            if not chunk:
                return
            buffer.extend(chunk)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """Terminate the process group, escalating to SIGKILL.

        The group is signalled even when the direct child has already exited,
        since background children may still hold its pipes.
        """
        self._signal(process, signal.SIGTERM)
        try:
            await asyncio.wait_for(self._wait_group(process), timeout=self.kill_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"process group {process.pid} ignored SIGTERM, killing")
            self._signal(process, signal.SIGKILL if os.name == "posix" else signal.SIGTERM)
            await process.wait()

    async def _wait_group(self, process: asyncio.subprocess.Process) -> None:
        """Wait until the process has been reaped and no member of its group remains."""
        await process.wait()
        while self._group_alive(process):
            await asyncio.sleep(0.05)

    @staticmethod
    def _group_alive(process: asyncio.subprocess.Process) -> bool:
        if os.name != "posix":
            return False
        try:
            os.killpg(process.pid, 0)
        except (ProcessLookupError, PermissionError):
            return False
        return True

    @staticmethod
    def _signal(process: asyncio.subprocess.Process, sig: int) -> None:
        try:
            if os.name == "posix":
                os.killpg(process.pid, sig)
            else:
                process.kill()
        except ProcessLookupError:
            pass
