"""Shared fixtures for recipe engine tests."""

import os
import sys
from dataclasses import dataclass
from pathlib import Path

import pytest

from recipe_engine.runner import ProcessResult

REPO_ROOT = Path(__file__).resolve().parent.parent
RECIPES_DIR = REPO_ROOT / "recipes"


@dataclass
class RunnerCall:
    command: str
    args: list[str]
    env: dict[str, str]
    timeout: float | None
    cwd: Path | None

    @property
    def command_line(self) -> str:
        return " ".join([self.command, *self.args])


def ok(stdout: str = "") -> ProcessResult:
    return ProcessResult(exit_code=0, stdout=stdout.encode(), stderr=b"", elapsed=0.01)


def fail(exit_code: int = 1, stderr: str = "boom") -> ProcessResult:
    return ProcessResult(exit_code=exit_code, stdout=b"", stderr=stderr.encode(), elapsed=0.01)


def timed_out() -> ProcessResult:
    return ProcessResult(exit_code=None, stdout=b"", stderr=b"", elapsed=1.0, timed_out=True)


class FakeRunner:
    """Scripted Process Runner.

    ``script`` maps a command line ("cmd arg1 arg2") to a list of results
    returned for successive calls; the last entry repeats. Entries may be a
    ProcessResult, an exception instance to raise, or an async callable.
    Unscripted command lines succeed with empty output.
    """

    def __init__(self, script: dict | None = None):
        self.script = {key: list(value) for key, value in (script or {}).items()}
        self.calls: list[RunnerCall] = []

    async def run(self, command, args, env, timeout, cwd=None):
        call = RunnerCall(command, list(args), dict(env), timeout, cwd)
        self.calls.append(call)

        entries = self.script.get(call.command_line)
        if not entries:
            return ok()
        entry = entries.pop(0) if len(entries) > 1 else entries[0]

        if isinstance(entry, BaseException):
            raise entry
        if callable(entry):
            return await entry()
        return entry

    def command_lines(self) -> list[str]:
        return [call.command_line for call in self.calls]


def python_command(code: str) -> tuple[str, list[str]]:
    """Command and args running a snippet with the current interpreter."""
    return sys.executable, ["-c", code]


def process_alive(pid: int) -> bool:
    """True while the pid exists and is not a zombie waiting to be reaped."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    stat = Path(f"/proc/{pid}/stat")
    try:
        state = stat.read_text().rsplit(")", 1)[1].split()[0]
    except (OSError, IndexError):
        return True
    return state != "Z"


@pytest.fixture
def temp_dir(tmp_path):
    """Create temp directory for tests."""
    return tmp_path


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def docker_cleanup_path() -> Path:
    return RECIPES_DIR / "docker-cleanup.yaml"
