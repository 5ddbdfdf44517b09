"""Run Report model."""

import datetime
from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from typing import Any

from .errors import CancellationError
from .errors import ExecutionError

# Maximum size (in bytes) of captured output included in serialized reports
MAX_OUTPUT_SIZE_BYTES = 10_000


class StepStatus(str, Enum):
    """Final status of a step (or of a single attempt)."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def is_failure(self) -> bool:
        return self in (StepStatus.FAILED, StepStatus.TIMED_OUT)


class RunOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


def _truncate_text(value: str, max_bytes: int) -> str:
    """Truncate captured output for display."""
    if len(value) > max_bytes:
        return value[:max_bytes] + "\n\n[... truncated, see report for full output]"
    return value


@dataclass
class AttemptRecord:
    """Outcome of one execution attempt of a step."""

    number: int
    status: StepStatus
    exit_code: int | None
    elapsed: float
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "elapsed": round(self.elapsed, 3),
            "error": self.error,
        }


@dataclass
class StepResult:
    """Result of a single step, as recorded in the run report."""

    step_id: str
    name: str
    status: StepStatus
    attempts: int = 0
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    elapsed: float = 0.0
    reason: str | None = None  # Why the step did not succeed
    attempt_history: list[AttemptRecord] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCEEDED

    @property
    def skipped(self) -> bool:
        return self.status == StepStatus.SKIPPED

    def to_dict(self, max_output_bytes: int = MAX_OUTPUT_SIZE_BYTES) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "name": self.name,
            "status": self.status.value,
            "attempts": self.attempts,
            "exit_code": self.exit_code,
            "stdout": _truncate_text(self.stdout, max_output_bytes),
            "stderr": _truncate_text(self.stderr, max_output_bytes),
            "elapsed": round(self.elapsed, 3),
            "reason": self.reason,
            "attempt_history": [a.to_dict() for a in self.attempt_history],
        }


@dataclass
class RunReport:
    """Ordered record of every step of a recipe run.

    Step order always matches the recipe's declared order; skipped steps are
    included so the report covers the whole recipe.
    """

    recipe_id: str
    recipe_name: str
    rendered_command: str | None = None
    steps: list[StepResult] = field(default_factory=list)
    started_at: datetime.datetime = field(default_factory=lambda: datetime.datetime.now(datetime.timezone.utc))
    finished_at: datetime.datetime | None = None
    cancelled: bool = False

    @property
    def failed_step(self) -> StepResult | None:
        """First step whose final status is failed or timed out."""
        for result in self.steps:
            if result.status.is_failure:
                return result
        return None

    @property
    def outcome(self) -> RunOutcome:
        if self.cancelled:
            return RunOutcome.CANCELLED
        if self.failed_step is not None:
            return RunOutcome.FAILED
        return RunOutcome.SUCCEEDED

    @property
    def succeeded(self) -> bool:
        return self.outcome == RunOutcome.SUCCEEDED

    @property
    def elapsed(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def get(self, step_id: str) -> StepResult | None:
        for result in self.steps:
            if result.step_id == step_id:
                return result
        return None

    def summary(self) -> str:
        """One-line human-readable summary."""
        counts: dict[str, int] = {}
        for result in self.steps:
            counts[result.status.value] = counts.get(result.status.value, 0) + 1
        detail = ", ".join(f"{count} {status}" for status, count in counts.items())
        text = f"Recipe '{self.recipe_name}' {self.outcome.value} ({detail or 'no steps'})"
        failed = self.failed_step
        if failed is not None:
            text += f"; first failure: '{failed.step_id}' ({failed.reason})"
        return text

    def raise_for_status(self) -> None:
        """Raise ExecutionError or CancellationError unless the run succeeded."""
        if self.cancelled:
            running = next((r for r in self.steps if r.status == StepStatus.CANCELLED), None)
            raise CancellationError(
                f"Recipe '{self.recipe_name}' was cancelled",
                step_id=running.step_id if running else None,
            )
        failed = self.failed_step
        if failed is not None:
            raise ExecutionError(
                f"Recipe '{self.recipe_name}' failed at step '{failed.step_id}': {failed.reason}",
                step_id=failed.step_id,
            )

    def to_dict(self, max_output_bytes: int = MAX_OUTPUT_SIZE_BYTES) -> dict[str, Any]:
        failed = self.failed_step
        return {
            "recipe_id": self.recipe_id,
            "recipe_name": self.recipe_name,
            "outcome": self.outcome.value,
            "failed_step": failed.step_id if failed else None,
            "rendered_command": self.rendered_command,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "elapsed": round(self.elapsed, 3),
            "steps": [s.to_dict(max_output_bytes) for s in self.steps],
        }
