"""Recipe execution engine."""

import asyncio
import datetime
import logging
import time
from collections.abc import Callable
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Any

from .arguments import BoundArguments
from .arguments import bind_arguments
from .config import EngineConfig
from .errors import ExecutionError
from .errors import TemplateError
from .expression_evaluator import evaluate_condition
from .models import TOP_LEVEL_STEP_ID
from .models import Recipe
from .models import Step
from .report import AttemptRecord
from .report import RunReport
from .report import StepResult
from .report import StepStatus
from .runner import ProcessResult
from .runner import ProcessRunner
from .runner import SubprocessRunner
from .template import render
from .template import render_all
from .template import render_mapping

logger = logging.getLogger(__name__)

SKIP_CONDITION = "condition evaluated false"
SKIP_CANCELLED = "run cancelled"


class CancellationToken:
    """Caller-side handle for aborting a run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class ExecutionEvent:
    """Progress notification emitted during a run."""

    kind: str  # run_started, step_started, step_retrying, step_finished, run_finished
    recipe_id: str
    step_id: str | None = None
    message: str = ""
    status: str | None = None


@dataclass
class RunContext:
    """Per-run collaborators threaded explicitly through the executor.

    Nothing here is shared between runs unless the caller shares it.
    """

    cancellation: CancellationToken = field(default_factory=CancellationToken)
    on_event: Callable[[ExecutionEvent], None] | None = None
    cwd: Path | None = None
    shell: str | None = None  # Overrides the shell used for the top-level command
    logger: logging.Logger = logger

    def emit(self, event: ExecutionEvent) -> None:
        if self.on_event is not None:
            self.on_event(event)


@dataclass
class RenderedStep:
    """A step with every template rendered for this run."""

    step: Step
    args: list[str]
    env: dict[str, str]
    cwd: Path | None


class RecipeExecutor:
    """Executes recipes step by step with timeout, retry and fail-stop policy."""

    def __init__(self, runner: ProcessRunner | None = None, config: EngineConfig | None = None):
        """
        Initialize executor.

        Args:
            runner: Process runner used to spawn commands (defaults to SubprocessRunner)
            config: Engine configuration
        """
        self.config = config or EngineConfig()
        self.runner = runner or SubprocessRunner(kill_grace_seconds=self.config.kill_grace_seconds)

    async def execute_recipe(
        self,
        recipe: Recipe,
        arguments: Mapping[str, Any] | None = None,
        context: RunContext | None = None,
    ) -> RunReport:
        """
        Execute a recipe and return its run report.

        Args:
            recipe: Recipe to execute
            arguments: Caller-supplied argument values (raw strings or native values)
            context: Per-run context (cancellation, event sink, working directory)

        Returns:
            RunReport with one result per step, in declared order

        Raises:
            ConfigurationError: If the recipe is malformed (nothing is executed)
            ArgumentBindingError: If the arguments cannot be bound (nothing is executed)
            asyncio.CancelledError: If the calling task is cancelled; the running
                process is terminated first
        """
        context = context or RunContext()
        log = context.logger

        recipe.ensure_valid()
        bound = bind_arguments(recipe.arguments, arguments)

        report = RunReport(recipe_id=recipe.id, recipe_name=recipe.name)

        steps = list(recipe.steps) if recipe.has_steps else [self._top_level_step(recipe, context)]

        try:
            report.rendered_command = render(recipe.command, bound)
        except TemplateError as e:
            # Command mode reports this against the top-level step instead
            if recipe.has_steps:
                log.warning(f"Recipe '{recipe.id}': top-level command not rendered: {e}")

        log.info(f"Starting recipe: {recipe.name} ({len(steps)} steps)")
        context.emit(
            ExecutionEvent("run_started", recipe.id, message=f"Starting recipe: {recipe.name} ({len(steps)} steps)")
        )

        halt_reason: str | None = None

        for index, step in enumerate(steps):
            if halt_reason is None and context.cancellation.cancelled:
                halt_reason = SKIP_CANCELLED
                report.cancelled = True

            if halt_reason is not None:
                report.steps.append(
                    StepResult(step_id=step.id, name=step.display_name, status=StepStatus.SKIPPED, reason=halt_reason)
                )
                context.emit(
                    ExecutionEvent("step_finished", recipe.id, step.id, halt_reason, StepStatus.SKIPPED.value)
                )
                continue

            log.info(f"  [{index + 1}/{len(steps)}] {step.id}")
            context.emit(
                ExecutionEvent("step_started", recipe.id, step.id, f"[{index + 1}/{len(steps)}] {step.display_name}")
            )

            result = await self._execute_step(recipe, step, bound, context)
            report.steps.append(result)
            context.emit(
                ExecutionEvent("step_finished", recipe.id, step.id, result.reason or "", result.status.value)
            )

            if result.status == StepStatus.CANCELLED:
                report.cancelled = True
                halt_reason = SKIP_CANCELLED
            elif result.status.is_failure:
                log.warning(f"Step '{step.id}' {result.status.value}; skipping remaining steps")
                halt_reason = f"upstream step '{step.id}' failed"

        report.finished_at = datetime.datetime.now(datetime.timezone.utc)

        summary = report.summary()
        if report.succeeded:
            log.info(summary)
        else:
            log.warning(summary)
        context.emit(ExecutionEvent("run_finished", recipe.id, message=summary, status=report.outcome.value))

        return report

    def _top_level_step(self, recipe: Recipe, context: RunContext) -> Step:
        """Wrap the top-level command as a single shell step."""
        shell = context.shell or (recipe.shells[0] if recipe.shells else self.config.default_shell)
        if context.shell and not recipe.is_compatible_with_shell(context.shell):
            context.logger.warning(
                f"Recipe '{recipe.id}' declares shells {', '.join(recipe.shells)}; running with '{context.shell}'"
            )
        return Step(
            id=TOP_LEVEL_STEP_ID,
            name="top-level command",
            command=shell,
            args=("-c", recipe.command),
            timeout=recipe.timeout,
            retry_count=0,
        )

    def _render_step(self, recipe: Recipe, step: Step, bound: BoundArguments, context: RunContext) -> RenderedStep:
        """
        Render a step's argument list, environment and working directory.

        Recipe-level environment is rendered first and overlaid by the step's own.

        Raises:
            TemplateError: If any template cannot be rendered
        """
        args = render_all(step.args, bound)
        env = render_mapping(recipe.environment, bound)
        env.update(render_mapping(step.environment, bound))

        cwd = context.cwd
        if step.working_directory:
            working_directory = Path(render(step.working_directory, bound))
            if not working_directory.is_absolute() and context.cwd is not None:
                working_directory = context.cwd / working_directory
            cwd = working_directory

        return RenderedStep(step=step, args=args, env=env, cwd=cwd)

    async def _execute_step(
        self,
        recipe: Recipe,
        step: Step,
        bound: BoundArguments,
        context: RunContext,
    ) -> StepResult:
        """
        Execute a single step: render, check condition, then run with retry.

        Args:
            recipe: Recipe the step belongs to
            step: Step to execute
            bound: Bound arguments shared by every step of the run
            context: Run context

        Returns:
            StepResult with the final status and attempt accounting
        """
        log = context.logger

        try:
            rendered = self._render_step(recipe, step, bound, context)
            should_run = evaluate_condition(step.condition, bound)
        except TemplateError as e:
            log.error(f"Step '{step.id}': rendering failed: {e}")
            return StepResult(
                step_id=step.id,
                name=step.display_name,
                status=StepStatus.FAILED,
                reason=f"rendering error: {e}",
            )

        if not should_run:
            log.info(f"Step '{step.id}' skipped: {SKIP_CONDITION}")
            return StepResult(
                step_id=step.id, name=step.display_name, status=StepStatus.SKIPPED, reason=SKIP_CONDITION
            )

        return await self.execute_step_with_retry(rendered, recipe, context)

    async def execute_step_with_retry(self, rendered: RenderedStep, recipe: Recipe, context: RunContext) -> StepResult:
        """
        Execute a rendered step with retry logic.

        The attempt budget is ``retry_count + 1``. A successful attempt stops
        retrying; otherwise the final status is that of the last attempt.

        Args:
            rendered: Step with rendered args, environment and working directory
            recipe: Recipe the step belongs to
            context: Run context

        Returns:
            StepResult for the step
        """
        step = rendered.step
        log = context.logger
        max_attempts = step.retry_count + 1
        timeout = step.timeout or None

        result = StepResult(step_id=step.id, name=step.display_name, status=StepStatus.FAILED)
        start = time.monotonic()

        for attempt in range(1, max_attempts + 1):
            if context.cancellation.cancelled:
                result.status = StepStatus.CANCELLED
                break

            record, process_result = await self._attempt(rendered, attempt, timeout, context)
            result.attempts = attempt
            result.attempt_history.append(record)
            result.status = record.status
            result.exit_code = record.exit_code
            if process_result is not None:
                result.stdout = process_result.stdout.decode("utf-8", errors="replace")
                result.stderr = process_result.stderr.decode("utf-8", errors="replace")

            if record.status in (StepStatus.SUCCEEDED, StepStatus.CANCELLED):
                break

            result.reason = record.error

            if attempt < max_attempts:
                log.warning(
                    f"Step '{step.id}' attempt {attempt}/{max_attempts} {record.status.value}: {record.error}; retrying"
                )
                context.emit(
                    ExecutionEvent(
                        "step_retrying",
                        recipe.id,
                        step.id,
                        f"attempt {attempt}/{max_attempts} {record.status.value}",
                        record.status.value,
                    )
                )
                delay = self.config.backoff.delay_for(attempt)
                if delay and await self._cancelled_within(delay, context):
                    result.status = StepStatus.CANCELLED
                    break

        if result.status == StepStatus.SUCCEEDED:
            result.reason = None
        elif result.status == StepStatus.CANCELLED:
            result.reason = SKIP_CANCELLED
        else:
            log.error(f"Step '{step.id}' {result.status.value} after {result.attempts} attempt(s): {result.reason}")

        result.elapsed = time.monotonic() - start
        return result

    async def _attempt(
        self,
        rendered: RenderedStep,
        number: int,
        timeout: float | None,
        context: RunContext,
    ) -> tuple[AttemptRecord, ProcessResult | None]:
        """Run one attempt, racing the process against caller cancellation."""
        step = rendered.step
        start = time.monotonic()

        run_task = asyncio.ensure_future(
            self.runner.run(step.command, rendered.args, rendered.env, timeout, rendered.cwd)
        )
        cancel_task = asyncio.ensure_future(context.cancellation.wait())
        try:
            await asyncio.wait({run_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            # Reached on completion, caller cancellation and task cancellation alike
            for task in (run_task, cancel_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(run_task, cancel_task, return_exceptions=True)

        elapsed = time.monotonic() - start

        if run_task.cancelled():
            context.logger.info(f"Step '{step.id}' cancelled during attempt {number}")
            return AttemptRecord(number, StepStatus.CANCELLED, None, elapsed, SKIP_CANCELLED), None

        error = run_task.exception()
        if error is not None:
            if not isinstance(error, ExecutionError):
                raise error
            return AttemptRecord(number, StepStatus.FAILED, None, elapsed, str(error)), None

        process_result = run_task.result()
        if process_result.timed_out:
            message = f"command timed out after {step.timeout}s"
            return AttemptRecord(number, StepStatus.TIMED_OUT, None, process_result.elapsed, message), process_result
        if process_result.exit_code != 0:
            message = f"command failed with exit code {process_result.exit_code}"
            stderr = process_result.stderr.decode("utf-8", errors="replace").strip()
            if stderr:
                message += f"\nstderr: {stderr}"
            return (
                AttemptRecord(number, StepStatus.FAILED, process_result.exit_code, process_result.elapsed, message),
                process_result,
            )
        return (
            AttemptRecord(number, StepStatus.SUCCEEDED, process_result.exit_code, process_result.elapsed),
            process_result,
        )

    @staticmethod
    async def _cancelled_within(delay: float, context: RunContext) -> bool:
        """Sleep for the backoff delay; return True if the run was cancelled meanwhile."""
        try:
            await asyncio.wait_for(context.cancellation.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True
