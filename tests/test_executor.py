"""Tests for the recipe executor."""

import pytest
from conftest import FakeRunner
from conftest import fail
from conftest import ok
from conftest import python_command
from conftest import timed_out

from recipe_engine.arguments import ArgType
from recipe_engine.arguments import ArgumentSpec
from recipe_engine.config import BackoffConfig
from recipe_engine.config import EngineConfig
from recipe_engine.errors import ConfigurationError
from recipe_engine.errors import ExecutionError
from recipe_engine.errors import InvalidArgumentType
from recipe_engine.errors import MissingRequiredArgument
from recipe_engine.executor import SKIP_CONDITION
from recipe_engine.executor import RecipeExecutor
from recipe_engine.executor import RunContext
from recipe_engine.models import TOP_LEVEL_STEP_ID
from recipe_engine.models import Recipe
from recipe_engine.models import Step
from recipe_engine.report import RunOutcome
from recipe_engine.report import StepStatus
from recipe_engine.runner import ProcessResult


def three_step_recipe(**overrides) -> Recipe:
    steps = [
        Step(id="a", command="step", args=("a",)),
        Step(id="b", command="step", args=("b",)),
        Step(id="c", command="step", args=("c",)),
    ]
    return Recipe(id="three", name="Three Steps", steps=overrides.pop("steps", steps), **overrides)


class TestStepsMode:
    @pytest.mark.asyncio
    async def test_steps_run_in_declared_order(self, fake_runner):
        report = await RecipeExecutor(runner=fake_runner).execute_recipe(three_step_recipe())

        assert fake_runner.command_lines() == ["step a", "step b", "step c"]
        assert [r.step_id for r in report.steps] == ["a", "b", "c"]
        assert all(r.status == StepStatus.SUCCEEDED and r.attempts == 1 for r in report.steps)
        assert report.outcome == RunOutcome.SUCCEEDED
        assert report.finished_at is not None

    @pytest.mark.asyncio
    async def test_failure_stops_later_steps(self):
        """A failing step prevents every later step from being spawned."""
        runner = FakeRunner({"step a": [fail(exit_code=2, stderr="bad input")]})

        report = await RecipeExecutor(runner=runner).execute_recipe(three_step_recipe())

        assert runner.command_lines() == ["step a"]
        first, second, third = report.steps
        assert first.status == StepStatus.FAILED
        assert first.exit_code == 2
        assert first.reason == "command failed with exit code 2\nstderr: bad input"
        assert second.status == StepStatus.SKIPPED
        assert third.status == StepStatus.SKIPPED
        assert second.reason == "upstream step 'a' failed"
        assert third.reason == "upstream step 'a' failed"
        assert second.attempts == 0
        assert report.outcome == RunOutcome.FAILED
        assert report.failed_step is first

    @pytest.mark.asyncio
    async def test_outputs_are_captured(self):
        runner = FakeRunner({"step b": [ok("from b\n")]})

        report = await RecipeExecutor(runner=runner).execute_recipe(three_step_recipe())

        assert report.get("b").stdout == "from b\n"
        assert report.get("a").stdout == ""

    @pytest.mark.asyncio
    async def test_false_condition_skips_only_that_step(self, fake_runner):
        recipe = Recipe(
            id="cond",
            name="cond",
            arguments=[ArgumentSpec(name="extra", arg_type=ArgType.BOOLEAN, default_value="false")],
            steps=[
                Step(id="a", command="step", args=("a",)),
                Step(id="b", command="step", args=("b",), condition="{{extra}}"),
                Step(id="c", command="step", args=("c",)),
            ],
        )

        report = await RecipeExecutor(runner=fake_runner).execute_recipe(recipe)

        assert fake_runner.command_lines() == ["step a", "step c"]
        assert report.get("b").status == StepStatus.SKIPPED
        assert report.get("b").reason == SKIP_CONDITION
        assert report.outcome == RunOutcome.SUCCEEDED

    @pytest.mark.asyncio
    async def test_true_condition_runs_step(self, fake_runner):
        recipe = Recipe(
            id="cond",
            name="cond",
            arguments=[ArgumentSpec(name="extra", arg_type=ArgType.BOOLEAN)],
            steps=[Step(id="b", command="step", args=("b",), condition="{{extra}}")],
        )

        await RecipeExecutor(runner=fake_runner).execute_recipe(recipe, {"extra": "true"})

        assert fake_runner.command_lines() == ["step b"]

    @pytest.mark.asyncio
    async def test_arguments_are_rendered(self, fake_runner):
        recipe = Recipe(
            id="r",
            name="r",
            arguments=[
                ArgumentSpec(name="target", required=True),
                ArgumentSpec(name="force", arg_type=ArgType.BOOLEAN),
            ],
            steps=[Step(id="s", command="deploy", args=("{{target}}", "{{#if force}}--force{{/if}}"))],
        )

        await RecipeExecutor(runner=fake_runner).execute_recipe(recipe, {"target": "prod", "force": "true"})

        assert fake_runner.calls[0].args == ["prod", "--force"]

    @pytest.mark.asyncio
    async def test_environment_overlay(self, fake_runner, temp_dir):
        """Recipe environment is overlaid by step environment; relative directories resolve against cwd."""
        recipe = Recipe(
            id="env",
            name="env",
            arguments=[ArgumentSpec(name="region", default_value="eu")],
            environment={"REGION": "{{region}}", "LEVEL": "recipe"},
            steps=[Step(id="s", command="env", environment={"LEVEL": "step"}, working_directory="sub", timeout=7)],
        )

        await RecipeExecutor(runner=fake_runner).execute_recipe(recipe, context=RunContext(cwd=temp_dir))

        call = fake_runner.calls[0]
        assert call.env == {"REGION": "eu", "LEVEL": "step"}
        assert call.cwd == temp_dir / "sub"
        assert call.timeout == 7

    @pytest.mark.asyncio
    async def test_zero_timeout_means_unbounded(self, fake_runner):
        await RecipeExecutor(runner=fake_runner).execute_recipe(three_step_recipe())

        assert fake_runner.calls[0].timeout is None

    @pytest.mark.asyncio
    async def test_rendering_error_fails_step_without_spawning(self, fake_runner):
        recipe = three_step_recipe(
            steps=[
                Step(id="a", command="step", args=("{{undeclared}}",)),
                Step(id="b", command="step", args=("b",)),
            ]
        )

        report = await RecipeExecutor(runner=fake_runner).execute_recipe(recipe)

        assert fake_runner.calls == []
        assert report.get("a").status == StepStatus.FAILED
        assert report.get("a").attempts == 0
        assert report.get("a").reason.startswith("rendering error: Undefined variable: {{undeclared}}")
        assert report.get("b").status == StepStatus.SKIPPED


class TestRetry:
    @pytest.mark.asyncio
    async def test_attempt_budget_is_retry_count_plus_one(self):
        runner = FakeRunner({"flaky": [fail()]})
        recipe = three_step_recipe(steps=[Step(id="f", command="flaky", retry_count=2)])

        report = await RecipeExecutor(runner=runner).execute_recipe(recipe)

        result = report.get("f")
        assert len(runner.calls) == 3
        assert result.attempts == 3
        assert result.status == StepStatus.FAILED
        assert [a.number for a in result.attempt_history] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_success_stops_retrying(self):
        runner = FakeRunner({"flaky": [fail(), ok("done")]})
        recipe = three_step_recipe(steps=[Step(id="f", command="flaky", retry_count=5)])

        report = await RecipeExecutor(runner=runner).execute_recipe(recipe)

        result = report.get("f")
        assert len(runner.calls) == 2
        assert result.status == StepStatus.SUCCEEDED
        assert result.attempts == 2
        assert result.reason is None
        assert result.stdout == "done"

    @pytest.mark.asyncio
    async def test_timeout_is_reported_and_stops_run(self):
        runner = FakeRunner({"slow": [timed_out()]})
        recipe = three_step_recipe(
            steps=[Step(id="s", command="slow", timeout=5, retry_count=1), Step(id="next", command="fast")]
        )

        report = await RecipeExecutor(runner=runner).execute_recipe(recipe)

        assert runner.command_lines() == ["slow", "slow"]
        assert report.get("s").status == StepStatus.TIMED_OUT
        assert report.get("s").reason == "command timed out after 5s"
        assert report.get("s").exit_code is None
        assert report.get("next").status == StepStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_timed_out_step_keeps_partial_output(self):
        partial = ProcessResult(exit_code=None, stdout=b"halfway\n", stderr=b"stuck", elapsed=1.0, timed_out=True)
        runner = FakeRunner({"slow": [partial]})
        recipe = three_step_recipe(steps=[Step(id="s", command="slow", timeout=1)])

        report = await RecipeExecutor(runner=runner).execute_recipe(recipe)

        assert report.get("s").status == StepStatus.TIMED_OUT
        assert report.get("s").stdout == "halfway\n"
        assert report.get("s").stderr == "stuck"

    @pytest.mark.asyncio
    async def test_spawn_failure_counts_as_failed_attempt(self):
        runner = FakeRunner({"missing": [ExecutionError("Failed to execute 'missing': not found")]})
        recipe = three_step_recipe(steps=[Step(id="m", command="missing", retry_count=1)])

        report = await RecipeExecutor(runner=runner).execute_recipe(recipe)

        result = report.get("m")
        assert result.status == StepStatus.FAILED
        assert result.attempts == 2
        assert result.exit_code is None
        assert "not found" in result.reason

    @pytest.mark.asyncio
    async def test_backoff_delays_do_not_change_attempts(self):
        runner = FakeRunner({"flaky": [fail()]})
        config = EngineConfig(backoff=BackoffConfig(initial_delay_ms=1, max_delay_ms=5))
        recipe = three_step_recipe(steps=[Step(id="f", command="flaky", retry_count=3)])

        report = await RecipeExecutor(runner=runner, config=config).execute_recipe(recipe)

        assert len(runner.calls) == 4
        assert report.get("f").attempts == 4


class TestCommandMode:
    @pytest.mark.asyncio
    async def test_top_level_command_runs_through_shell(self, fake_runner):
        recipe = Recipe(
            id="cmd",
            name="cmd",
            command="echo {{who}}",
            timeout=30,
            arguments=[ArgumentSpec(name="who", default_value="world")],
        )

        report = await RecipeExecutor(runner=fake_runner).execute_recipe(recipe)

        assert fake_runner.command_lines() == ["sh -c echo world"]
        assert fake_runner.calls[0].timeout == 30
        assert report.rendered_command == "echo world"
        assert [r.step_id for r in report.steps] == [TOP_LEVEL_STEP_ID]

    @pytest.mark.asyncio
    async def test_shell_selection(self, fake_runner):
        recipe = Recipe(id="cmd", name="cmd", command="true", shells=("bash", "zsh"))
        executor = RecipeExecutor(runner=fake_runner)

        await executor.execute_recipe(recipe)
        await executor.execute_recipe(recipe, context=RunContext(shell="zsh"))

        assert [c.command for c in fake_runner.calls] == ["bash", "zsh"]

    @pytest.mark.asyncio
    async def test_configured_default_shell(self, fake_runner):
        recipe = Recipe(id="cmd", name="cmd", command="true")

        await RecipeExecutor(runner=fake_runner, config=EngineConfig(default_shell="bash")).execute_recipe(recipe)

        assert fake_runner.calls[0].command == "bash"

    @pytest.mark.asyncio
    async def test_command_is_documentation_when_steps_exist(self, fake_runner):
        recipe = three_step_recipe(command="echo never")

        report = await RecipeExecutor(runner=fake_runner).execute_recipe(recipe)

        assert "sh -c echo never" not in fake_runner.command_lines()
        assert report.rendered_command == "echo never"

    @pytest.mark.asyncio
    async def test_unresolved_command_fails_top_level_step(self, fake_runner):
        recipe = Recipe(id="cmd", name="cmd", command="echo {{nobody}}")

        report = await RecipeExecutor(runner=fake_runner).execute_recipe(recipe)

        assert fake_runner.calls == []
        assert report.rendered_command is None
        assert report.steps[0].status == StepStatus.FAILED
        assert report.steps[0].reason.startswith("rendering error")


class TestPreconditions:
    @pytest.mark.asyncio
    async def test_invalid_recipe_runs_nothing(self, fake_runner):
        recipe = three_step_recipe(steps=[Step(id="a", command="x"), Step(id="a", command="y")])

        with pytest.raises(ConfigurationError, match="Duplicate step IDs"):
            await RecipeExecutor(runner=fake_runner).execute_recipe(recipe)

        assert fake_runner.calls == []

    @pytest.mark.asyncio
    async def test_missing_required_argument_runs_nothing(self, fake_runner):
        recipe = three_step_recipe(arguments=[ArgumentSpec(name="target", required=True)])

        with pytest.raises(MissingRequiredArgument):
            await RecipeExecutor(runner=fake_runner).execute_recipe(recipe)

        assert fake_runner.calls == []

    @pytest.mark.asyncio
    async def test_invalid_argument_type_runs_nothing(self, fake_runner):
        recipe = three_step_recipe(arguments=[ArgumentSpec(name="n", arg_type=ArgType.INTEGER)])

        with pytest.raises(InvalidArgumentType):
            await RecipeExecutor(runner=fake_runner).execute_recipe(recipe, {"n": "three"})

        assert fake_runner.calls == []


class TestEvents:
    @pytest.mark.asyncio
    async def test_event_sequence(self):
        events = []
        runner = FakeRunner({"step b": [fail(), ok()]})
        recipe = three_step_recipe(
            steps=[Step(id="a", command="step", args=("a",)), Step(id="b", command="step", args=("b",), retry_count=1)]
        )

        await RecipeExecutor(runner=runner).execute_recipe(recipe, context=RunContext(on_event=events.append))

        assert [(e.kind, e.step_id) for e in events] == [
            ("run_started", None),
            ("step_started", "a"),
            ("step_finished", "a"),
            ("step_started", "b"),
            ("step_retrying", "b"),
            ("step_finished", "b"),
            ("run_finished", None),
        ]
        assert events[-1].status == "succeeded"
        assert all(e.recipe_id == "three" for e in events)


class TestRealProcesses:
    @pytest.mark.asyncio
    async def test_long_process_times_out(self, temp_dir):
        command, args = python_command("import time; time.sleep(30)")
        marker = temp_dir / "ran"
        after_command, after_args = python_command(f"open({str(marker)!r}, 'w').close()")
        recipe = three_step_recipe(
            steps=[
                Step(id="sleep", command=command, args=args, timeout=1),
                Step(id="after", command=after_command, args=after_args),
            ]
        )

        report = await RecipeExecutor(config=EngineConfig(kill_grace_seconds=1)).execute_recipe(recipe)

        assert report.get("sleep").status == StepStatus.TIMED_OUT
        assert report.get("sleep").elapsed < 10
        assert report.get("after").status == StepStatus.SKIPPED
        assert not marker.exists()

    @pytest.mark.asyncio
    async def test_exit_code_and_output(self):
        command, args = python_command("import sys; print('out'); sys.exit(4)")
        recipe = three_step_recipe(steps=[Step(id="s", command=command, args=args, timeout=30)])

        report = await RecipeExecutor().execute_recipe(recipe)

        result = report.get("s")
        assert result.status == StepStatus.FAILED
        assert result.exit_code == 4
        assert result.stdout.strip() == "out"
