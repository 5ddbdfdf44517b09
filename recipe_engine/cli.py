"""Command-line interface: run, validate and render recipes."""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from .arguments import bind_arguments
from .config import EngineConfig
from .errors import ArgumentBindingError
from .errors import ConfigurationError
from .errors import TemplateError
from .executor import ExecutionEvent
from .executor import RecipeExecutor
from .executor import RunContext
from .models import Recipe
from .report import RunOutcome
from .report import RunReport
from .report import StepStatus
from .template import render
from .validator import validate_recipe

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_INVALID = 2
EXIT_INTERRUPTED = 130

STATUS_ICONS = {
    StepStatus.SUCCEEDED.value: "✅",
    StepStatus.FAILED.value: "❌",
    StepStatus.TIMED_OUT.value: "⏱",
    StepStatus.SKIPPED.value: "⏭",
    StepStatus.CANCELLED.value: "🛑",
}


def _parse_assignments(pairs: list[str]) -> dict[str, str]:
    values: dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise ValueError(f"--arg expects NAME=VALUE, got {pair!r}")
        values[name.strip()] = value
    return values


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="recipe-engine", description="Render and run command recipes.")
    parser.add_argument("--config", type=Path, default=None, help="Engine configuration YAML file.")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase log verbosity (-vv for debug).")

    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Execute a recipe.")
    run.add_argument("recipe", type=Path, help="Path to recipe YAML file.")
    run.add_argument("--arg", dest="args", action="append", default=[], metavar="NAME=VALUE")
    run.add_argument("--shell", default=None, help="Shell for the top-level command (command-mode recipes).")
    run.add_argument("--cwd", type=Path, default=None, help="Working directory for every step.")
    run.add_argument("--json", action="store_true", help="Print the run report as JSON.")

    validate = sub.add_parser("validate", help="Validate a recipe without running it.")
    validate.add_argument("recipe", type=Path, help="Path to recipe YAML file.")

    render_cmd = sub.add_parser("render", help="Print the rendered top-level command.")
    render_cmd.add_argument("recipe", type=Path, help="Path to recipe YAML file.")
    render_cmd.add_argument("--arg", dest="args", action="append", default=[], metavar="NAME=VALUE")

    return parser.parse_args(argv)


def _configure_logging(verbosity: int, config: EngineConfig) -> None:
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = getattr(logging, config.log_level.upper(), logging.WARNING)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _show_progress(event: ExecutionEvent) -> None:
    """Print execution progress to stderr."""
    if event.kind == "run_started":
        print(f"📋 {event.message}", file=sys.stderr)
    elif event.kind == "step_started":
        print(f"  {event.message}", file=sys.stderr)
    elif event.kind == "step_retrying":
        print(f"    ↻ {event.step_id}: {event.message}, retrying", file=sys.stderr)
    elif event.kind == "step_finished":
        icon = STATUS_ICONS.get(event.status or "", "•")
        detail = f" ({event.message.splitlines()[0]})" if event.message else ""
        print(f"    {icon} {event.step_id}: {event.status}{detail}", file=sys.stderr)
    elif event.kind == "run_finished":
        icon = "✅" if event.status == RunOutcome.SUCCEEDED.value else "❌"
        print(f"{icon} {event.message}", file=sys.stderr)


async def _run(recipe: Recipe, arguments: dict[str, Any], config: EngineConfig, args: argparse.Namespace) -> RunReport:
    context = RunContext(on_event=None if args.json else _show_progress, cwd=args.cwd, shell=args.shell)

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, context.cancellation.cancel)
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers unavailable; Ctrl+C will not cancel gracefully")

    try:
        return await RecipeExecutor(config=config).execute_recipe(recipe, arguments, context)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


def _print_report(report: RunReport, config: EngineConfig, as_json: bool) -> None:
    if as_json:
        print(json.dumps(report.to_dict(config.max_output_bytes), indent=2))
        return
    for result in report.steps:
        if result.stdout.strip():
            print(f"--- {result.step_id} stdout ---")
            print(result.stdout.rstrip())
        if result.stderr.strip() and not result.succeeded:
            print(f"--- {result.step_id} stderr ---")
            print(result.stderr.rstrip())


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    try:
        config = EngineConfig.from_yaml(args.config) if args.config else EngineConfig()
    except (ConfigurationError, FileNotFoundError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_INVALID

    _configure_logging(args.verbose, config)

    try:
        recipe = Recipe.from_yaml(args.recipe)
    except (ConfigurationError, FileNotFoundError) as e:
        print(f"Failed to load recipe: {e}", file=sys.stderr)
        return EXIT_INVALID

    if args.command == "validate":
        validation = validate_recipe(recipe)
        for error in validation.errors:
            print(f"error: {error}")
        for warning in validation.warnings:
            print(f"warning: {warning}")
        if validation.is_valid:
            print(f"Recipe '{recipe.id}' is valid")
            return EXIT_OK
        return EXIT_INVALID

    try:
        arguments = _parse_assignments(args.args)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_INVALID

    try:
        if args.command == "render":
            recipe.ensure_valid()
            print(render(recipe.command, bind_arguments(recipe.arguments, arguments)))
            return EXIT_OK

        report = asyncio.run(_run(recipe, arguments, config, args))
    except (ConfigurationError, ArgumentBindingError, TemplateError) as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_INVALID
    except Exception as e:
        logger.error(f"Recipe run error: {e}", exc_info=True)
        return EXIT_RUN_FAILED

    _print_report(report, config, args.json)

    if report.outcome == RunOutcome.CANCELLED:
        return EXIT_INTERRUPTED
    return EXIT_OK if report.succeeded else EXIT_RUN_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
