"""Recipe execution engine - render templated recipes and run their steps."""

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from .arguments import ArgType
from .arguments import ArgumentSpec
from .arguments import BoundArguments
from .arguments import bind_arguments
from .config import BackoffConfig
from .config import EngineConfig
from .errors import ArgumentBindingError
from .errors import CancellationError
from .errors import ConfigurationError
from .errors import ExecutionError
from .errors import InvalidArgumentType
from .errors import InvalidDefaultValue
from .errors import MissingRequiredArgument
from .errors import RecipeError
from .errors import TemplateError
from .errors import TemplateSyntaxError
from .errors import UnresolvedVariable
from .executor import CancellationToken
from .executor import ExecutionEvent
from .executor import RecipeExecutor
from .executor import RunContext
from .models import Recipe
from .models import Step
from .report import RunOutcome
from .report import RunReport
from .report import StepResult
from .report import StepStatus
from .runner import ProcessResult
from .runner import ProcessRunner
from .runner import SubprocessRunner
from .template import render
from .validator import ValidationResult
from .validator import validate_recipe

logger = logging.getLogger(__name__)

__all__ = [
    "ArgType",
    "ArgumentBindingError",
    "ArgumentSpec",
    "BackoffConfig",
    "BoundArguments",
    "CancellationError",
    "CancellationToken",
    "ConfigurationError",
    "EngineConfig",
    "ExecutionError",
    "ExecutionEvent",
    "InvalidArgumentType",
    "InvalidDefaultValue",
    "MissingRequiredArgument",
    "ProcessResult",
    "ProcessRunner",
    "Recipe",
    "RecipeError",
    "RecipeExecutor",
    "RunContext",
    "RunOutcome",
    "RunReport",
    "Step",
    "StepResult",
    "StepStatus",
    "SubprocessRunner",
    "TemplateError",
    "TemplateSyntaxError",
    "UnresolvedVariable",
    "ValidationResult",
    "bind_arguments",
    "render",
    "render_recipe_command",
    "run_recipe",
    "validate_recipe",
]


def render_recipe_command(recipe: Recipe, arguments: Mapping[str, Any] | None = None) -> str:
    """Bind arguments and render the recipe's top-level command."""
    return render(recipe.command, bind_arguments(recipe.arguments, arguments))


async def run_recipe(
    recipe_path: Path | str,
    arguments: Mapping[str, Any] | None = None,
    config: EngineConfig | None = None,
    context: RunContext | None = None,
) -> RunReport:
    """
    Load, validate and execute a recipe file.

    Args:
        recipe_path: Path to recipe YAML file
        arguments: Caller-supplied argument values
        config: Optional engine configuration
        context: Optional per-run context

    Returns:
        RunReport for the run
    """
    recipe = Recipe.load(Path(recipe_path))
    logger.debug(f"Loaded recipe '{recipe.id}' from {recipe_path}")
    executor = RecipeExecutor(config=config)
    return await executor.execute_recipe(recipe, arguments, context)
