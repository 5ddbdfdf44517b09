"""Static recipe validation."""

from dataclasses import dataclass
from dataclasses import field

from .arguments import ArgType
from .arguments import coerce_value
from .models import KNOWN_SHELLS
from .models import Recipe


@dataclass
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def validate_recipe(recipe: Recipe) -> ValidationResult:
    """
    Validate a recipe without executing it.

    Errors are the structural problems ``Recipe.validate`` reports, plus
    defaults that do not match their declared type. Warnings flag things that
    are legal but probably unintended: template references to undeclared
    arguments, unknown shells, and a top-level command that will not run
    because steps are defined.

    Args:
        recipe: Recipe to check

    Returns:
        ValidationResult with errors and warnings
    """
    result = ValidationResult(errors=recipe.validate())

    declared = {argument.name for argument in recipe.arguments}

    for argument in recipe.arguments:
        if argument.required and argument.default_value not in (None, ""):
            result.warnings.append(
                f"Argument '{argument.name}': default_value is ignored because the argument is required"
            )
        if argument.options and argument.arg_type != ArgType.ENUM:
            result.warnings.append(f"Argument '{argument.name}': options are only used by enum arguments")
        if argument.default_value not in (None, "") and not argument.validate():
            try:
                coerce_value(argument, argument.default_value)
            except ValueError as e:
                result.errors.append(f"Argument '{argument.name}': invalid default_value: {e}")

    for name in recipe.extract_placeholders():
        if name not in declared:
            result.warnings.append(f"Template references undeclared argument '{name}'")

    for shell in recipe.shells:
        if shell.lower() not in KNOWN_SHELLS:
            result.warnings.append(f"Unknown shell '{shell}' (known: {', '.join(KNOWN_SHELLS)})")

    if recipe.has_steps and recipe.command.strip():
        result.warnings.append("Top-level command is not executed because the recipe defines steps")

    for step in recipe.steps:
        if step.timeout == 0:
            result.warnings.append(f"Step '{step.id}': no timeout set")

    return result
