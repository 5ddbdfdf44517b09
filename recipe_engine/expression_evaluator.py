"""Step condition evaluation."""

from collections.abc import Mapping

from .arguments import ArgumentValue
from .template import render

FALSY_LITERALS = ("false", "0")


def is_truthy_text(text: str) -> bool:
    """Interpret rendered text as a boolean: empty, ``false`` and ``0`` are false."""
    stripped = text.strip()
    return stripped != "" and stripped.lower() not in FALSY_LITERALS


def evaluate_condition(condition: str | None, arguments: Mapping[str, ArgumentValue]) -> bool:
    """
    Evaluate a step condition against bound arguments.

    An empty condition always passes without being rendered. Otherwise the
    condition is rendered as a template and the trimmed result interpreted
    with ``is_truthy_text``.

    Raises:
        TemplateError: If the condition cannot be rendered
    """
    if condition is None or not condition.strip():
        return True
    return is_truthy_text(render(condition, arguments))
