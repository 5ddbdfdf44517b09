"""Template parsing and rendering.

Supported constructs:

- ``{{name}}`` substitutes the bound argument's string form.
- ``{{#if name}}...{{/if}}`` emits the enclosed text only when the argument is
  truthy. Blocks do not nest.

Templates are parsed once into a small AST of ``Text``, ``Variable`` and
``IfBlock`` nodes; rendering walks the nodes and never splices strings.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache

from .arguments import ArgumentValue
from .errors import TemplateSyntaxError
from .errors import UnresolvedVariable

# Matches {{name}}, {{#if name}} and {{/if}} with optional inner whitespace.
# Names allow hyphens, as argument names do.
TAG_PATTERN = re.compile(r"\{\{\s*(?:(?P<open>#if\s+(?P<guard>[\w-]+))|(?P<close>/if)|(?P<var>[\w-]+))\s*\}\}")


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class Variable:
    name: str
    position: int = 0


@dataclass(frozen=True)
class IfBlock:
    guard: str
    body: tuple["Text | Variable", ...]
    position: int = 0


Node = Text | Variable | IfBlock


@lru_cache(maxsize=512)
def parse(template: str) -> tuple[Node, ...]:
    """
    Parse a template into a flat sequence of nodes.

    Args:
        template: Template text

    Returns:
        Immutable node sequence

    Raises:
        TemplateSyntaxError: On nested, unclosed or unmatched conditional blocks
    """
    nodes: list[Node] = []
    block_guard: str | None = None
    block_position = 0
    block_body: list[Text | Variable] = []
    cursor = 0

    def emit(node: Text | Variable) -> None:
        if block_guard is None:
            nodes.append(node)
        else:
            block_body.append(node)

    for match in TAG_PATTERN.finditer(template):
        if match.start() > cursor:
            emit(Text(template[cursor : match.start()]))
        cursor = match.end()

        if match.group("open"):
            if block_guard is not None:
                raise TemplateSyntaxError(
                    f"Nested conditional block '{{{{#if {match.group('guard')}}}}}' inside "
                    f"'{{{{#if {block_guard}}}}}' is not supported",
                    match.start(),
                )
            block_guard = match.group("guard")
            block_position = match.start()
            block_body = []
        elif match.group("close"):
            if block_guard is None:
                raise TemplateSyntaxError("'{{/if}}' without matching '{{#if ...}}'", match.start())
            nodes.append(IfBlock(block_guard, tuple(block_body), block_position))
            block_guard = None
        else:
            emit(Variable(match.group("var"), match.start()))

    if block_guard is not None:
        raise TemplateSyntaxError(f"Unclosed conditional block '{{{{#if {block_guard}}}}}'", block_position)

    if cursor < len(template):
        nodes.append(Text(template[cursor:]))

    return tuple(nodes)


def variables(template: str) -> list[str]:
    """Return every argument name referenced by the template, in first-seen order."""
    names: list[str] = []
    for node in parse(template):
        if isinstance(node, Variable):
            candidates = [node.name]
        elif isinstance(node, IfBlock):
            candidates = [node.guard] + [n.name for n in node.body if isinstance(n, Variable)]
        else:
            candidates = []
        for name in candidates:
            if name not in names:
                names.append(name)
    return names


def render(template: str, arguments: Mapping[str, ArgumentValue]) -> str:
    """
    Render a template against bound arguments.

    Every referenced name must be bound, including names inside blocks whose
    guard is falsy, so a template either always renders or always fails for a
    given argument set.

    Args:
        template: Template text
        arguments: Bound arguments

    Returns:
        Rendered text

    Raises:
        TemplateSyntaxError: If the template is malformed
        UnresolvedVariable: If a referenced name is not bound
    """
    if not template:
        return ""

    nodes = parse(template)
    for name in variables(template):
        if name not in arguments:
            raise UnresolvedVariable(name, list(arguments))

    parts: list[str] = []
    for node in nodes:
        if isinstance(node, Text):
            parts.append(node.value)
        elif isinstance(node, Variable):
            parts.append(arguments[node.name].render())
        elif arguments[node.guard].is_truthy():
            for inner in node.body:
                if isinstance(inner, Text):
                    parts.append(inner.value)
                else:
                    parts.append(arguments[inner.name].render())
    return "".join(parts)


def render_all(templates: list[str] | tuple[str, ...], arguments: Mapping[str, ArgumentValue]) -> list[str]:
    """Render each template of a sequence."""
    return [render(template, arguments) for template in templates]


def render_mapping(templates: Mapping[str, str], arguments: Mapping[str, ArgumentValue]) -> dict[str, str]:
    """Render the values of a mapping; keys are left as-is."""
    return {key: render(str(value), arguments) for key, value in templates.items()}
