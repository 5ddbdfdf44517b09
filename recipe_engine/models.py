"""Recipe data models and YAML parsing."""

from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from .arguments import ArgType
from .arguments import ArgumentSpec
from .errors import ConfigurationError
from .errors import TemplateSyntaxError
from .template import variables

TOP_LEVEL_STEP_ID = "top-level-command"

KNOWN_SHELLS = ("bash", "zsh", "fish", "sh")

# Tag -> category, first matching tag wins
CATEGORY_TAGS = {
    "git": "git",
    "docker": "docker",
    "kubernetes": "kubernetes",
    "k8s": "kubernetes",
    "aws": "aws",
    "database": "database",
    "db": "database",
    "network": "network",
    "file": "filesystem",
    "filesystem": "filesystem",
    "system": "system",
}


def _text(value: Any) -> str:
    """Convert a scalar YAML value to template text; booleans keep their YAML spelling."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _frozen_mapping(value: Mapping[str, Any] | None) -> Mapping[str, str]:
    return MappingProxyType({str(k): _text(v) for k, v in (value or {}).items()})


@dataclass(frozen=True)
class Step:
    """A single unit of work in a recipe.

    ``command`` names the executable and is never templated; ``args``,
    ``environment`` values, ``working_directory`` and ``condition`` are
    templates rendered once per run.
    """

    id: str
    name: str = ""
    command: str = ""
    args: tuple[str, ...] = ()
    environment: Mapping[str, str] = field(default_factory=dict)
    timeout: int = 0  # Seconds, 0 = no timeout
    retry_count: int = 0  # Additional attempts after the first failure
    condition: str = ""  # Empty = always run
    description: str = ""
    working_directory: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "args", tuple(_text(a) for a in self.args))
        object.__setattr__(self, "environment", _frozen_mapping(self.environment))

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def templates(self) -> list[str]:
        """Every templated field of the step."""
        templates = [*self.args, *self.environment.values(), self.condition]
        if self.working_directory:
            templates.append(self.working_directory)
        return templates

    def validate(self) -> list[str]:
        """Validate step structure and constraints."""
        errors = []

        if not self.id or not self.id.strip():
            errors.append(f"Step '{self.name}': missing required field: id")
        if not self.command or not self.command.strip():
            errors.append(f"Step '{self.id}': command cannot be empty or whitespace")

        if isinstance(self.timeout, bool) or not isinstance(self.timeout, int) or self.timeout < 0:
            errors.append(f"Step '{self.id}': timeout must be a non-negative integer, got {self.timeout!r}")
        if isinstance(self.retry_count, bool) or not isinstance(self.retry_count, int) or self.retry_count < 0:
            errors.append(f"Step '{self.id}': retry_count must be a non-negative integer, got {self.retry_count!r}")

        for key in self.environment:
            if not key or "=" in key:
                errors.append(f"Step '{self.id}': invalid environment variable name '{key}'")

        return errors

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "command": self.command,
            "args": list(self.args),
            "environment": dict(self.environment),
            "timeout": self.timeout,
            "retry_count": self.retry_count,
            "condition": self.condition,
        }
        if self.description:
            data["description"] = self.description
        if self.working_directory:
            data["working_directory"] = self.working_directory
        return data


@dataclass(frozen=True)
class Recipe:
    """Represents a complete recipe definition.

    Two execution modes:
    1. Steps mode: ``steps`` is non-empty and runs in declared order; ``command``
       is documentation only.
    2. Command mode: ``steps`` is empty and the rendered ``command`` is run
       through a shell as the single executable unit.
    """

    id: str
    name: str
    description: str = ""
    command: str = ""
    tags: tuple[str, ...] = ()
    author: str | None = None
    shells: tuple[str, ...] = ()
    arguments: tuple[ArgumentSpec, ...] = ()
    steps: tuple[Step, ...] = ()
    environment: Mapping[str, str] = field(default_factory=dict)  # Overlaid for every step
    timeout: int = 0  # Top-level command timeout in seconds, 0 = none
    source_url: str | None = None
    author_url: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "tags", tuple(self.tags))
        object.__setattr__(self, "shells", tuple(self.shells))
        object.__setattr__(self, "arguments", tuple(self.arguments))
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "environment", _frozen_mapping(self.environment))

    @property
    def has_steps(self) -> bool:
        """Return True if the recipe runs discrete steps rather than its top-level command."""
        return len(self.steps) > 0

    @property
    def category(self) -> str:
        """Category derived from the first recognised tag."""
        for tag in self.tags:
            category = CATEGORY_TAGS.get(tag.lower())
            if category:
                return category
        return "other"

    def is_compatible_with_shell(self, shell: str) -> bool:
        """A recipe without declared shells is compatible with every shell."""
        if not self.shells:
            return True
        return shell.lower() in (s.lower() for s in self.shells)

    def get_step(self, step_id: str) -> Step | None:
        """Get step by ID."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def get_argument(self, name: str) -> ArgumentSpec | None:
        """Get argument declaration by name."""
        for argument in self.arguments:
            if argument.name == name:
                return argument
        return None

    def extract_placeholders(self) -> list[str]:
        """Return every variable referenced by the recipe's templates, in first-seen order.

        Malformed templates contribute nothing here; ``validate`` reports them.
        """
        templates = [self.command, *self.environment.values()]
        for step in self.steps:
            templates.extend(step.templates)

        names: list[str] = []
        for template in templates:
            try:
                found = variables(template)
            except TemplateSyntaxError:
                continue
            for name in found:
                if name not in names:
                    names.append(name)
        return names

    # -- parsing -----------------------------------------------------------

    @classmethod
    def _parse_argument(cls, data: Any) -> ArgumentSpec:
        """Parse a single argument declaration."""
        if not isinstance(data, dict):
            raise ConfigurationError("Each argument must be a dictionary")

        options = data.get("options") or ()
        if not isinstance(options, (list, tuple)):
            raise ConfigurationError(f"Argument '{data.get('name', '')}': options must be a list")

        default_value = data.get("default_value")
        if isinstance(default_value, bool):
            default_value = "true" if default_value else "false"
        elif default_value is not None:
            default_value = str(default_value)

        return ArgumentSpec(
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            default_value=default_value,
            arg_type=ArgType.parse(data.get("arg_type")),
            required=bool(data.get("required", False)),
            options=tuple(str(o) for o in options),
        )

    @classmethod
    def _parse_step(cls, data: Any) -> Step:
        """Parse a single step."""
        if not isinstance(data, dict):
            raise ConfigurationError("Each step must be a dictionary")

        step_id = str(data.get("id") or "")

        args = data.get("args") or []
        if not isinstance(args, list):
            raise ConfigurationError(f"Step '{step_id}': args must be a list")

        environment = data.get("environment") or {}
        if not isinstance(environment, dict):
            raise ConfigurationError(f"Step '{step_id}': environment must be a mapping")

        return Step(
            id=step_id,
            name=str(data.get("name") or ""),
            command=str(data.get("command") or ""),
            args=tuple(_text(a) for a in args),
            environment=environment,
            timeout=cls._parse_int(data.get("timeout"), f"Step '{step_id}': timeout"),
            retry_count=cls._parse_int(data.get("retry_count"), f"Step '{step_id}': retry_count"),
            condition=_text(data.get("condition")),
            description=str(data.get("description") or ""),
            working_directory=data.get("working_directory"),
        )

    @staticmethod
    def _parse_int(value: Any, label: str) -> int:
        if value is None or value == "":
            return 0
        if isinstance(value, bool):
            raise ConfigurationError(f"{label} must be an integer, got {value!r}")
        if isinstance(value, float):
            if not value.is_integer():
                raise ConfigurationError(f"{label} must be an integer, got {value!r}")
            return int(value)
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"{label} must be an integer, got {value!r}") from None

    @staticmethod
    def _parse_string_list(value: Any, label: str) -> tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        if not isinstance(value, (list, tuple, set)):
            raise ConfigurationError(f"'{label}' must be a list")
        return tuple(str(v) for v in value)

    @classmethod
    def from_dict(cls, data: Any) -> "Recipe":
        """Build a recipe from parsed YAML data."""
        if not isinstance(data, dict):
            raise ConfigurationError("Recipe YAML must be a dictionary")

        arguments_data = data.get("arguments") or []
        if not isinstance(arguments_data, list):
            raise ConfigurationError("'arguments' must be a list")

        steps_data = data.get("steps") or []
        if not isinstance(steps_data, list):
            raise ConfigurationError("'steps' must be a list")

        environment = data.get("environment") or {}
        if not isinstance(environment, dict):
            raise ConfigurationError("'environment' must be a mapping")

        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            command=str(data.get("command") or ""),
            tags=cls._parse_string_list(data.get("tags"), "tags"),
            author=data.get("author"),
            shells=cls._parse_string_list(data.get("shells"), "shells"),
            arguments=tuple(cls._parse_argument(a) for a in arguments_data),
            steps=tuple(cls._parse_step(s) for s in steps_data),
            environment=environment,
            timeout=cls._parse_int(data.get("timeout"), "Recipe timeout"),
            source_url=data.get("source_url"),
            author_url=data.get("author_url"),
        )

    @classmethod
    def loads(cls, text: str) -> "Recipe":
        """Parse recipe from a YAML string."""
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid recipe YAML: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_yaml(cls, path: Path) -> "Recipe":
        """Load recipe from YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Recipe file not found: {path}")

        with open(path, encoding="utf-8") as f:
            return cls.loads(f.read())

    @classmethod
    def load(cls, path: Path) -> "Recipe":
        """Load recipe from YAML file and reject it if validation fails."""
        recipe = cls.from_yaml(path)
        recipe.ensure_valid()
        return recipe

    # -- serialization -----------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "command": self.command,
            "tags": list(self.tags),
            "author": self.author,
            "shells": list(self.shells),
            "arguments": [a.to_dict() for a in self.arguments],
            "steps": [s.to_dict() for s in self.steps],
        }
        if self.environment:
            data["environment"] = dict(self.environment)
        if self.timeout:
            data["timeout"] = self.timeout
        if self.source_url:
            data["source_url"] = self.source_url
        if self.author_url:
            data["author_url"] = self.author_url
        return data

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, allow_unicode=True)

    def to_file(self, path: Path) -> None:
        Path(path).write_text(self.to_yaml(), encoding="utf-8")

    # -- validation --------------------------------------------------------

    def validate(self) -> list[str]:
        """Validate recipe structure and constraints."""
        errors = []

        # Required fields
        if not self.id or not self.id.strip():
            errors.append("Recipe missing required field: id")
        if not self.name or not self.name.strip():
            errors.append("Recipe missing required field: name")

        if isinstance(self.timeout, bool) or not isinstance(self.timeout, int) or self.timeout < 0:
            errors.append(f"Recipe timeout must be a non-negative integer, got {self.timeout!r}")

        if not self.steps and not self.command.strip():
            errors.append("Recipe must have a command or at least one step")

        # Arguments
        for argument in self.arguments:
            errors.extend(argument.validate())

        names = [a.name for a in self.arguments]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            errors.append(f"Duplicate argument names: {', '.join(duplicates)}")

        # Steps
        for step in self.steps:
            errors.extend(step.validate())

        step_ids = [step.id for step in self.steps]
        duplicates = sorted({sid for sid in step_ids if step_ids.count(sid) > 1})
        if duplicates:
            errors.append(f"Duplicate step IDs: {', '.join(duplicates)}")

        # Template syntax
        labelled = [("command", self.command)]
        labelled.extend((f"environment '{k}'", v) for k, v in self.environment.items())
        for step in self.steps:
            labelled.extend((f"Step '{step.id}'", template) for template in step.templates)
        for label, template in labelled:
            try:
                variables(template)
            except TemplateSyntaxError as e:
                errors.append(f"{label}: {e}")

        return errors

    def ensure_valid(self) -> None:
        """Raise ConfigurationError listing every validation error."""
        errors = self.validate()
        if errors:
            raise ConfigurationError(f"Recipe '{self.id or self.name}' is invalid", errors)
