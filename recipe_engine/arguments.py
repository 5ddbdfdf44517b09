"""Argument schema, typed argument values and the binder."""

import logging
from collections.abc import Iterable
from collections.abc import Iterator
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any

from .errors import ConfigurationError
from .errors import InvalidArgumentType
from .errors import InvalidDefaultValue
from .errors import MissingRequiredArgument

logger = logging.getLogger(__name__)


class ArgType(str, Enum):
    """Declared type of a recipe argument."""

    STRING = "string"
    BOOLEAN = "boolean"
    INTEGER = "integer"
    ENUM = "enum"

    @classmethod
    def parse(cls, value: Any) -> "ArgType":
        """Parse an ``arg_type`` field, raising ConfigurationError for unknown types."""
        if isinstance(value, ArgType):
            return value
        if value is None or value == "":
            return cls.STRING
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(t.value for t in cls)
            raise ConfigurationError(f"Unknown argument type '{value}' (expected one of: {allowed})") from None


@dataclass(frozen=True)
class ArgumentSpec:
    """Declares a single typed recipe parameter."""

    name: str
    description: str = ""
    default_value: str | None = None
    arg_type: ArgType = ArgType.STRING
    required: bool = False
    options: tuple[str, ...] = ()  # Allowed values for enum arguments

    def validate(self) -> list[str]:
        """Validate argument declaration."""
        errors = []
        if not self.name or not self.name.strip():
            errors.append("Argument missing required field: name")
        elif not self.name.replace("_", "").replace("-", "").isalnum():
            errors.append(f"Argument name must be alphanumeric with underscores/hyphens, got '{self.name}'")
        if self.arg_type == ArgType.ENUM and not self.options:
            errors.append(f"Enum argument '{self.name}' must have options")
        return errors

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "default_value": self.default_value,
            "arg_type": self.arg_type.value,
            "required": self.required,
        }
        if self.options:
            data["options"] = list(self.options)
        return data


# Typed argument values: one variant per ArgType.


@dataclass(frozen=True)
class StringValue:
    value: str

    def render(self) -> str:
        return self.value

    def is_truthy(self) -> bool:
        return self.value != "" and self.value != "false"


@dataclass(frozen=True)
class BooleanValue:
    value: bool

    def render(self) -> str:
        return "true" if self.value else "false"

    def is_truthy(self) -> bool:
        return self.value


@dataclass(frozen=True)
class IntegerValue:
    value: int

    def render(self) -> str:
        return str(self.value)

    def is_truthy(self) -> bool:
        return self.value != 0


@dataclass(frozen=True)
class EnumValue:
    value: str
    options: tuple[str, ...] = ()

    def render(self) -> str:
        return self.value

    def is_truthy(self) -> bool:
        return self.value != "" and self.value != "false"


ArgumentValue = StringValue | BooleanValue | IntegerValue | EnumValue


class BoundArguments(Mapping[str, ArgumentValue]):
    """Read-only mapping of argument name to typed value for a single run."""

    def __init__(self, values: Mapping[str, ArgumentValue] | None = None):
        self._values = MappingProxyType(dict(values or {}))

    def __getitem__(self, name: str) -> ArgumentValue:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        rendered = ", ".join(f"{k}={v.render()!r}" for k, v in self._values.items())
        return f"BoundArguments({rendered})"

    def as_strings(self) -> dict[str, str]:
        """Return every value in its rendered string form."""
        return {name: value.render() for name, value in self._values.items()}


def coerce_value(spec: ArgumentSpec, raw: Any) -> ArgumentValue:
    """
    Coerce a raw value to the spec's declared type.

    Args:
        spec: Argument declaration
        raw: Caller-supplied value, normally a string

    Returns:
        Typed argument value

    Raises:
        ValueError: If the value is not a valid encoding of the declared type
    """
    arg_type = spec.arg_type

    if arg_type == ArgType.BOOLEAN:
        if isinstance(raw, bool):
            return BooleanValue(raw)
        if isinstance(raw, str):
            lowered = raw.strip().lower()
            if lowered == "true":
                return BooleanValue(True)
            if lowered == "false":
                return BooleanValue(False)
        raise ValueError(f"not a boolean: {raw!r}")

    if arg_type == ArgType.INTEGER:
        if isinstance(raw, bool):
            raise ValueError(f"not an integer: {raw!r}")
        if isinstance(raw, int):
            return IntegerValue(raw)
        if isinstance(raw, str):
            text = raw.strip()
            digits = text[1:] if text[:1] in ("+", "-") else text
            if digits.isascii() and digits.isdigit():
                return IntegerValue(int(text, 10))
        raise ValueError(f"not an integer: {raw!r}")

    if arg_type == ArgType.ENUM:
        if isinstance(raw, str) and raw in spec.options:
            return EnumValue(raw, spec.options)
        raise ValueError(f"{raw!r} is not one of: {', '.join(spec.options)}")

    if isinstance(raw, str):
        return StringValue(raw)
    raise ValueError(f"not a string: {raw!r}")


def _zero_value(spec: ArgumentSpec) -> ArgumentValue:
    if spec.arg_type == ArgType.BOOLEAN:
        return BooleanValue(False)
    if spec.arg_type == ArgType.INTEGER:
        return IntegerValue(0)
    if spec.arg_type == ArgType.ENUM:
        return EnumValue("", spec.options)
    return StringValue("")


def _expected_type(spec: ArgumentSpec) -> str:
    if spec.arg_type == ArgType.ENUM:
        return f"enum({', '.join(spec.options)})"
    return spec.arg_type.value


def bind_arguments(specs: Iterable[ArgumentSpec], values: Mapping[str, Any] | None = None) -> BoundArguments:
    """
    Bind caller-supplied values to an argument schema.

    Missing optional arguments take their declared default; a missing or empty
    default yields the type's zero value. Names not present in the schema are
    ignored.

    Args:
        specs: Argument declarations, in recipe order
        values: Caller-supplied raw values keyed by argument name

    Returns:
        Immutable bound arguments

    Raises:
        MissingRequiredArgument: A required argument was not supplied
        InvalidArgumentType: A supplied value does not coerce to the declared type
        InvalidDefaultValue: A default value does not coerce to the declared type
    """
    values = dict(values or {})
    specs = list(specs)
    bound: dict[str, ArgumentValue] = {}

    for spec in specs:
        if spec.name in values and values[spec.name] is not None:
            raw = values[spec.name]
            try:
                bound[spec.name] = coerce_value(spec, raw)
            except ValueError:
                raise InvalidArgumentType(spec.name, _expected_type(spec), raw) from None
            continue

        if spec.required:
            raise MissingRequiredArgument(spec.name)

        if spec.default_value is None or spec.default_value == "":
            bound[spec.name] = _zero_value(spec)
            continue

        try:
            bound[spec.name] = coerce_value(spec, spec.default_value)
        except ValueError:
            raise InvalidDefaultValue(spec.name, _expected_type(spec), spec.default_value) from None

    known = {spec.name for spec in specs}
    unknown = sorted(name for name in values if name not in known)
    if unknown:
        logger.debug(f"Ignoring unknown arguments: {', '.join(unknown)}")

    return BoundArguments(bound)
