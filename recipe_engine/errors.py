"""Exception hierarchy for recipe loading, binding, rendering and execution."""


class RecipeError(Exception):
    """Base class for every error raised by the recipe engine."""


class ConfigurationError(RecipeError):
    """Raised when a recipe definition is malformed.

    Surfaced before any execution begins, so no partial run occurs.
    """

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = list(errors) if errors else [message]
        if errors:
            message = f"{message}: " + "; ".join(errors)
        super().__init__(message)


class ArgumentBindingError(RecipeError):
    """Raised when caller-supplied values cannot be bound to the argument schema."""

    def __init__(self, name: str, message: str):
        self.name = name
        super().__init__(message)


class MissingRequiredArgument(ArgumentBindingError):
    """A required argument was not supplied by the caller."""

    def __init__(self, name: str):
        super().__init__(name, f"Missing required argument: {name}")


class InvalidArgumentType(ArgumentBindingError):
    """A caller-supplied value could not be coerced to the declared type."""

    def __init__(self, name: str, expected_type: str, got: object):
        self.expected_type = expected_type
        self.got = got
        super().__init__(name, f"Argument '{name}' expects {expected_type}, got {got!r}")


class InvalidDefaultValue(ArgumentBindingError):
    """The recipe author's default value does not match the declared type."""

    def __init__(self, name: str, expected_type: str | None = None, default: object = None):
        self.expected_type = expected_type
        self.default = default
        detail = f" ({default!r} is not a valid {expected_type})" if expected_type else ""
        super().__init__(name, f"Invalid default value for argument '{name}'{detail}")


class TemplateError(RecipeError):
    """Raised when a template cannot be rendered."""


class UnresolvedVariable(TemplateError):
    """A template references a name that is not among the bound arguments."""

    def __init__(self, name: str, available: list[str] | None = None):
        self.name = name
        message = f"Undefined variable: {{{{{name}}}}}"
        if available is not None:
            message += f". Available variables: {', '.join(sorted(available)) or '(none)'}"
        super().__init__(message)


class TemplateSyntaxError(TemplateError):
    """A template has unbalanced or nested conditional blocks."""

    def __init__(self, message: str, position: int | None = None):
        self.position = position
        if position is not None:
            message = f"{message} (at offset {position})"
        super().__init__(message)


class ExecutionError(RecipeError):
    """Raised when a command cannot be executed, or a run did not succeed."""

    def __init__(self, message: str, step_id: str | None = None):
        self.step_id = step_id
        super().__init__(message)


class CancellationError(RecipeError):
    """Raised when a run was aborted by caller request."""

    def __init__(self, message: str = "Run cancelled", step_id: str | None = None):
        self.step_id = step_id
        super().__init__(message)
