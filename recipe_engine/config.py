"""Engine configuration."""

from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError
from .report import MAX_OUTPUT_SIZE_BYTES


@dataclass
class BackoffConfig:
    """Delay between retry attempts of a step.

    The default of zero retries immediately. Backoff only delays attempts, it
    never changes how many are made.
    """

    initial_delay_ms: int = 0  # 0 = retry immediately
    max_delay_ms: int = 30000  # Cap at 30 seconds
    multiplier: float = 2.0  # Exponential backoff multiplier

    def validate(self) -> list[str]:
        """Validate backoff configuration."""
        errors = []
        if self.initial_delay_ms < 0:
            errors.append(f"backoff.initial_delay_ms must be >= 0, got {self.initial_delay_ms}")
        if self.max_delay_ms < self.initial_delay_ms:
            errors.append(
                f"backoff.max_delay_ms must be >= initial_delay_ms, "
                f"got {self.max_delay_ms} < {self.initial_delay_ms}"
            )
        if self.multiplier < 1.0:
            errors.append(f"backoff.multiplier must be >= 1.0, got {self.multiplier}")
        return errors

    def delay_for(self, retry_number: int) -> float:
        """Seconds to wait before the given retry (1 = first retry)."""
        if self.initial_delay_ms <= 0 or retry_number < 1:
            return 0.0
        delay_ms = self.initial_delay_ms * self.multiplier ** (retry_number - 1)
        return min(delay_ms, self.max_delay_ms) / 1000


@dataclass
class EngineConfig:
    """Settings shared by every run of an executor."""

    max_output_bytes: int = MAX_OUTPUT_SIZE_BYTES  # Captured output kept in serialized reports
    kill_grace_seconds: float = 5.0  # SIGTERM -> SIGKILL grace period
    default_shell: str = "sh"  # Shell for the top-level command when the recipe declares none
    log_level: str = "WARNING"
    backoff: BackoffConfig = field(default_factory=BackoffConfig)

    def validate(self) -> list[str]:
        """Validate engine configuration."""
        errors = []
        if self.max_output_bytes < 0:
            errors.append(f"max_output_bytes must be >= 0, got {self.max_output_bytes}")
        if self.kill_grace_seconds < 0:
            errors.append(f"kill_grace_seconds must be >= 0, got {self.kill_grace_seconds}")
        if not self.default_shell.strip():
            errors.append("default_shell cannot be empty")
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"log_level must be a standard logging level name, got '{self.log_level}'")
        errors.extend(self.backoff.validate())
        return errors

    @classmethod
    def from_dict(cls, config: dict[str, Any] | None) -> "EngineConfig":
        """Build configuration from a plain dict, rejecting invalid values."""
        config = dict(config or {})

        backoff_data = config.pop("backoff", None) or {}
        if not isinstance(backoff_data, dict):
            raise ConfigurationError("backoff must be a dictionary")

        try:
            engine_config = cls(backoff=BackoffConfig(**backoff_data), **config)
        except TypeError as e:
            raise ConfigurationError(f"Invalid engine configuration: {e}") from e

        errors = engine_config.validate()
        if errors:
            raise ConfigurationError("Invalid engine configuration", errors)
        return engine_config

    @classmethod
    def from_yaml(cls, path: Path) -> "EngineConfig":
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if data is not None and not isinstance(data, dict):
            raise ConfigurationError("Config YAML must be a dictionary")
        return cls.from_dict(data)
