"""Process-level configuration primitives for skipsilence.

Runtime knobs (logging, frame cadence, acquisition timeouts and back-off)
are declared as field definitions and may be overridden from the
environment. The per-tick controller settings live in
``skipsilence.controller.types.ControllerConfig`` instead.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


class ConfigError(Exception):
    """Base exception for configuration-related errors."""


class ValidationError(ConfigError):
    """Exception raised when configuration validation fails."""

    def __init__(self, field_name: str, value: Any, message: str) -> None:
        self.field = field_name
        self.value = value
        self.message = message
        super().__init__(f"Validation failed for field '{field_name}': {message}")


@dataclass
class FieldDefinition:
    """Definition for a configuration field with validation rules."""

    name: str
    field_type: type[Any]
    default: Any = None
    description: str = ""
    validator: Callable[[Any], bool] | None = None
    env_var: str | None = None
    choices: list[Any] | None = None
    min_value: int | float | None = None
    max_value: int | float | None = None

    def __post_init__(self) -> None:
        if self.choices and self.default not in self.choices:
            raise ValueError(f"Field '{self.name}' default value not in choices")


class BaseConfig(ABC):
    """Base configuration class with validation and environment loading."""

    def __init__(self, **kwargs: Any) -> None:
        self._values: dict[str, Any] = {}
        self._load_from_kwargs(kwargs)
        self._load_from_environment()
        self._validate()

    def _load_from_kwargs(self, kwargs: dict[str, Any]) -> None:
        known = {field_def.name for field_def in self.get_field_definitions()}
        unknown = set(kwargs) - known
        if unknown:
            raise ConfigError(f"Unknown configuration fields: {sorted(unknown)}")
        for field_def in self.get_field_definitions():
            if field_def.name in kwargs:
                self._values[field_def.name] = kwargs[field_def.name]

    def _load_from_environment(self) -> None:
        """Environment variables override constructor values."""
        for field_def in self.get_field_definitions():
            if field_def.env_var:
                env_value = os.getenv(field_def.env_var)
                if env_value is not None:
                    self._values[field_def.name] = self._convert_env_value(
                        field_def, env_value
                    )

    def _convert_env_value(self, field_def: FieldDefinition, value: str) -> Any:
        field_type = field_def.field_type
        try:
            if field_type is bool:
                return value.strip().lower() in ("true", "1", "yes", "on")
            if field_type is int:
                return int(value)
            if field_type is float:
                return float(value)
        except ValueError as exc:
            raise ValidationError(
                field_def.name, value, f"Cannot parse {field_def.env_var}"
            ) from exc
        return value

    def _validate(self) -> None:
        for field_def in self.get_field_definitions():
            value = self._values.get(field_def.name, field_def.default)
            if value is None:
                continue
            if field_def.field_type is float and isinstance(value, int) and not isinstance(value, bool):
                value = float(value)
            self._validate_field(field_def, value)
            self._values[field_def.name] = value

    def _validate_field(self, field_def: FieldDefinition, value: Any) -> None:
        if not isinstance(value, field_def.field_type):
            raise ValidationError(
                field_def.name, value, f"Expected {field_def.field_type.__name__}"
            )
        if field_def.choices and value not in field_def.choices:
            raise ValidationError(
                field_def.name, value, f"Must be one of {field_def.choices}"
            )
        if field_def.min_value is not None and value < field_def.min_value:
            raise ValidationError(
                field_def.name, value, f"Must be >= {field_def.min_value}"
            )
        if field_def.max_value is not None and value > field_def.max_value:
            raise ValidationError(
                field_def.name, value, f"Must be <= {field_def.max_value}"
            )
        if field_def.validator and not field_def.validator(value):
            raise ValidationError(field_def.name, value, "Custom validation failed")

    @classmethod
    @abstractmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        """Get field definitions for this configuration class."""

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        if name in self._values:
            return self._values[name]
        raise AttributeError(f"Configuration field '{name}' not found")

    def to_dict(self) -> dict[str, Any]:
        return self._values.copy()


class LoggingConfig(BaseConfig):
    """Logging configuration."""

    @classmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        return [
            FieldDefinition(
                name="level",
                field_type=str,
                default="INFO",
                description="Log level",
                env_var="LOG_LEVEL",
                choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            ),
            FieldDefinition(
                name="json_logs",
                field_type=bool,
                default=False,
                description="Use JSON logging format",
                env_var="LOG_JSON",
            ),
            FieldDefinition(
                name="service_name",
                field_type=str,
                default="skipsilence",
                description="Service name for logging",
                env_var="SERVICE_NAME",
            ),
        ]


class RuntimeConfig(BaseConfig):
    """Timing and resilience settings for the control loop driver."""

    @classmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        return [
            FieldDefinition(
                name="frames_per_second",
                field_type=float,
                default=60.0,
                description="Tick cadence, one tick per display refresh",
                env_var="SKIPSILENCE_FPS",
                min_value=1.0,
                max_value=1000.0,
            ),
            FieldDefinition(
                name="discovery_timeout_s",
                field_type=float,
                default=0.0,
                description="Give up waiting for a media target after this many seconds (0 waits forever)",
                env_var="SKIPSILENCE_DISCOVERY_TIMEOUT_S",
                min_value=0.0,
            ),
            FieldDefinition(
                name="ready_timeout_s",
                field_type=float,
                default=5.0,
                description="Maximum wait for a target to become ready during acquisition",
                env_var="SKIPSILENCE_READY_TIMEOUT_S",
                min_value=0.0,
                max_value=120.0,
            ),
            FieldDefinition(
                name="ready_poll_s",
                field_type=float,
                default=0.1,
                description="Readiness polling interval",
                env_var="SKIPSILENCE_READY_POLL_S",
                min_value=0.001,
                max_value=5.0,
            ),
            FieldDefinition(
                name="retry_initial_s",
                field_type=float,
                default=1.0,
                description="First back-off delay before re-acquiring analysis",
                env_var="SKIPSILENCE_RETRY_INITIAL_S",
                min_value=0.0,
                max_value=60.0,
            ),
            FieldDefinition(
                name="retry_max_s",
                field_type=float,
                default=30.0,
                description="Upper bound on a single back-off delay",
                env_var="SKIPSILENCE_RETRY_MAX_S",
                min_value=0.0,
                max_value=600.0,
            ),
            FieldDefinition(
                name="retry_attempts",
                field_type=int,
                default=5,
                description="Acquisition attempts per retry round",
                env_var="SKIPSILENCE_RETRY_ATTEMPTS",
                min_value=1,
                max_value=100,
            ),
            FieldDefinition(
                name="log_every_ticks",
                field_type=int,
                default=100,
                description="Emit a loudness debug record every N ticks",
                env_var="SKIPSILENCE_LOG_EVERY_TICKS",
                min_value=1,
            ),
        ]

    @property
    def frame_interval_s(self) -> float:
        return 1.0 / self.frames_per_second


__all__ = [
    "BaseConfig",
    "ConfigError",
    "FieldDefinition",
    "LoggingConfig",
    "RuntimeConfig",
    "ValidationError",
]
