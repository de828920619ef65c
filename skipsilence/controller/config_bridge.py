"""Configuration bridges: where controller settings come from and are saved to.

Bridges validate everything they hand to the controller; invalid values
raise ``ConfigValidationError`` here and never reach the tick loop.
"""

from __future__ import annotations

import contextlib
import json
import os
import tempfile
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import pydantic
from pydantic.alias_generators import to_camel

from skipsilence.common.logging import get_logger

from .protocols import ConfigListener
from .types import ConfigValidationError, ControllerConfig

logger = get_logger(__name__)

# storage keys used by the browser extension this controller grew out of
LEGACY_KEYS: dict[str, str] = {
    "SILENCE_THRESHOLD": "silence_threshold",
    "GRACE_MS": "grace_ms",
    "FAST_RATE": "fast_rate",
    "NATURAL_RATE": "natural_rate",
}

_FIELDS = tuple(ControllerConfig.model_fields)
_ALIASES = {to_camel(name): name for name in _FIELDS}


def normalize_keys(values: Mapping[str, Any]) -> dict[str, Any]:
    """Map camelCase, snake_case and legacy upper-case keys to field names.

    Unknown keys are dropped.
    """
    normalized: dict[str, Any] = {}
    for key, value in values.items():
        name = LEGACY_KEYS.get(key) or _ALIASES.get(key) or key
        if name in _FIELDS:
            normalized[name] = value
    return normalized


def validate_changes(base: ControllerConfig, changes: Mapping[str, Any]) -> dict[str, Any]:
    """Validate ``changes`` against ``base`` and return the normalized fields."""
    fields = normalize_keys(changes)
    try:
        base.with_changes(fields)
    except pydantic.ValidationError as exc:
        raise ConfigValidationError(str(exc)) from exc
    return fields


class InMemoryConfigBridge:
    """Process-local bridge; ``update`` plays the role of a settings page."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._stored: dict[str, Any] = normalize_keys(initial or {})
        self._listeners: list[ConfigListener] = []
        self.saved: list[ControllerConfig] = []

    def load(self, defaults: ControllerConfig) -> ControllerConfig:
        fields = validate_changes(defaults, self._stored)
        return defaults.with_changes(fields)

    def on_change(self, listener: ConfigListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def save(self, config: ControllerConfig) -> None:
        self._stored.update(config.model_dump())
        self.saved.append(config)

    def update(self, **changes: Any) -> None:
        """Store field changes and notify listeners with only the changed fields."""
        fields = validate_changes(ControllerConfig(), {**self._stored, **changes})
        changed = {key: fields[key] for key in normalize_keys(changes)}
        self._stored.update(changed)
        for listener in list(self._listeners):
            listener(changed)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


class JsonFileConfigBridge(InMemoryConfigBridge):
    """Persists settings as a JSON object in camelCase, like extension storage."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        super().__init__(self._read())

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigValidationError(f"{self.path}: invalid JSON ({exc})") from exc
        if not isinstance(data, dict):
            raise ConfigValidationError(f"{self.path}: expected a JSON object")
        return data

    def _write(self) -> None:
        config = ControllerConfig().with_changes(self._stored)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle, temp_path = tempfile.mkstemp(
            prefix=f".{self.path.name}.", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(handle, "w", encoding="utf-8") as stream:
                json.dump(config.to_wire(), stream, indent=2, sort_keys=True)
                stream.write("\n")
            os.replace(temp_path, self.path)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(temp_path)
            raise
        logger.debug("config_bridge.saved", path=str(self.path))

    def save(self, config: ControllerConfig) -> None:
        super().save(config)
        self._write()

    def update(self, **changes: Any) -> None:
        super().update(**changes)
        self._write()


__all__ = [
    "LEGACY_KEYS",
    "InMemoryConfigBridge",
    "JsonFileConfigBridge",
    "normalize_keys",
    "validate_changes",
]
