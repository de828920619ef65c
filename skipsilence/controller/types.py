"""
Core data types for the playback-rate controller.

This module defines the configuration snapshot, the decision engine state,
the tagged acquisition result and the exceptions raised by audio hosts.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from skipsilence.common.config import ConfigError

if TYPE_CHECKING:
    from .session import AnalysisSession


# HTMLMediaElement.HAVE_CURRENT_DATA; anything below cannot produce samples
HAVE_CURRENT_DATA = 2

ANALYSER_FFT_SIZE = 512
ANALYSER_SMOOTHING = 0.8


class ControllerConfig(BaseModel):
    """Immutable per-tick configuration snapshot.

    Field names are snake_case in Python and camelCase on the wire
    (``silenceThreshold``, ``graceMs`` ...).
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    silence_threshold: float = Field(
        default=0.005, ge=0.0, le=1.0, description="RMS below which a sample is quiet"
    )
    grace_ms: int = Field(
        default=400, ge=0, description="Sustained quiet time before speeding up"
    )
    fast_rate: float = Field(default=2.0, gt=0.0, description="Rate used during silence")
    natural_rate: float = Field(default=1.0, gt=0.0, description="Rate used during sound")
    enabled: bool = Field(default=True, description="Master switch")
    calibrated: bool = Field(
        default=False, description="Whether silence_threshold was derived by calibration"
    )

    def with_changes(self, changes: dict[str, Any]) -> ControllerConfig:
        """Return a validated copy with whole-field replacements applied."""
        merged = self.model_dump()
        merged.update(changes)
        return ControllerConfig.model_validate(merged)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class ConfigValidationError(ConfigError):
    """Raised by a configuration bridge when stored values are out of range."""


@dataclass
class SilenceState:
    """Debounce state carried by the decision engine across ticks."""

    quiet_since: float | None = None

    @property
    def timer_running(self) -> bool:
        return self.quiet_since is not None

    def clear(self) -> None:
        self.quiet_since = None


class AnalysisMode(Enum):
    """Where the per-tick silence verdict comes from."""

    ANALYSIS = "analysis"
    HEURISTIC = "heuristic"
    DISABLED = "disabled"
    UNBOUND = "unbound"


class AcquisitionFailure(Enum):
    """Reasons an acquisition strategy can fail."""

    CONTEXT_UNAVAILABLE = "context_unavailable"
    TARGET_NOT_READY = "target_not_ready"
    SOURCE_ALREADY_CLAIMED = "source_already_claimed"
    CAPTURE_UNSUPPORTED = "capture_unsupported"
    SOURCE_LOCATOR_MISSING = "source_locator_missing"
    GRAPH_ERROR = "graph_error"
    ALL_STRATEGIES_FAILED = "all_strategies_failed"


@dataclass(frozen=True)
class AcquisitionOk:
    """A live analysis session was built."""

    session: AnalysisSession

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class AcquisitionErr:
    """No session could be built; nothing was left behind."""

    reason: AcquisitionFailure
    detail: str = ""
    strategy: str | None = None

    @property
    def ok(self) -> bool:
        return False

    def __str__(self) -> str:
        where = f"{self.strategy}: " if self.strategy else ""
        return f"{where}{self.reason.value} {self.detail}".strip()


AcquisitionResult = Union[AcquisitionOk, AcquisitionErr]


class AudioGraphError(Exception):
    """Base error raised by an audio host while building or reading a graph."""


class SourceClaimedError(AudioGraphError):
    """The media element already feeds another element source node."""


class CaptureUnsupportedError(AudioGraphError):
    """The media element cannot expose a capturable output stream."""


__all__ = [
    "ANALYSER_FFT_SIZE",
    "ANALYSER_SMOOTHING",
    "HAVE_CURRENT_DATA",
    "AcquisitionErr",
    "AcquisitionFailure",
    "AcquisitionOk",
    "AcquisitionResult",
    "AnalysisMode",
    "AudioGraphError",
    "CaptureUnsupportedError",
    "ConfigValidationError",
    "ControllerConfig",
    "SilenceState",
    "SourceClaimedError",
]
