"""Host protocols for the playback-rate controller.

A host (browser bridge, desktop player, the bundled simulation) implements
these protocols; the controller never depends on a concrete media stack.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Protocol, runtime_checkable

import numpy as np

from .types import ControllerConfig

EventListener = Callable[[], None]


@runtime_checkable
class MediaTarget(Protocol):
    """A playable element whose playback rate the controller adjusts."""

    playback_rate: float

    @property
    def target_id(self) -> str: ...
    @property
    def muted(self) -> bool: ...
    @property
    def volume(self) -> float: ...
    @property
    def paused(self) -> bool: ...
    @property
    def ready_state(self) -> int: ...
    @property
    def duration(self) -> float: ...
    @property
    def current_time(self) -> float: ...
    @property
    def source(self) -> str | None: ...
    def capture_stream(self) -> MediaStream: ...
    def add_event_listener(self, event: str, listener: EventListener) -> None: ...
    def remove_event_listener(self, event: str, listener: EventListener) -> None: ...


@runtime_checkable
class ShadowElement(MediaTarget, Protocol):
    """A hidden element the controller owns and may drive."""

    muted: bool

    def play(self) -> None: ...
    def pause(self) -> None: ...
    def seek(self, position: float) -> None: ...
    def dispose(self) -> None: ...


class MediaStream(Protocol):
    """Captured output of a media element."""

    def stop(self) -> None: ...


class AudioNode(Protocol):
    def connect(self, destination: AudioNode) -> None: ...
    def disconnect(self) -> None: ...


@runtime_checkable
class AnalyserNode(AudioNode, Protocol):
    fft_size: int
    smoothing_time_constant: float

    def get_float_time_domain_data(self, out: np.ndarray) -> None: ...


@runtime_checkable
class AudioContext(Protocol):
    @property
    def state(self) -> str: ...
    @property
    def destination(self) -> AudioNode: ...
    async def resume(self) -> None: ...
    async def close(self) -> None: ...
    def create_media_element_source(self, target: MediaTarget) -> AudioNode: ...
    def create_media_stream_source(self, stream: MediaStream) -> AudioNode: ...
    def create_analyser(self) -> AnalyserNode: ...


@runtime_checkable
class AudioBackend(Protocol):
    """Factory for audio graphs and shadow elements."""

    def create_context(self) -> AudioContext: ...
    def is_source_claimed(self, target: MediaTarget) -> bool: ...
    def create_shadow_element(self, source: str) -> ShadowElement: ...


@runtime_checkable
class TargetDiscovery(Protocol):
    """Returns the current playable element; the answer may change at any time."""

    def current(self) -> MediaTarget | None: ...


ConfigListener = Callable[[Mapping[str, Any]], None]


@runtime_checkable
class ConfigBridge(Protocol):
    """External owner of the controller configuration."""

    def load(self, defaults: ControllerConfig) -> ControllerConfig: ...
    def on_change(self, listener: ConfigListener) -> Callable[[], None]: ...
    def save(self, config: ControllerConfig) -> None: ...


class Clock(Protocol):
    def now_ms(self) -> float: ...


class FrameScheduler(Protocol):
    async def wait_frame(self) -> None: ...


__all__ = [
    "AnalyserNode",
    "AudioBackend",
    "AudioContext",
    "AudioNode",
    "Clock",
    "ConfigBridge",
    "ConfigListener",
    "EventListener",
    "FrameScheduler",
    "MediaStream",
    "MediaTarget",
    "ShadowElement",
    "TargetDiscovery",
]
