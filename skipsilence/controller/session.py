"""Analysis sessions: the audio graph built against one media target."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from skipsilence.common.logging import get_logger

from .protocols import (
    AnalyserNode,
    AudioContext,
    AudioNode,
    EventListener,
    MediaStream,
    MediaTarget,
    ShadowElement,
)
from .sampler import VolumeSampler
from .types import AudioGraphError

logger = get_logger(__name__)

SHADOW_DRIFT_TOLERANCE_S = 0.25
_SYNC_EVENTS = ("play", "pause", "seeked", "ratechange")


class ShadowSync:
    """Keeps a shadow element's position, pause state and rate on the primary."""

    def __init__(self, primary: MediaTarget, shadow: ShadowElement) -> None:
        self._primary = primary
        self._shadow = shadow
        self._listener: EventListener = self.sync
        self._attached = False

    def attach(self) -> None:
        if self._attached:
            return
        for event in _SYNC_EVENTS:
            self._primary.add_event_listener(event, self._listener)
        self._attached = True
        self.sync()

    def detach(self) -> None:
        if not self._attached:
            return
        for event in _SYNC_EVENTS:
            self._primary.remove_event_listener(event, self._listener)
        self._attached = False

    def sync(self) -> None:
        primary, shadow = self._primary, self._shadow
        if shadow.playback_rate != primary.playback_rate:
            shadow.playback_rate = primary.playback_rate
        drift = abs(shadow.current_time - primary.current_time)
        if drift > SHADOW_DRIFT_TOLERANCE_S:
            shadow.seek(primary.current_time)
        if primary.paused and not shadow.paused:
            shadow.pause()
        elif not primary.paused and shadow.paused:
            shadow.play()


@dataclass
class GraphResources:
    """Everything an acquisition attempt created, in creation order.

    Used both for rollback of a failed attempt and for releasing a live
    session, so the two paths cannot diverge.
    """

    context: AudioContext | None = None
    nodes: list[AudioNode] = field(default_factory=list)
    stream: MediaStream | None = None
    shadow: ShadowElement | None = None
    shadow_sync: ShadowSync | None = None

    async def release(self) -> list[str]:
        """Tear everything down; returns descriptions of steps that failed."""
        failures: list[str] = []
        if self.shadow_sync is not None:
            try:
                self.shadow_sync.detach()
            except Exception as exc:
                failures.append(f"shadow_sync: {exc}")
            self.shadow_sync = None
        for node in reversed(self.nodes):
            try:
                node.disconnect()
            except Exception as exc:
                failures.append(f"disconnect {type(node).__name__}: {exc}")
        self.nodes.clear()
        if self.stream is not None:
            try:
                self.stream.stop()
            except Exception as exc:
                failures.append(f"stream: {exc}")
            self.stream = None
        if self.shadow is not None:
            try:
                self.shadow.dispose()
            except Exception as exc:
                failures.append(f"shadow: {exc}")
            self.shadow = None
        if self.context is not None:
            try:
                if self.context.state != "closed":
                    await self.context.close()
            except Exception as exc:
                failures.append(f"context: {exc}")
            self.context = None
        if failures:
            logger.warning("session.release_incomplete", failures=failures)
        return failures

    @property
    def empty(self) -> bool:
        return (
            self.context is None
            and not self.nodes
            and self.stream is None
            and self.shadow is None
        )


class AnalysisSession:
    """A live analysis graph bound to exactly one media target."""

    def __init__(
        self,
        target: MediaTarget,
        strategy: str,
        analyser: AnalyserNode,
        resources: GraphResources,
    ) -> None:
        self.target = target
        self.strategy = strategy
        self._analyser = analyser
        self._resources = resources
        self._buffer = np.zeros(analyser.fft_size, dtype=np.float32)
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    @property
    def has_shadow(self) -> bool:
        return self._resources.shadow is not None

    @property
    def buffer_size(self) -> int:
        return self._buffer.size

    def read_loudness(self, sampler: VolumeSampler) -> float:
        """Fill the reusable buffer from the analyser and return its RMS."""
        if self._released:
            raise AudioGraphError("analysis session already released")
        if self._resources.shadow_sync is not None:
            self._resources.shadow_sync.sync()
        self._analyser.get_float_time_domain_data(self._buffer)
        return sampler.sample(self._buffer)

    async def release(self) -> None:
        """Disconnect the graph, close the context and drop any shadow element."""
        if self._released:
            return
        self._released = True
        await self._resources.release()
        logger.info(
            "session.released",
            strategy=self.strategy,
            target_id=self.target.target_id,
        )

    def __repr__(self) -> str:
        state = "released" if self._released else "live"
        return f"AnalysisSession(strategy={self.strategy!r}, target={self.target.target_id!r}, {state})"


__all__ = [
    "SHADOW_DRIFT_TOLERANCE_S",
    "AnalysisSession",
    "GraphResources",
    "ShadowSync",
]
