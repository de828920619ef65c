"""
In-process simulated media host.

Plays mono float32 audio on a virtual clock and implements every host
protocol the controller needs: media elements, an audio graph with
analysers, shadow elements, target discovery and a frame scheduler. The
command-line simulator and the test-suite both run on it.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from collections.abc import Callable, Iterable
from pathlib import Path

import numpy as np
import soundfile as sf

from skipsilence.common.logging import get_logger
from skipsilence.controller.protocols import AudioNode, EventListener
from skipsilence.controller.types import (
    HAVE_CURRENT_DATA,
    AudioGraphError,
    CaptureUnsupportedError,
    SourceClaimedError,
)

logger = get_logger(__name__)

HAVE_NOTHING = 0
HAVE_ENOUGH_DATA = 4

_ids = itertools.count(1)


def load_audio(path: str | Path) -> tuple[np.ndarray, int]:
    """Decode an audio file to mono float32 samples in [-1, 1]."""
    data, sample_rate = sf.read(str(path), dtype="float32", always_2d=True)
    mono = data.mean(axis=1) if data.shape[1] > 1 else data[:, 0]
    return np.ascontiguousarray(mono, dtype=np.float32), int(sample_rate)


def tone(duration_s: float, sample_rate: int, amplitude: float, frequency: float = 220.0) -> np.ndarray:
    """Sine tone whose RMS is amplitude / sqrt(2)."""
    t = np.arange(int(duration_s * sample_rate), dtype=np.float64) / sample_rate
    return (amplitude * np.sin(2.0 * np.pi * frequency * t)).astype(np.float32)


def constant_rms(duration_s: float, sample_rate: int, rms: float) -> np.ndarray:
    """Square wave with an exact RMS, handy for threshold tests."""
    samples = int(duration_s * sample_rate)
    signs = np.where(np.arange(samples) % 2 == 0, 1.0, -1.0)
    return (signs * rms).astype(np.float32)


class VirtualClock:
    """Millisecond clock that only moves when told to, with awaitable sleeps."""

    def __init__(self, start_ms: float = 0.0) -> None:
        self._now = start_ms
        self._sleepers: list[tuple[float, int, asyncio.Future[None]]] = []
        self._seq = itertools.count()

    def now_ms(self) -> float:
        return self._now

    def advance(self, ms: float) -> None:
        self._now += ms
        while self._sleepers and self._sleepers[0][0] <= self._now:
            _, _, future = heapq.heappop(self._sleepers)
            if not future.done():
                future.set_result(None)

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._now + seconds * 1000.0, next(self._seq), future))
        await future

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, _, future in self._sleepers if not future.done())


class SimulatedMediaElement:
    """A media element playing a sample buffer on a virtual timeline."""

    def __init__(
        self,
        signal: np.ndarray,
        sample_rate: int,
        *,
        source: str | None = None,
        target_id: str | None = None,
        paused: bool = False,
        muted: bool = False,
        volume: float = 1.0,
        ready_state: int = HAVE_ENOUGH_DATA,
        capture_supported: bool = True,
    ) -> None:
        self._target_id = target_id or f"media-{next(_ids)}"
        self._signal = np.asarray(signal, dtype=np.float32)
        self.sample_rate = sample_rate
        self._source = source
        self._paused = paused
        self.muted = muted
        self.volume = volume
        self.ready_state = ready_state
        self.capture_supported = capture_supported
        self._position_s = 0.0
        self._rate = 1.0
        self._ended = False
        self._listeners: dict[str, list[EventListener]] = {}
        self.rate_writes: list[float] = []
        self.disposed = False

    # --- MediaTarget protocol

    @property
    def target_id(self) -> str:
        return self._target_id

    @property
    def playback_rate(self) -> float:
        return self._rate

    @playback_rate.setter
    def playback_rate(self, value: float) -> None:
        if value <= 0:
            raise ValueError("playback rate must be positive")
        self._rate = float(value)
        self.rate_writes.append(self._rate)
        self.emit("ratechange")

    @property
    def signal(self) -> np.ndarray:
        return self._signal

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def duration(self) -> float:
        return self._signal.size / self.sample_rate

    @property
    def current_time(self) -> float:
        return self._position_s

    @property
    def source(self) -> str | None:
        return self._source

    @property
    def ended(self) -> bool:
        return self._ended

    def capture_stream(self) -> SimulatedStream:
        if not self.capture_supported:
            raise CaptureUnsupportedError(f"{self._target_id} cannot capture its output")
        return SimulatedStream(self)

    def add_event_listener(self, event: str, listener: EventListener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def remove_event_listener(self, event: str, listener: EventListener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: str | None = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, []))
        return sum(len(listeners) for listeners in self._listeners.values())

    # --- ShadowElement protocol

    def play(self) -> None:
        if self._ended:
            self._ended = False
            self._position_s = 0.0
        if self._paused:
            self._paused = False
            self.emit("play")

    def pause(self) -> None:
        if not self._paused:
            self._paused = True
            self.emit("pause")

    def seek(self, position: float) -> None:
        self._position_s = min(max(position, 0.0), self.duration)
        self._ended = False
        self.emit("seeked")

    def dispose(self) -> None:
        self.pause()
        self._listeners.clear()
        self.disposed = True

    # --- simulation

    def emit(self, event: str) -> None:
        for listener in list(self._listeners.get(event, [])):
            listener()

    def advance(self, seconds: float) -> None:
        """Move the playhead by ``seconds`` of wall time at the current rate."""
        if self._paused or self._ended or self.ready_state < HAVE_CURRENT_DATA:
            return
        self._position_s += seconds * self._rate
        if self._position_s >= self.duration:
            self._position_s = self.duration
            self._ended = True
            self._paused = True
            self.emit("ended")

    def load(self, signal: np.ndarray, sample_rate: int, *, source: str | None = None) -> None:
        """Swap the content in place, as a player does between videos."""
        self._signal = np.asarray(signal, dtype=np.float32)
        self.sample_rate = sample_rate
        self._source = source
        self._position_s = 0.0
        self._ended = False
        self.emit("emptied")
        self.emit("loadeddata")

    def read_window(self, out: np.ndarray) -> None:
        """Copy the most recent ``out.size`` samples before the playhead into ``out``."""
        size = out.size
        end = int(self._position_s * self.sample_rate)
        start = end - size
        out.fill(0.0)
        if end <= 0:
            return
        lo = max(start, 0)
        out[size - (end - lo):] = self._signal[lo:end]


class SimulatedStream:
    """Captured output of a simulated element."""

    def __init__(self, element: SimulatedMediaElement) -> None:
        self.element = element
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class SimulatedNode:
    def __init__(self, context: SimulatedAudioContext) -> None:
        self.context = context
        self.outputs: list[AudioNode] = []
        self.inputs: list[SimulatedNode] = []
        self.disconnected = False

    def connect(self, destination: AudioNode) -> None:
        if self.context.state == "closed":
            raise AudioGraphError("context is closed")
        self.outputs.append(destination)
        if isinstance(destination, SimulatedNode):
            destination.inputs.append(self)

    def disconnect(self) -> None:
        self.outputs.clear()
        self.disconnected = True


class SimulatedSourceNode(SimulatedNode):
    def __init__(self, context: SimulatedAudioContext, element: SimulatedMediaElement) -> None:
        super().__init__(context)
        self.element = element


class SimulatedAnalyser(SimulatedNode):
    def __init__(self, context: SimulatedAudioContext) -> None:
        super().__init__(context)
        self.fft_size = 2048
        self.smoothing_time_constant = 0.8
        self.fail_reads = False

    def get_float_time_domain_data(self, out: np.ndarray) -> None:
        if self.fail_reads:
            raise AudioGraphError("analyser read failed")
        if self.context.state == "closed" or self.disconnected:
            raise AudioGraphError("analyser is detached")
        sources = [node for node in self.inputs if isinstance(node, SimulatedSourceNode)]
        if not sources:
            out.fill(0.0)
            return
        sources[0].element.read_window(out)


class SimulatedAudioContext:
    def __init__(self, backend: SimulatedAudioBackend, *, suspended: bool) -> None:
        self.backend = backend
        self._state = "suspended" if suspended else "running"
        self._destination = SimulatedNode(self)
        self.analysers: list[SimulatedAnalyser] = []

    @property
    def state(self) -> str:
        return self._state

    @property
    def destination(self) -> SimulatedNode:
        return self._destination

    async def resume(self) -> None:
        await asyncio.sleep(0)
        if self._state == "suspended" and not self.backend.resume_blocked:
            self._state = "running"

    async def close(self) -> None:
        self._state = "closed"
        self.backend.release_claims(self)

    def create_media_element_source(self, target: SimulatedMediaElement) -> SimulatedSourceNode:
        self.backend.claim(target, self)
        return SimulatedSourceNode(self, target)

    def create_media_stream_source(self, stream: SimulatedStream) -> SimulatedSourceNode:
        if stream.stopped:
            raise AudioGraphError("stream already stopped")
        return SimulatedSourceNode(self, stream.element)

    def create_analyser(self) -> SimulatedAnalyser:
        analyser = SimulatedAnalyser(self)
        self.analysers.append(analyser)
        return analyser


class SimulatedAudioBackend:
    """Audio graph factory with switches for every failure the chain handles."""

    def __init__(
        self,
        *,
        context_available: bool = True,
        start_suspended: bool = True,
        resume_blocked: bool = False,
        shadow_ready_state: int = HAVE_ENOUGH_DATA,
    ) -> None:
        self.context_available = context_available
        self.start_suspended = start_suspended
        self.resume_blocked = resume_blocked
        self.shadow_ready_state = shadow_ready_state
        self.contexts: list[SimulatedAudioContext] = []
        self.shadows: list[SimulatedMediaElement] = []
        self._claims: dict[int, object] = {}
        self._sources: dict[str, tuple[np.ndarray, int]] = {}

    def register_source(self, locator: str, signal: np.ndarray, sample_rate: int) -> None:
        self._sources[locator] = (np.asarray(signal, dtype=np.float32), sample_rate)

    def claim_externally(self, element: SimulatedMediaElement) -> None:
        """Pretend another consumer already owns the element's single source node."""
        self._claims[id(element)] = "external"

    def claim(self, element: SimulatedMediaElement, owner: SimulatedAudioContext) -> None:
        if id(element) in self._claims:
            raise SourceClaimedError(f"{element.target_id} already has a source node")
        self._claims[id(element)] = owner

    def release_claims(self, owner: SimulatedAudioContext) -> None:
        for key in [key for key, value in self._claims.items() if value is owner]:
            del self._claims[key]

    # --- AudioBackend protocol

    def create_context(self) -> SimulatedAudioContext:
        if not self.context_available:
            raise AudioGraphError("audio contexts are unavailable")
        context = SimulatedAudioContext(self, suspended=self.start_suspended)
        self.contexts.append(context)
        return context

    def is_source_claimed(self, target: SimulatedMediaElement) -> bool:
        return id(target) in self._claims

    def create_shadow_element(self, source: str) -> SimulatedMediaElement:
        if source not in self._sources:
            raise AudioGraphError(f"cannot load {source}")
        signal, sample_rate = self._sources[source]
        shadow = SimulatedMediaElement(
            signal,
            sample_rate,
            source=source,
            target_id=f"shadow-{next(_ids)}",
            paused=True,
            ready_state=self.shadow_ready_state,
        )
        self.shadows.append(shadow)
        return shadow

    # --- inspection

    @property
    def live_contexts(self) -> list[SimulatedAudioContext]:
        return [context for context in self.contexts if context.state != "closed"]

    @property
    def live_shadows(self) -> list[SimulatedMediaElement]:
        return [shadow for shadow in self.shadows if not shadow.disposed]


class SimulatedDiscovery:
    """Reports whichever element the test or simulator put on the page."""

    def __init__(self, target: SimulatedMediaElement | None = None) -> None:
        self.target = target

    def current(self) -> SimulatedMediaElement | None:
        return self.target


class SimulatedFrameScheduler:
    """Advances virtual time by one frame and lets background tasks run."""

    def __init__(
        self,
        clock: VirtualClock,
        elements: Callable[[], Iterable[SimulatedMediaElement]],
        interval_s: float = 1.0 / 60.0,
    ) -> None:
        self.clock = clock
        self.elements = elements
        self.interval_s = interval_s
        self.frames = 0

    async def wait_frame(self) -> None:
        for element in self.elements():
            element.advance(self.interval_s)
        self.clock.advance(self.interval_s * 1000.0)
        self.frames += 1
        await asyncio.sleep(0)


__all__ = [
    "HAVE_ENOUGH_DATA",
    "HAVE_NOTHING",
    "SimulatedAnalyser",
    "SimulatedAudioBackend",
    "SimulatedAudioContext",
    "SimulatedDiscovery",
    "SimulatedFrameScheduler",
    "SimulatedMediaElement",
    "SimulatedStream",
    "VirtualClock",
    "constant_rms",
    "load_audio",
    "tone",
]
