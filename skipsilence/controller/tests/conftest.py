"""Test fixtures for controller tests: a simulated page on a virtual clock."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pytest

from skipsilence.common.config import RuntimeConfig
from skipsilence.common.logging import configure_logging
from skipsilence.controller.config_bridge import InMemoryConfigBridge
from skipsilence.controller.loop import PlaybackRateController
from skipsilence.hosts.simulated import (
    SimulatedAudioBackend,
    SimulatedDiscovery,
    SimulatedFrameScheduler,
    SimulatedMediaElement,
    VirtualClock,
    constant_rms,
)

SAMPLE_RATE = 8000
LOUD_RMS = 0.1
SOURCE = "sim://clip"


def segments(*parts: tuple[float, float]) -> np.ndarray:
    """Concatenate (duration_s, rms) pieces into one signal."""
    return np.concatenate([constant_rms(duration, SAMPLE_RATE, rms) for duration, rms in parts])


@dataclass
class Harness:
    clock: VirtualClock
    backend: SimulatedAudioBackend
    discovery: SimulatedDiscovery
    bridge: InMemoryConfigBridge
    controller: PlaybackRateController
    scheduler: SimulatedFrameScheduler
    extra_elements: list[SimulatedMediaElement] = field(default_factory=list)

    @property
    def element(self) -> SimulatedMediaElement:
        return self.discovery.target

    async def settle(self, rounds: int = 50) -> None:
        """Let background acquisition run without moving virtual time."""
        for _ in range(rounds):
            await asyncio.sleep(0)

    async def frame(self) -> None:
        await self.controller.tick()
        await self.scheduler.wait_frame()

    async def frames(self, count: int) -> None:
        for _ in range(count):
            await self.frame()

    async def run_until(self, condition: Callable[[], bool], limit: int = 2000) -> None:
        for _ in range(limit):
            if condition():
                return
            await self.frame()
        raise AssertionError("condition not reached within frame limit")

    async def start(self) -> None:
        """Bind the target and wait for the background acquisition to finish."""
        await self.controller.tick()
        await self.settle()


@pytest.fixture(autouse=True, scope="session")
def quiet_logging() -> None:
    """Keep controller chatter out of test output unless something is wrong."""
    configure_logging("WARNING", json_logs=False)


@pytest.fixture
def make_element() -> Callable[..., SimulatedMediaElement]:
    def _make(*parts: tuple[float, float], **kwargs: Any) -> SimulatedMediaElement:
        signal = segments(*(parts or ((3.0, LOUD_RMS),)))
        kwargs.setdefault("source", SOURCE)
        return SimulatedMediaElement(signal, SAMPLE_RATE, **kwargs)

    return _make


@pytest.fixture
def make_harness(make_element) -> Callable[..., Harness]:
    """Build a controller wired to a simulated backend.

    Config defaults to a calibrated threshold so scenarios are not
    perturbed by the one-second calibration window.
    """

    def _make(
        element: SimulatedMediaElement | None = None,
        *,
        config: dict[str, Any] | None = None,
        backend: SimulatedAudioBackend | None = None,
        runtime: RuntimeConfig | None = None,
        **controller_kwargs: Any,
    ) -> Harness:
        clock = VirtualClock()
        backend = backend or SimulatedAudioBackend()
        target = element if element is not None else make_element()
        backend.register_source(SOURCE, target.signal, SAMPLE_RATE)
        discovery = SimulatedDiscovery(target)
        bridge = InMemoryConfigBridge({"calibrated": True, **(config or {})})
        extra: list[SimulatedMediaElement] = []
        scheduler = SimulatedFrameScheduler(
            clock,
            lambda: [
                *([discovery.target] if discovery.target is not None else []),
                *extra,
                *backend.live_shadows,
            ],
        )
        controller = PlaybackRateController(
            discovery,
            backend,
            bridge,
            runtime=runtime or RuntimeConfig(),
            clock=clock,
            scheduler=scheduler,
            sleep=clock.sleep,
            **controller_kwargs,
        )
        return Harness(clock, backend, discovery, bridge, controller, scheduler, extra)

    return _make
