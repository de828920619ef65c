"""Host implementations of the controller protocols."""

from .simulated import (
    SimulatedAudioBackend,
    SimulatedDiscovery,
    SimulatedFrameScheduler,
    SimulatedMediaElement,
    VirtualClock,
    load_audio,
)

__all__ = [
    "SimulatedAudioBackend",
    "SimulatedDiscovery",
    "SimulatedFrameScheduler",
    "SimulatedMediaElement",
    "VirtualClock",
    "load_audio",
]
