"""
Adaptive playback-rate controller.

This package provides the volume sampler, the acquisition strategy chain,
the calibrator, the rate decision engine and the control loop driver that
ties them to a host.
"""

from .acquisition import (
    AcquisitionChain,
    AcquisitionEnv,
    AcquisitionStrategy,
    DirectTapStrategy,
    ShadowElementStrategy,
    StreamCaptureStrategy,
)
from .calibrator import Calibrator, derive_threshold
from .config_bridge import InMemoryConfigBridge, JsonFileConfigBridge
from .decision import RateDecisionEngine
from .heuristic import heuristic_is_quiet
from .loop import AsyncioFrameScheduler, MonotonicClock, PlaybackRateController
from .sampler import VolumeSampler
from .session import AnalysisSession
from .types import (
    AcquisitionErr,
    AcquisitionFailure,
    AcquisitionOk,
    AnalysisMode,
    ControllerConfig,
    SilenceState,
)

__all__ = [
    "AcquisitionChain",
    "AcquisitionEnv",
    "AcquisitionErr",
    "AcquisitionFailure",
    "AcquisitionOk",
    "AcquisitionStrategy",
    "AnalysisMode",
    "AnalysisSession",
    "AsyncioFrameScheduler",
    "Calibrator",
    "ControllerConfig",
    "DirectTapStrategy",
    "InMemoryConfigBridge",
    "JsonFileConfigBridge",
    "MonotonicClock",
    "PlaybackRateController",
    "RateDecisionEngine",
    "ShadowElementStrategy",
    "SilenceState",
    "StreamCaptureStrategy",
    "VolumeSampler",
    "derive_threshold",
    "heuristic_is_quiet",
]
