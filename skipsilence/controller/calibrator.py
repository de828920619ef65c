"""
Silence-threshold calibration.

On the first session of an uncalibrated configuration, ambient loudness is
sampled every 50 ms for one second while the target plays. The threshold
becomes the median reading damped by 0.6, so ordinary speech and room tone
stay above it.
"""

from __future__ import annotations

import statistics
from collections.abc import Sequence
from enum import Enum

from skipsilence.common.logging import get_logger

from .types import ControllerConfig

logger = get_logger(__name__)

CALIBRATION_WINDOW_MS = 1000.0
CALIBRATION_INTERVAL_MS = 50.0
CALIBRATION_DAMPING = 0.6
MIN_CALIBRATION_SAMPLES = 5


def derive_threshold(samples: Sequence[float], damping: float = CALIBRATION_DAMPING) -> float:
    """Median of ``samples`` times ``damping``, rounded to 4 places and clamped to [0, 1]."""
    if not samples:
        raise ValueError("cannot derive a threshold from no samples")
    value = round(statistics.median(samples) * damping, 4)
    return min(max(value, 0.0), 1.0)


class CalibrationStatus(Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class Calibrator:
    """Collects one window of loudness readings, fed tick by tick.

    ``feed`` never blocks; it returns the updated configuration once the
    window closes with enough samples, and ``None`` otherwise.
    """

    def __init__(
        self,
        *,
        window_ms: float = CALIBRATION_WINDOW_MS,
        interval_ms: float = CALIBRATION_INTERVAL_MS,
        min_samples: int = MIN_CALIBRATION_SAMPLES,
        damping: float = CALIBRATION_DAMPING,
    ) -> None:
        self.window_ms = window_ms
        self.interval_ms = interval_ms
        self.min_samples = min_samples
        self.damping = damping
        self.status = CalibrationStatus.IDLE
        self._samples: list[float] = []
        self._started_at: float | None = None
        self._last_sample_at: float | None = None

    @property
    def active(self) -> bool:
        return self.status in (CalibrationStatus.IDLE, CalibrationStatus.COLLECTING)

    @property
    def sample_count(self) -> int:
        return len(self._samples)

    def feed(
        self,
        now_ms: float,
        loudness: float,
        *,
        paused: bool,
        config: ControllerConfig,
    ) -> ControllerConfig | None:
        if not self.active:
            return None
        if self._started_at is None:
            self._started_at = now_ms
            self.status = CalibrationStatus.COLLECTING
            logger.info("calibration.started", window_ms=self.window_ms)

        due = self._last_sample_at is None or now_ms - self._last_sample_at >= self.interval_ms
        if due and not paused:
            self._samples.append(loudness)
            self._last_sample_at = now_ms

        if now_ms - self._started_at < self.window_ms:
            return None
        return self._finish(config)

    def _finish(self, config: ControllerConfig) -> ControllerConfig | None:
        samples, self._samples = self._samples, []
        if len(samples) < self.min_samples:
            self.status = CalibrationStatus.SKIPPED
            logger.info(
                "calibration.skipped",
                reason="too_few_samples",
                samples=len(samples),
                min_samples=self.min_samples,
                threshold=config.silence_threshold,
            )
            return None
        threshold = derive_threshold(samples, self.damping)
        if threshold <= 0.0:
            self.status = CalibrationStatus.SKIPPED
            logger.info(
                "calibration.skipped",
                reason="no_signal",
                samples=len(samples),
                threshold=config.silence_threshold,
            )
            return None
        self.status = CalibrationStatus.COMPLETED
        logger.info(
            "calibration.completed",
            samples=len(samples),
            median=statistics.median(samples),
            threshold=threshold,
            previous_threshold=config.silence_threshold,
        )
        return config.with_changes({"silence_threshold": threshold, "calibrated": True})

    def abandon(self) -> None:
        """Drop a partial window, e.g. when the session ends mid-calibration."""
        if self.status is CalibrationStatus.COLLECTING:
            logger.info("calibration.abandoned", samples=len(self._samples))
        self._samples = []
        self.status = CalibrationStatus.SKIPPED


__all__ = [
    "CALIBRATION_DAMPING",
    "CALIBRATION_INTERVAL_MS",
    "CALIBRATION_WINDOW_MS",
    "MIN_CALIBRATION_SAMPLES",
    "CalibrationStatus",
    "Calibrator",
    "derive_threshold",
]
