"""Debounced silent/non-silent verdicts turned into playback-rate writes."""

from __future__ import annotations

import math

from .types import ControllerConfig, SilenceState


def _same_rate(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=1e-9, abs_tol=1e-12)


class RateDecisionEngine:
    """Two-speed state machine with an asymmetric debounce.

    Silence has to persist for longer than ``grace_ms`` before the fast rate
    is chosen; any loud sample clears the timer and restores the natural rate
    on the same tick.
    """

    def __init__(self, enabled: bool = True) -> None:
        self.state = SilenceState()
        # a controller that starts disabled never forces a rate
        self._was_enabled = enabled

    def decide(
        self,
        is_quiet: bool,
        now_ms: float,
        current_rate: float,
        config: ControllerConfig,
    ) -> float | None:
        """Return the rate to write this tick, or None when no write is needed."""
        if not config.enabled:
            return self._decide_disabled(current_rate, config)
        self._was_enabled = True

        if is_quiet:
            if self.state.quiet_since is None:
                self.state.quiet_since = now_ms
            elapsed = now_ms - self.state.quiet_since
            if elapsed > config.grace_ms and not _same_rate(current_rate, config.fast_rate):
                return config.fast_rate
            return None

        self.state.clear()
        if not _same_rate(current_rate, config.natural_rate):
            return config.natural_rate
        return None

    def _decide_disabled(self, current_rate: float, config: ControllerConfig) -> float | None:
        if not self._was_enabled:
            return None
        self._was_enabled = False
        self.state.clear()
        if not _same_rate(current_rate, config.natural_rate):
            return config.natural_rate
        return None

    def reset(self) -> None:
        """Forget any running silence timer (new target or new session)."""
        self.state.clear()


__all__ = ["RateDecisionEngine"]
