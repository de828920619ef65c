"""Degraded-mode silence verdict used when no analysis session is live."""

from __future__ import annotations

from .protocols import MediaTarget


def heuristic_is_quiet(target: MediaTarget) -> bool:
    """Guess silence from element state alone.

    Only an explicit mute or zero volume counts as silent. A paused element
    is not silent, and a playing, audible element is never classified as
    silent, so without a real signal playback is never sped up.
    """
    return target.muted or target.volume <= 0.0


__all__ = ["heuristic_is_quiet"]
