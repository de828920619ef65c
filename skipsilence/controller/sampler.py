"""Loudness sampling: RMS over an analysis buffer plus a short moving average."""

from __future__ import annotations

import math

import numpy as np

HISTORY_CAPACITY = 10


class VolumeSampler:
    """Computes RMS loudness and smooths it over the last few readings.

    The ring is preallocated, and RMS is taken with a dot product, so a
    steady-state call allocates nothing beyond the returned float.
    """

    def __init__(self, capacity: int = HISTORY_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("history capacity must be >= 1")
        self._ring = np.zeros(capacity, dtype=np.float64)
        self._capacity = capacity
        self._count = 0
        self._next = 0
        self._total = 0.0

    @staticmethod
    def sample(buffer: np.ndarray) -> float:
        """Root-mean-square of the buffer's amplitude values (0.0 when empty)."""
        size = buffer.size
        if size == 0:
            return 0.0
        energy = float(np.dot(buffer, buffer))
        return math.sqrt(energy / size)

    def update_history(self, loudness: float) -> float:
        """Push a reading and return the mean of the retained readings."""
        if self._count == self._capacity:
            self._total -= self._ring[self._next]
        else:
            self._count += 1
        self._ring[self._next] = loudness
        self._total += loudness
        self._next = (self._next + 1) % self._capacity
        # running sums drift; recompute once per full revolution
        if self._next == 0:
            self._total = float(self._ring[: self._count].sum())
        return float(self._total / self._count)

    def reset(self) -> None:
        self._ring.fill(0.0)
        self._count = 0
        self._next = 0
        self._total = 0.0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return self._count


__all__ = ["HISTORY_CAPACITY", "VolumeSampler"]
