"""Signal stabilization primitives: ring-buffer moving average and hysteresis."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np


class SmoothingBuffer:
    """Fixed-capacity FIFO of the most recent samples with an O(1) mean.

    Samples are scalars (``dim=1``) or fixed-length vectors. A running sum is
    kept alongside the ring so pushing, evicting and reading the mean never
    walk the whole window.

    Usage:
        ratios = SmoothingBuffer(capacity=5)
        ratios.push(1.3)
        smoothed = ratios.mean
    """

    def __init__(self, capacity: int, dim: int = 1):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.dim = dim
        self._ring = np.zeros((capacity, dim), dtype=np.float64)
        self._sum = np.zeros(dim, dtype=np.float64)
        self._head = 0  # next slot to write
        self._count = 0

    def push(self, sample) -> None:
        value = np.asarray(sample, dtype=np.float64).reshape(self.dim)
        if self._count == self.capacity:
            self._sum -= self._ring[self._head]
        else:
            self._count += 1
        self._ring[self._head] = value
        self._sum += value
        self._head = (self._head + 1) % self.capacity

    @property
    def mean(self):
        """Arithmetic mean of the window: a float for scalars, else a tuple."""
        if self._count == 0:
            raise ValueError("mean of an empty buffer")
        avg = self._sum / self._count
        if self.dim == 1:
            return float(avg[0])
        return tuple(float(v) for v in avg)

    def clear(self) -> None:
        self._ring[:] = 0.0
        self._sum[:] = 0.0
        self._head = 0
        self._count = 0

    def values(self) -> list:
        """Samples oldest-first."""
        start = (self._head - self._count) % self.capacity
        rows = [self._ring[(start + i) % self.capacity] for i in range(self._count)]
        if self.dim == 1:
            return [float(r[0]) for r in rows]
        return [tuple(float(v) for v in r) for r in rows]

    @property
    def is_full(self) -> bool:
        return self._count == self.capacity

    def __len__(self) -> int:
        return self._count

    def __bool__(self) -> bool:
        return self._count > 0


@dataclass(frozen=True)
class HysteresisThreshold:
    """Two-threshold switch: turns on above ``open_above``, off below ``close_below``.

    Values inside the band keep the current state, which is what stops the
    output flickering when the signal hovers near a single cut-off.
    """

    open_above: float
    close_below: float

    def __post_init__(self):
        if not self.open_above > self.close_below:
            raise ValueError(
                f"open_above ({self.open_above}) must exceed close_below ({self.close_below})"
            )

    def update(self, is_open: bool, value: float) -> bool:
        if not is_open and value > self.open_above:
            return True
        if is_open and value < self.close_below:
            return False
        return is_open


def lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def all_finite(*values: float) -> bool:
    return all(math.isfinite(v) for v in values)
