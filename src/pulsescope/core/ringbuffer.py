"""
Fixed-capacity numeric ring buffer.

Backs every rolling window in the library (energy history, onset
timestamps, trend windows). Storage is allocated once; pushes overwrite
the oldest sample when the buffer is full.
"""

import numpy as np


class RingBuffer:
    """
    Circular float64 buffer with an explicit logical length.

    Values are exposed oldest-first. ``push`` is O(1) and never allocates.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"RingBuffer capacity must be >= 1, got {capacity}")
        self.capacity = int(capacity)
        self._data = np.zeros(self.capacity, dtype=np.float64)
        self._head = 0  # index of the oldest sample
        self._count = 0

    def __len__(self) -> int:
        return self._count

    @property
    def is_full(self) -> bool:
        return self._count == self.capacity

    def push(self, value: float) -> None:
        """Append a value, evicting the oldest one when full."""
        tail = (self._head + self._count) % self.capacity
        self._data[tail] = value
        if self._count < self.capacity:
            self._count += 1
        else:
            self._head = (self._head + 1) % self.capacity

    def popleft(self) -> float:
        """Remove and return the oldest value."""
        if self._count == 0:
            raise IndexError("pop from empty RingBuffer")
        value = float(self._data[self._head])
        self._head = (self._head + 1) % self.capacity
        self._count -= 1
        return value

    def oldest(self) -> float:
        if self._count == 0:
            raise IndexError("oldest of empty RingBuffer")
        return float(self._data[self._head])

    def newest(self) -> float:
        if self._count == 0:
            raise IndexError("newest of empty RingBuffer")
        return float(self._data[(self._head + self._count - 1) % self.capacity])

    def values(self) -> np.ndarray:
        """Return the logical contents oldest-first (a copy)."""
        idx = (self._head + np.arange(self._count)) % self.capacity
        return self._data[idx]

    def recent(self, count: int) -> np.ndarray:
        """Return up to ``count`` newest values, oldest-first."""
        count = max(0, min(count, self._count))
        start = self._head + self._count - count
        idx = (start + np.arange(count)) % self.capacity
        return self._data[idx]

    def mean(self) -> float:
        """Mean of the stored values, 0.0 when empty."""
        if self._count == 0:
            return 0.0
        if self.is_full:
            return float(self._data.mean())
        return float(self.values().mean())

    def std(self) -> float:
        """Population standard deviation, 0.0 when empty."""
        if self._count == 0:
            return 0.0
        return float(self.values().std())

    def trend(self) -> float:
        """
        Least-squares slope of the values against their index, scaled by 10
        and clamped to [-1, 1].

        Returns 0.0 with fewer than two samples.
        """
        n = self._count
        if n < 2:
            return 0.0

        y = self.values()
        x = np.arange(n, dtype=np.float64)
        sum_x = x.sum()
        sum_y = y.sum()
        sum_xy = float(np.dot(x, y))
        sum_x2 = float(np.dot(x, x))

        slope = (n * sum_xy - sum_x * sum_y) / (n * sum_x2 - sum_x * sum_x)
        return float(np.clip(slope * 10.0, -1.0, 1.0))

    def clear(self) -> None:
        self._data.fill(0.0)
        self._head = 0
        self._count = 0
