"""Bounded chart series, counter-to-rate conversion and rate formatting."""

from __future__ import annotations

import logging
from collections import deque

from sysdash.errors import TransientNegativeDelta

logger = logging.getLogger(__name__)

_RATE_UNITS = ("Byte", "KB", "MB", "GB", "TB")


class ChartHistory:
    """Newest-first sample window with a fixed capacity."""

    def __init__(self, capacity: int) -> None:
        self._values: deque[float] = deque(maxlen=max(1, capacity))

    @property
    def capacity(self) -> int:
        return self._values.maxlen or 1

    def __len__(self) -> int:
        return len(self._values)

    def push(self, value: float) -> None:
        # appendleft on a full deque drops the rightmost (oldest) sample
        self._values.appendleft(value)

    def resize(self, capacity: int) -> None:
        """Change the capacity, keeping the newest samples."""
        capacity = max(1, capacity)
        if capacity != self.capacity:
            self._values = deque(list(self._values)[:capacity], maxlen=capacity)

    def values(self) -> tuple[float, ...]:
        return tuple(self._values)


def format_rate(bytes_per_sec: int | float) -> str:
    """Human-readable transfer rate with integer-truncated values.

    A unit is used once the value reaches 1000 of the unit below it, so the
    number never grows past three digits: ``1000`` -> ``"0 KB/s"``,
    ``2048`` -> ``"2 KB/s"``, ``500`` -> ``"500 Byte/s"``.
    """
    value = max(0, int(bytes_per_sec))
    power = 0
    while power < len(_RATE_UNITS) - 1 and value >= 1000 * 1024**power:
        power += 1
    return f"{value // 1024**power} {_RATE_UNITS[power]}/s"


class RateTracker:
    """Per-second rate of a cumulative counter across ticks.

    The first update only records a baseline and returns 0. A counter that
    goes backwards is treated as a transient glitch: the rate for that tick is
    0 and the new value becomes the baseline.
    """

    def __init__(self, name: str, interval: float = 1.0) -> None:
        self.name = name
        self.interval = interval
        self._previous: int | None = None

    def update(self, total: int, elapsed: float | None = None) -> int:
        """Record *total* and return the rate since the previous update.

        *elapsed* defaults to one interval; pass more when ticks were missed.
        """
        previous, self._previous = self._previous, total
        if previous is None:
            return 0
        if total < previous:
            logger.warning("%s", TransientNegativeDelta(self.name, previous, total))
            return 0
        return int((total - previous) / (elapsed or self.interval))
