"""Per-core CPU utilisation from consecutive /proc/stat readings."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from sysdash.errors import TransientNegativeDelta
from sysdash.parsers import CpuCounters

logger = logging.getLogger(__name__)

AGGREGATE = "cpu"


@dataclass(frozen=True, slots=True)
class CpuUtilization:
    """Share of one tick spent in each state, in percent."""

    user: float = 0.0
    nice: float = 0.0
    system: float = 0.0
    idle: float = 0.0

    @property
    def busy(self) -> float:
        return self.user + self.nice + self.system


def _delta(label: str, prev: CpuCounters, curr: CpuCounters) -> CpuCounters:
    """Component-wise ``curr - prev``; raises if any counter went backwards."""
    for name in ("user", "nice", "system", "idle"):
        before, after = getattr(prev, name), getattr(curr, name)
        if after < before:
            raise TransientNegativeDelta(f"{label}.{name}", before, after)
    return CpuCounters(
        user=curr.user - prev.user,
        nice=curr.nice - prev.nice,
        system=curr.system - prev.system,
        idle=curr.idle - prev.idle,
    )


def utilization(delta: CpuCounters) -> CpuUtilization | None:
    """Turn a counter delta into percentages. ``None`` when nothing elapsed."""
    total = delta.total()
    if total == 0:
        return None
    return CpuUtilization(
        user=delta.user / total * 100,
        nice=delta.nice / total * 100,
        system=delta.system / total * 100,
        idle=delta.idle / total * 100,
    )


class CpuSeries:
    """Previous counters and latest utilisation for every CPU label.

    Starts uninitialised. The first :meth:`tick` only records the counters
    and reports 0% everywhere; each later tick diffs against the stored
    counters.
    """

    def __init__(self) -> None:
        self._previous: dict[str, CpuCounters] = {}
        self._latest: dict[str, CpuUtilization] = {}
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def latest(self) -> dict[str, CpuUtilization]:
        return dict(self._latest)

    @property
    def labels(self) -> list[str]:
        return list(self._previous)

    def busy(self, label: str = AGGREGATE) -> float:
        util = self._latest.get(label)
        return util.busy if util is not None else 0.0

    def tick(self, counters: Mapping[str, CpuCounters]) -> list[TransientNegativeDelta]:
        """Fold one /proc/stat reading into the series.

        Returns the negative-delta errors for labels skipped on this tick.
        Labels missing from *counters* keep their previous state.
        """
        skipped: list[TransientNegativeDelta] = []

        if not self._initialized:
            self._previous = dict(counters)
            self._latest = {label: CpuUtilization() for label in counters}
            self._initialized = True
            return skipped

        for label, curr in counters.items():
            prev = self._previous.get(label)
            if prev is None:
                # Hot-added CPU: adopt it and start diffing next tick.
                logger.info("new cpu label %s", label)
                self._previous[label] = curr
                self._latest[label] = CpuUtilization()
                continue

            try:
                delta = _delta(label, prev, curr)
            except TransientNegativeDelta as e:
                # Old percentage stays for this tick; the reset reading is the new baseline.
                logger.warning("skipping %s this tick: %s", label, e)
                skipped.append(e)
                self._previous[label] = curr
                continue

            util = utilization(delta)
            if util is not None:
                self._latest[label] = util
            self._previous[label] = curr

        return skipped
