"""The sampling engine: one tick reads every source and derives chart data."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

from sysdash.cpu import AGGREGATE, CpuSeries, CpuUtilization
from sysdash.errors import NoProcessData, ParseError, SourceUnavailable
from sysdash.history import ChartHistory, RateTracker
from sysdash.parsers import CpuReducer, MemReducer, MemSnapshot, NetReducer, NetSnapshot, read_source
from sysdash.procs import DEFAULT_PS_COMMAND, ProcessSample, ProcessSampler

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EngineSnapshot:
    """Read-only view of the engine state after one tick."""

    tick: int
    cpu: Mapping[str, CpuUtilization]
    mem: MemSnapshot
    net: NetSnapshot
    net_rx_rate: int
    net_tx_rate: int
    processes: tuple[ProcessSample, ...]
    cpu_history: tuple[float, ...]
    mem_history: tuple[float, ...]
    rx_history: tuple[float, ...]
    tx_history: tuple[float, ...]
    stale: frozenset[str]  # sources whose read failed this tick

    @property
    def cpu_busy(self) -> float:
        util = self.cpu.get(AGGREGATE)
        return util.busy if util is not None else 0.0


class TickSchedule:
    """Fixed-interval deadlines that skip missed ticks instead of queueing them."""

    def __init__(self, interval: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.interval = interval
        self._clock = clock
        self._next = clock()

    def wait_time(self) -> float:
        """Seconds until the next tick is due (0 when it already is)."""
        return max(0.0, self._next - self._clock())

    def advance(self) -> int:
        """Move to the next deadline after a tick; returns how many were skipped."""
        now = self._clock()
        self._next += self.interval
        skipped = 0
        while self._next < now:
            self._next += self.interval
            skipped += 1
        if skipped:
            logger.debug("tick overran, skipped %d tick(s)", skipped)
        return skipped


class MetricsEngine:
    """Owns every snapshot, series and history buffer.

    Each :meth:`tick` reads CPU, memory, network and the process table in
    that order. A source that fails keeps its last good value and is listed
    in :attr:`EngineSnapshot.stale`; no error reaches the caller.
    """

    def __init__(
        self,
        proc_root: str | Path = "/proc",
        interval: float = 1.0,
        history_capacity: int = 120,
        process_command: Sequence[str] = DEFAULT_PS_COMMAND,
        process_timeout: float = 2.0,
        sampler: ProcessSampler | None = None,
    ) -> None:
        self.proc_root = Path(proc_root)
        self.interval = interval
        self.cpu = CpuSeries()
        if sampler is None:
            sampler = ProcessSampler(
                command=process_command,
                proc_root=self.proc_root,
                timeout=process_timeout,
                interval=interval,
            )
        self.sampler = sampler

        self._mem = MemSnapshot()
        self._net = NetSnapshot()
        self._rx = RateTracker("net.rx", interval)
        self._tx = RateTracker("net.tx", interval)
        self._rx_rate = 0
        self._tx_rate = 0
        self._last_net_tick = 0
        self._processes: tuple[ProcessSample, ...] = ()
        self._tick = 0

        self.cpu_history = ChartHistory(history_capacity)
        self.mem_history = ChartHistory(history_capacity)
        self.rx_history = ChartHistory(history_capacity)
        self.tx_history = ChartHistory(history_capacity)

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> MetricsEngine:
        process = config.get("process", {})
        history = config.get("history", {})
        return cls(
            proc_root=config.get("proc_root", "/proc"),
            interval=float(config.get("interval", 1.0)),
            history_capacity=int(history.get("capacity", 120)),
            process_command=process.get("command", DEFAULT_PS_COMMAND),
            process_timeout=float(process.get("timeout", 2.0)),
        )

    def resize_history(self, capacity: int) -> None:
        """Resize every chart buffer, e.g. after the terminal changed width."""
        for hist in (self.cpu_history, self.mem_history, self.rx_history, self.tx_history):
            hist.resize(capacity)

    # ── Per-source sampling ────────────────────────────────────────────────

    @staticmethod
    def _log_parse_errors(source: str, errors: list[ParseError]) -> None:
        for err in errors:
            logger.warning("%s: %s", source, err)

    def _sample_cpu(self) -> None:
        parsed = read_source(self.proc_root / "stat", CpuReducer())
        self._log_parse_errors("stat", parsed.errors)
        self.cpu.tick(parsed.snapshot)

    def _sample_mem(self) -> None:
        parsed = read_source(self.proc_root / "meminfo", MemReducer(self._mem))
        self._log_parse_errors("meminfo", parsed.errors)
        self._mem = parsed.snapshot

    def _sample_net(self) -> None:
        parsed = read_source(self.proc_root / "net" / "dev", NetReducer())
        self._log_parse_errors("net/dev", parsed.errors)
        if parsed.errors:
            # A dropped interface line under-counts the totals, and the next
            # good read would show the difference as a spike.
            raise SourceUnavailable("net/dev", f"{len(parsed.errors)} malformed line(s)")
        self._net = parsed.snapshot
        elapsed = (self._tick - self._last_net_tick) * self.interval if self._last_net_tick else None
        self._rx_rate = self._rx.update(self._net.rx_total, elapsed)
        self._tx_rate = self._tx.update(self._net.tx_total, elapsed)
        self._last_net_tick = self._tick

    def _sample_processes(self) -> None:
        self._processes = tuple(self.sampler.sample())

    # ── Tick ───────────────────────────────────────────────────────────────

    def tick(self) -> EngineSnapshot:
        """Run one sampling cycle and return the resulting snapshot."""
        self._tick += 1
        stale: set[str] = set()

        for name, sample in (
            ("cpu", self._sample_cpu),
            ("mem", self._sample_mem),
            ("net", self._sample_net),
        ):
            try:
                sample()
            except SourceUnavailable as e:
                logger.warning("%s source unavailable, keeping last snapshot: %s", name, e)
                stale.add(name)

        try:
            self._sample_processes()
        except NoProcessData as e:
            logger.warning("no process data, keeping last table: %s", e)
            stale.add("processes")

        if "net" in stale:
            self._rx_rate = self._tx_rate = 0

        self.cpu_history.push(self.cpu.busy())
        self.mem_history.push(self._mem.used_percent)
        self.rx_history.push(self._rx_rate)
        self.tx_history.push(self._tx_rate)

        return self.snapshot(frozenset(stale))

    def snapshot(self, stale: frozenset[str] = frozenset()) -> EngineSnapshot:
        return EngineSnapshot(
            tick=self._tick,
            cpu=MappingProxyType(self.cpu.latest),
            mem=self._mem,
            net=self._net,
            net_rx_rate=self._rx_rate,
            net_tx_rate=self._tx_rate,
            processes=self._processes,
            cpu_history=self.cpu_history.values(),
            mem_history=self.mem_history.values(),
            rx_history=self.rx_history.values(),
            tx_history=self.tx_history.values(),
            stale=stale,
        )
