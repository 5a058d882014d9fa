"""Line-oriented parsing of /proc counter files.

Every source is read the same way: one line at a time through a reducer that
knows a single file format. Reducers only need ``process(line)`` and
``finalize()``; there is no base class to inherit from.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Generic, Protocol, TypeVar

from sysdash.errors import ParseError, SourceUnavailable

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)

LOOPBACK = "lo"

_CPU_LINE = re.compile(r"^cpu\d*\b")


# ── Snapshot types ─────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class CpuCounters:
    """Cumulative jiffies for one CPU label, as found in /proc/stat."""

    user: int
    nice: int
    system: int
    idle: int

    def total(self) -> int:
        return self.user + self.nice + self.system + self.idle


@dataclass(frozen=True, slots=True)
class MemSnapshot:
    """Total and free memory in kB."""

    total: int = 0
    free: int = 0

    @property
    def used_percent(self) -> int:
        if self.total <= 0:
            return 0
        return (self.total - self.free) * 100 // self.total


@dataclass(frozen=True, slots=True)
class NetSnapshot:
    """Cumulative bytes over every non-loopback interface."""

    rx_total: int = 0
    tx_total: int = 0


@dataclass(frozen=True, slots=True)
class IoCounters:
    """Storage bytes read and written by one process."""

    read_bytes: int = 0
    write_bytes: int = 0


@dataclass(slots=True)
class ParseResult(Generic[T]):
    """The reducer's snapshot plus every line it rejected."""

    snapshot: T
    errors: list[ParseError] = field(default_factory=lambda: list[ParseError]())


# ── Reader ─────────────────────────────────────────────────────────────────


class LineReducer(Protocol[T_co]):
    def process(self, line: str) -> None: ...

    def finalize(self) -> T_co: ...


def parse_lines(lines: Iterable[str], reducer: LineReducer[T]) -> ParseResult[T]:
    """Feed stripped, non-blank lines to *reducer* and collect its snapshot.

    A ``ParseError`` from one line is recorded and the next line is processed,
    so callers may receive a partially populated snapshot.
    """
    errors: list[ParseError] = []
    for lineno, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line:
            continue
        try:
            reducer.process(line)
        except ParseError as e:
            e.line = line
            e.lineno = lineno
            errors.append(e)
    return ParseResult(snapshot=reducer.finalize(), errors=errors)


def read_source(path: str | Path, reducer: LineReducer[T]) -> ParseResult[T]:
    """Parse the text file at *path* with *reducer*.

    Raises:
        SourceUnavailable: If the file can't be opened or read.
    """
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            return parse_lines(f, reducer)
    except OSError as e:
        raise SourceUnavailable(str(path), e.strerror or str(e)) from e


def _counter(value: str, what: str) -> int:
    """Parse a non-negative integer counter field."""
    try:
        n = int(value)
    except ValueError:
        raise ParseError(f"{what} is not an integer: {value!r}") from None
    if n < 0:
        raise ParseError(f"{what} is negative: {n}")
    return n


# ── Reducers ───────────────────────────────────────────────────────────────


class CpuReducer:
    """Collect ``cpu``/``cpuN`` lines of /proc/stat into counters per label."""

    def __init__(self) -> None:
        self._counters: dict[str, CpuCounters] = {}

    def process(self, line: str) -> None:
        if not _CPU_LINE.match(line):
            return
        parts = line.split()
        if len(parts) < 5:
            raise ParseError("cpu line has fewer than 5 fields")
        label = parts[0]
        self._counters[label] = CpuCounters(
            user=_counter(parts[1], f"{label} user"),
            nice=_counter(parts[2], f"{label} nice"),
            system=_counter(parts[3], f"{label} system"),
            idle=_counter(parts[4], f"{label} idle"),
        )

    def finalize(self) -> dict[str, CpuCounters]:
        return dict(self._counters)


class MemReducer:
    """Pick ``MemTotal:`` and ``MemFree:`` out of /proc/meminfo.

    Fields absent from the file keep the value from *previous*.
    """

    def __init__(self, previous: MemSnapshot | None = None) -> None:
        prev = previous or MemSnapshot()
        self._total = prev.total
        self._free = prev.free

    def process(self, line: str) -> None:
        if line.startswith("MemTotal:"):
            self._total = self._value(line, "MemTotal")
        elif line.startswith("MemFree:"):
            self._free = self._value(line, "MemFree")

    @staticmethod
    def _value(line: str, name: str) -> int:
        parts = line.split()
        if len(parts) < 2:
            raise ParseError(f"{name} line has no value")
        return _counter(parts[1], name)

    def finalize(self) -> MemSnapshot:
        return MemSnapshot(total=self._total, free=min(self._free, self._total))


class NetReducer:
    """Sum receive/transmit bytes of /proc/net/dev, skipping loopback."""

    def __init__(self) -> None:
        self._rx = 0
        self._tx = 0

    def process(self, line: str) -> None:
        if ":" not in line:
            return  # the two header lines
        name, _, rest = line.partition(":")
        if name.strip() == LOOPBACK:
            return
        # After the colon: rx bytes is the 1st field and tx bytes the 9th.
        fields = rest.split()
        if len(fields) < 9:
            raise ParseError(f"interface {name.strip()} has fewer than 10 fields")
        rx = _counter(fields[0], f"{name.strip()} rx bytes")
        tx = _counter(fields[8], f"{name.strip()} tx bytes")
        self._rx += rx
        self._tx += tx

    def finalize(self) -> NetSnapshot:
        return NetSnapshot(rx_total=self._rx, tx_total=self._tx)


class IoReducer:
    """Read ``read_bytes`` / ``write_bytes`` out of /proc/<pid>/io."""

    def __init__(self) -> None:
        self._read = 0
        self._write = 0

    def process(self, line: str) -> None:
        key, sep, value = line.partition(":")
        if not sep:
            return
        if key == "read_bytes":
            self._read = _counter(value.strip(), key)
        elif key == "write_bytes":
            self._write = _counter(value.strip(), key)

    def finalize(self) -> IoCounters:
        return IoCounters(read_bytes=self._read, write_bytes=self._write)
