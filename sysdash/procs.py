"""Process table sampling: ``ps`` listing plus per-process disk I/O rates."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from pathlib import Path

import psutil

from sysdash.errors import NoProcessData, ParseError, SourceUnavailable
from sysdash.parsers import IoCounters, IoReducer, parse_lines, read_source

logger = logging.getLogger(__name__)

DEFAULT_PS_COMMAND: list[str] = ["ps", "-e", "-opid,%cpu,%mem,user,comm", "--sort=-pcpu"]


@dataclass(frozen=True, slots=True)
class ProcessSample:
    """One process as seen on one tick."""

    pid: int
    user: str
    command: str
    cpu_percent: float
    mem_percent: float
    disk_read_bytes: int = 0
    disk_write_bytes: int = 0
    read_rate: int | None = None  # bytes/s, None until a prior sample exists
    write_rate: int | None = None


# ── Listing ────────────────────────────────────────────────────────────────


class _PsReducer:
    """Rows of ``ps -opid,%cpu,%mem,user,comm``; the first line is the header."""

    def __init__(self) -> None:
        self._rows: list[ProcessSample] = []
        self._header_seen = False

    def process(self, line: str) -> None:
        if not self._header_seen:
            self._header_seen = True
            return
        parts = line.split(None, 4)
        if len(parts) < 5:
            raise ParseError("process row has fewer than 5 columns")
        try:
            pid = int(parts[0])
            cpu = float(parts[1])
            mem = float(parts[2])
        except ValueError:
            raise ParseError("process row has a non-numeric pid/%cpu/%mem") from None
        self._rows.append(
            ProcessSample(pid=pid, user=parts[3], command=parts[4], cpu_percent=cpu, mem_percent=mem)
        )

    def finalize(self) -> list[ProcessSample]:
        return list(self._rows)


def list_processes(
    command: Sequence[str] = DEFAULT_PS_COMMAND,
    timeout: float = 2.0,
) -> list[ProcessSample]:
    """Run the listing command once and parse one sample per row.

    Output is decoded with replacement characters, so a process name that
    isn't valid UTF-8 still lists.

    Raises:
        NoProcessData: If the command is empty, can't run, fails, times out
            or prints fewer than two lines.
    """
    if not command:
        raise NoProcessData("no process listing command configured")
    try:
        result = subprocess.run(
            list(command),
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise NoProcessData(f"{command[0]} not found") from e
    except OSError as e:
        raise NoProcessData(f"{command[0]} could not be run: {e}") from e
    except subprocess.TimeoutExpired as e:
        raise NoProcessData(f"{command[0]} timed out after {timeout}s") from e

    if result.returncode != 0:
        raise NoProcessData(f"{command[0]} exited with status {result.returncode}")

    lines = result.stdout.strip().splitlines()
    if len(lines) < 2:
        raise NoProcessData(f"{command[0]} printed no process rows")

    parsed = parse_lines(lines, _PsReducer())
    for err in parsed.errors:
        logger.debug("process listing: %s", err)
    if not parsed.snapshot:
        raise NoProcessData(f"{command[0]} printed no usable rows")
    return parsed.snapshot


def read_process_io(pid: int, proc_root: str | Path = "/proc") -> IoCounters:
    """Read the disk I/O counters of *pid*.

    Raises:
        SourceUnavailable: If the io file can't be read (exited process,
            another user's process).
    """
    parsed = read_source(Path(proc_root) / str(pid) / "io", IoReducer())
    for err in parsed.errors:
        logger.debug("pid %d io: %s", pid, err)
    return parsed.snapshot


def _start_time(pid: int) -> float | None:
    try:
        return psutil.Process(pid).create_time()
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return None


# ── Sampler with per-process I/O history ───────────────────────────────────


@dataclass(frozen=True, slots=True)
class _IoHistory:
    identity: tuple[float | None, str]
    counters: IoCounters


class ProcessSampler:
    """Lists processes each tick and attaches disk I/O totals and rates.

    I/O history is keyed by pid but only trusted while the process identity
    (start time, command) still matches, so a recycled pid never produces a
    rate against another process's counters.
    """

    def __init__(
        self,
        command: Sequence[str] = DEFAULT_PS_COMMAND,
        proc_root: str | Path = "/proc",
        timeout: float = 2.0,
        interval: float = 1.0,
        start_time: Callable[[int], float | None] = _start_time,
    ) -> None:
        self.command = list(command)
        self.proc_root = Path(proc_root)
        self.timeout = timeout
        self.interval = interval
        self._start_time = start_time
        self._history: dict[int, _IoHistory] = {}

    def sample(self) -> list[ProcessSample]:
        """Take one process-table sample.

        Raises:
            NoProcessData: Propagated from :func:`list_processes`. The I/O
                history is left untouched in that case.
        """
        listed = list_processes(self.command, self.timeout)
        history: dict[int, _IoHistory] = {}
        samples: list[ProcessSample] = []

        for proc in listed:
            try:
                io = read_process_io(proc.pid, self.proc_root)
            except SourceUnavailable as e:
                logger.debug("no io counters: %s", e)
                samples.append(proc)
                continue

            identity = (self._start_time(proc.pid), proc.command)
            read_rate = write_rate = None
            prev = self._history.get(proc.pid)
            if prev is not None and prev.identity == identity:
                read_rate = self._rate(prev.counters.read_bytes, io.read_bytes)
                write_rate = self._rate(prev.counters.write_bytes, io.write_bytes)
            elif prev is not None:
                logger.debug("pid %d was reused, dropping its io history", proc.pid)

            history[proc.pid] = _IoHistory(identity=identity, counters=io)
            samples.append(
                replace(
                    proc,
                    disk_read_bytes=io.read_bytes,
                    disk_write_bytes=io.write_bytes,
                    read_rate=read_rate,
                    write_rate=write_rate,
                )
            )

        # pids absent this tick are dropped
        self._history = history
        return samples

    def _rate(self, previous: int, current: int) -> int | None:
        if current < previous:
            return None
        return int((current - previous) / self.interval)
