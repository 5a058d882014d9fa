"""Tests for sysdash.engine."""

from __future__ import annotations

import dataclasses
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from sysdash.config import DEFAULT_CONFIG
from sysdash.engine import EngineSnapshot, MetricsEngine, TickSchedule
from sysdash.errors import NoProcessData
from sysdash.procs import ProcessSample, ProcessSampler

NET_HEADER = (
    "Inter-|   Receive                                                |  Transmit\n"
    " face |bytes    packets errs drop fifo frame compressed multicast|bytes    packets\n"
)


def _write_proc(
    root: Path,
    cpu: tuple[int, int, int, int] = (100, 0, 0, 100),
    mem: tuple[int, int] = (1000, 250),
    net: tuple[int, int] = (500, 200),
) -> None:
    (root / "net").mkdir(parents=True, exist_ok=True)
    u, n, s, i = cpu
    (root / "stat").write_text(f"cpu  {u} {n} {s} {i} 0 0 0\ncpu0 {u} {n} {s} {i} 0 0 0\nctxt 1\n")
    (root / "meminfo").write_text(f"MemTotal: {mem[0]} kB\nMemFree: {mem[1]} kB\n")
    rx, tx = net
    (root / "net" / "dev").write_text(
        NET_HEADER
        + "    lo: 999 1 0 0 0 0 0 0 999 1 0 0 0 0 0 0\n"
        + f"  eth0: {rx} 1 0 0 0 0 0 0 {tx} 1 0 0 0 0 0 0\n"
    )


def _sampler(*results: list[ProcessSample] | Exception) -> MagicMock:
    sampler = MagicMock(spec=ProcessSampler)
    sampler.sample.side_effect = list(results)
    return sampler


def _proc(pid: int) -> ProcessSample:
    return ProcessSample(pid=pid, user="root", command="init", cpu_percent=0.0, mem_percent=0.1)


@pytest.fixture
def proc_root(tmp_path: Path) -> Path:
    _write_proc(tmp_path)
    return tmp_path


# ── MetricsEngine.tick ─────────────────────────────────────────────────────


class TestTick:
    def test_first_tick(self, proc_root: Path) -> None:
        engine = MetricsEngine(proc_root=proc_root, sampler=_sampler([_proc(1)]))
        snap = engine.tick()

        assert snap.tick == 1
        assert snap.cpu_busy == 0.0
        assert snap.mem.total == 1000
        assert snap.mem.used_percent == 75
        assert snap.net.rx_total == 500
        assert snap.net_rx_rate == 0
        assert snap.net_tx_rate == 0
        assert snap.processes == (_proc(1),)
        assert snap.stale == frozenset()
        assert snap.cpu_history == (0.0,)
        assert snap.mem_history == (75,)

    def test_second_tick_derives_rates(self, proc_root: Path) -> None:
        engine = MetricsEngine(proc_root=proc_root, sampler=_sampler([], []))
        engine.tick()
        _write_proc(proc_root, cpu=(150, 0, 0, 150), mem=(1000, 500), net=(1500, 700))
        snap = engine.tick()

        assert snap.cpu["cpu"].user == pytest.approx(50.0)
        assert snap.cpu["cpu0"].idle == pytest.approx(50.0)
        assert snap.cpu_busy == pytest.approx(50.0)
        assert snap.net_rx_rate == 1000
        assert snap.net_tx_rate == 500
        assert snap.cpu_history == (pytest.approx(50.0), 0.0)
        assert snap.mem_history == (50, 75)
        assert snap.rx_history == (1000, 0)

    def test_missing_source_keeps_last_snapshot(self, proc_root: Path) -> None:
        engine = MetricsEngine(proc_root=proc_root, sampler=_sampler([], []))
        engine.tick()
        (proc_root / "meminfo").unlink()
        snap = engine.tick()

        assert snap.stale == frozenset({"mem"})
        assert snap.mem.total == 1000
        assert snap.mem.free == 250

    def test_unavailable_net_then_recovered(self, proc_root: Path) -> None:
        engine = MetricsEngine(proc_root=proc_root, sampler=_sampler([], [], []))
        engine.tick()
        (proc_root / "net" / "dev").unlink()
        snap = engine.tick()
        assert "net" in snap.stale
        assert snap.net_rx_rate == 0

        _write_proc(proc_root, net=(2500, 200))
        snap = engine.tick()
        # two intervals elapsed since the last good reading
        assert snap.net_rx_rate == 1000
        assert snap.stale == frozenset()

    def test_partial_net_read_is_stale(self, proc_root: Path) -> None:
        engine = MetricsEngine(proc_root=proc_root, sampler=_sampler([], [], []))
        _write_proc(proc_root, net=(5000, 200))
        engine.tick()

        (proc_root / "net" / "dev").write_text(
            NET_HEADER + "  eth0: garbage\n" + "  wlan0: 100 1 0 0 0 0 0 0 50 1 0 0 0 0 0 0\n"
        )
        snap = engine.tick()
        assert "net" in snap.stale
        assert snap.net.rx_total == 5000
        assert snap.net_rx_rate == 0

        _write_proc(proc_root, net=(6000, 200))
        snap = engine.tick()
        assert snap.stale == frozenset()
        assert snap.rx_history == (500, 0, 0)

    def test_unrunnable_process_command_is_stale(self, proc_root: Path, tmp_path: Path) -> None:
        not_executable = tmp_path / "ps"
        not_executable.write_text("not a program\n")
        not_executable.chmod(0o644)
        engine = MetricsEngine(proc_root=proc_root, process_command=[str(not_executable)])
        snap = engine.tick()
        assert snap.stale == frozenset({"processes"})
        assert snap.processes == ()

    def test_no_process_data_keeps_previous_table(self, proc_root: Path) -> None:
        engine = MetricsEngine(
            proc_root=proc_root,
            sampler=_sampler([_proc(1), _proc(2)], NoProcessData("ps printed no process rows")),
        )
        engine.tick()
        snap = engine.tick()
        assert snap.stale == frozenset({"processes"})
        assert [p.pid for p in snap.processes] == [1, 2]

    def test_malformed_line_does_not_lose_source(self, proc_root: Path) -> None:
        (proc_root / "meminfo").write_text("MemTotal: 2000 kB\nMemFree: lots kB\nBuffers: 1 kB\n")
        engine = MetricsEngine(proc_root=proc_root, sampler=_sampler([]))
        snap = engine.tick()
        assert snap.mem.total == 2000
        assert "mem" not in snap.stale

    def test_history_bounded(self, proc_root: Path) -> None:
        engine = MetricsEngine(proc_root=proc_root, history_capacity=5, sampler=_sampler(*([[]] * 7)))
        for _ in range(7):
            snap = engine.tick()
        assert len(snap.cpu_history) == 5
        assert len(snap.tx_history) == 5

    def test_resize_history(self, proc_root: Path) -> None:
        engine = MetricsEngine(proc_root=proc_root, sampler=_sampler(*([[]] * 4)))
        for _ in range(4):
            engine.tick()
        engine.resize_history(2)
        assert len(engine.snapshot().mem_history) == 2


# ── EngineSnapshot ─────────────────────────────────────────────────────────


class TestEngineSnapshot:
    def test_is_read_only(self, proc_root: Path) -> None:
        engine = MetricsEngine(proc_root=proc_root, sampler=_sampler([]))
        snap = engine.tick()
        with pytest.raises(dataclasses.FrozenInstanceError):
            snap.tick = 5  # type: ignore[misc]
        with pytest.raises(TypeError):
            snap.cpu["cpu"] = None  # type: ignore[index]

    def test_not_affected_by_later_ticks(self, proc_root: Path) -> None:
        engine = MetricsEngine(proc_root=proc_root, sampler=_sampler([], []))
        first = engine.tick()
        _write_proc(proc_root, cpu=(150, 0, 0, 150))
        engine.tick()
        assert first.cpu_busy == 0.0
        assert first.cpu_history == (0.0,)

    def test_cpu_busy_without_aggregate(self) -> None:
        snap = MetricsEngine(sampler=_sampler()).snapshot()
        assert isinstance(snap, EngineSnapshot)
        assert snap.cpu_busy == 0.0


# ── from_config ────────────────────────────────────────────────────────────


class TestFromConfig:
    def test_defaults(self) -> None:
        engine = MetricsEngine.from_config(DEFAULT_CONFIG)
        assert engine.interval == 1.0
        assert engine.proc_root == Path("/proc")
        assert engine.cpu_history.capacity == 120
        assert engine.sampler.timeout == 2.0
        assert engine.sampler.command[0] == "ps"

    def test_overrides(self, tmp_path: Path) -> None:
        config = {
            "interval": 2,
            "proc_root": str(tmp_path),
            "process": {"command": ["ps", "aux"], "timeout": 0.5},
            "history": {"capacity": 30},
        }
        engine = MetricsEngine.from_config(config)
        assert engine.interval == 2.0
        assert engine.sampler.interval == 2.0
        assert engine.sampler.proc_root == tmp_path
        assert engine.sampler.command == ["ps", "aux"]
        assert engine.mem_history.capacity == 30


# ── TickSchedule ───────────────────────────────────────────────────────────


class TestTickSchedule:
    def test_on_time(self) -> None:
        now = [0.0]
        schedule = TickSchedule(1.0, clock=lambda: now[0])
        assert schedule.wait_time() == 0.0
        now[0] = 0.2
        assert schedule.advance() == 0
        assert schedule.wait_time() == pytest.approx(0.8)

    def test_overrun_skips_missed_ticks(self) -> None:
        now = [0.0]
        schedule = TickSchedule(1.0, clock=lambda: now[0])
        now[0] = 3.5
        assert schedule.advance() == 2
        assert schedule.wait_time() == pytest.approx(0.5)

