"""Tests for sysdash.cpu."""

from __future__ import annotations

import pytest

from sysdash.cpu import CpuSeries, CpuUtilization, utilization
from sysdash.parsers import CpuCounters


def _c(user: int, nice: int, system: int, idle: int) -> CpuCounters:
    return CpuCounters(user=user, nice=nice, system=system, idle=idle)


# ── utilization ────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "delta",
    [
        _c(1, 1, 1, 1),
        _c(3, 0, 7, 11),
        _c(12345, 17, 999, 1),
        _c(0, 0, 0, 5),
    ],
)
def test_percentages_sum_to_100(delta: CpuCounters) -> None:
    util = utilization(delta)
    assert util is not None
    assert util.user + util.nice + util.system + util.idle == pytest.approx(100.0, abs=0.01)


def test_zero_delta_has_no_utilization() -> None:
    assert utilization(_c(0, 0, 0, 0)) is None


def test_busy_excludes_idle() -> None:
    assert CpuUtilization(user=10, nice=5, system=15, idle=70).busy == pytest.approx(30.0)


# ── CpuSeries ──────────────────────────────────────────────────────────────


class TestCpuSeries:
    def test_first_tick_reports_zero(self) -> None:
        series = CpuSeries()
        assert not series.initialized
        series.tick({"cpu": _c(100, 0, 0, 100), "cpu0": _c(50, 0, 0, 50)})
        assert series.initialized
        assert series.latest == {"cpu": CpuUtilization(), "cpu0": CpuUtilization()}
        assert series.busy() == 0.0

    def test_half_busy(self) -> None:
        series = CpuSeries()
        series.tick({"cpu": _c(100, 0, 0, 100)})
        series.tick({"cpu": _c(150, 0, 0, 150)})
        assert series.latest["cpu"] == CpuUtilization(user=50.0, nice=0.0, system=0.0, idle=50.0)
        assert series.busy("cpu") == pytest.approx(50.0)

    def test_zero_delta_keeps_prior_percentages(self) -> None:
        series = CpuSeries()
        series.tick({"cpu": _c(100, 0, 0, 100)})
        series.tick({"cpu": _c(130, 0, 10, 160)})
        before = series.latest["cpu"]
        series.tick({"cpu": _c(130, 0, 10, 160)})
        assert series.latest["cpu"] == before

    def test_negative_delta_skips_label(self) -> None:
        series = CpuSeries()
        series.tick({"cpu": _c(100, 0, 0, 100), "cpu0": _c(10, 0, 0, 10)})
        series.tick({"cpu": _c(150, 0, 0, 150), "cpu0": _c(20, 0, 0, 20)})

        skipped = series.tick({"cpu": _c(140, 0, 0, 200), "cpu0": _c(30, 0, 0, 20)})

        assert [e.key for e in skipped] == ["cpu.user"]
        assert series.latest["cpu"].user == pytest.approx(50.0)
        # cpu0 is unaffected and still updates
        assert series.latest["cpu0"].user == pytest.approx(100.0)

    def test_recovers_after_counter_reset(self) -> None:
        series = CpuSeries()
        series.tick({"cpu": _c(1000, 0, 0, 1000)})
        series.tick({"cpu": _c(1500, 0, 0, 1500)})

        # counters reset: this tick is skipped, the reset reading is the new baseline
        skipped = series.tick({"cpu": _c(10, 0, 0, 10)})
        assert [e.key for e in skipped] == ["cpu.user"]
        assert series.latest["cpu"].user == pytest.approx(50.0)

        series.tick({"cpu": _c(100, 0, 0, 20)})
        assert series.latest["cpu"].user == pytest.approx(90.0)
        assert series.latest["cpu"].idle == pytest.approx(10.0)

    def test_new_label_adopted(self) -> None:
        series = CpuSeries()
        series.tick({"cpu": _c(0, 0, 0, 0)})
        series.tick({"cpu": _c(10, 0, 0, 10), "cpu1": _c(5, 5, 5, 5)})
        assert series.latest["cpu1"] == CpuUtilization()
        series.tick({"cpu": _c(20, 0, 0, 20), "cpu1": _c(5, 5, 15, 5)})
        assert series.latest["cpu1"].system == pytest.approx(100.0)
        assert "cpu1" in series.labels

    def test_missing_label_retained(self) -> None:
        series = CpuSeries()
        series.tick({"cpu": _c(0, 0, 0, 0), "cpu3": _c(0, 0, 0, 0)})
        series.tick({"cpu": _c(10, 0, 0, 10), "cpu3": _c(10, 0, 0, 30)})
        series.tick({"cpu": _c(20, 0, 0, 20)})
        assert series.latest["cpu3"].user == pytest.approx(25.0)
        assert "cpu3" in series.labels
