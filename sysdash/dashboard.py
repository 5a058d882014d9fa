"""Interactive terminal dashboard for sysdash.

Draws CPU, memory and network gauges with scrolling sparklines and a process
table using curses. All numbers come from :class:`~sysdash.engine.MetricsEngine`
snapshots; this module only lays them out.

Usage:
    sysdash
    sysdash --interval 2 --config path/to/config.toml
    sysdash --once
"""

from __future__ import annotations

import argparse
import curses
import logging
import sys
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from sysdash.config import dump_default_config, load_config
from sysdash.engine import EngineSnapshot, MetricsEngine, TickSchedule
from sysdash.history import format_rate
from sysdash.procs import ProcessSample

logger = logging.getLogger(__name__)

# ── Constants ──────────────────────────────────────────────────────────────

SPARK = " ▁▂▃▄▅▆▇█"
BAR_FILL = "█"
BAR_EMPTY = "░"

WARN_PERCENT = 80.0
CRIT_PERCENT = 95.0

# Curses colour-pair IDs
C_NORMAL = 1
C_WARNING = 2
C_CRITICAL = 3
C_TITLE = 4
C_DIM = 5
C_BLUE = 6
C_RED = 7


# ── Colour helpers ─────────────────────────────────────────────────────────


def _init_colors() -> None:
    curses.start_color()
    curses.use_default_colors()
    curses.init_pair(C_NORMAL, curses.COLOR_GREEN, -1)
    curses.init_pair(C_WARNING, curses.COLOR_YELLOW, -1)
    curses.init_pair(C_CRITICAL, curses.COLOR_RED, -1)
    curses.init_pair(C_TITLE, curses.COLOR_CYAN, -1)
    curses.init_pair(C_DIM, curses.COLOR_WHITE, -1)
    curses.init_pair(C_BLUE, curses.COLOR_BLUE, -1)
    curses.init_pair(C_RED, curses.COLOR_RED, -1)


def _severity_color(value: float, warn: float = WARN_PERCENT, crit: float = CRIT_PERCENT) -> int:
    if value >= crit:
        return C_CRITICAL
    if value >= warn:
        return C_WARNING
    return C_NORMAL


# ── Formatting helpers ─────────────────────────────────────────────────────


def fmt_kb(kb: int) -> str:
    """Human-readable size from a kB count (binary prefixes)."""
    v = float(kb)
    for unit in ("KiB", "MiB", "GiB"):
        if abs(v) < 1024:
            return f"{v:.1f} {unit}"
        v /= 1024
    return f"{v:.1f} TiB"


def fmt_disk_io(proc: ProcessSample) -> str:
    """``r: <rate> w: <rate>`` for the process table, ``-`` without a rate."""
    if proc.read_rate is None or proc.write_rate is None:
        return "-"
    return f"r: {format_rate(proc.read_rate)} w: {format_rate(proc.write_rate)}"


def sparkline(values: Sequence[float], width: int, max_val: float | None = None) -> str:
    """Render newest-first *values* as a left-to-right (oldest→newest) sparkline."""
    if width < 1 or not values:
        return ""
    window = list(values[:width])[::-1]
    top = max_val if max_val is not None else max(window)
    if top <= 0:
        return SPARK[0] * len(window)
    chars: list[str] = []
    for v in window:
        idx = int(min(v / top, 1.0) * (len(SPARK) - 1))
        chars.append(SPARK[max(0, min(idx, len(SPARK) - 1))])
    return "".join(chars)


def _core_sort_key(label: str) -> tuple[int, int]:
    suffix = label[3:]
    return (1, int(suffix)) if suffix.isdigit() else (0, 0)


# ── Curses drawing primitives ──────────────────────────────────────────────


def _safe(win: curses.window, *args: Any) -> None:
    """addstr wrapper that swallows out-of-bounds errors."""
    try:
        win.addstr(*args)
    except curses.error:
        pass


def _draw_box(
    win: curses.window,
    y: int,
    x: int,
    h: int,
    w: int,
    title: str = "",
) -> curses.window | None:
    """Draw a bordered box and return the inner sub-window."""
    max_y, max_x = win.getmaxyx()
    h = min(h, max_y - y)
    w = min(w, max_x - x)
    if h < 3 or w < 4:
        return None
    try:
        sub = win.subwin(h, w, y, x)
        sub.box()
        if title and len(title) + 4 < w:
            sub.addstr(0, 2, f" {title} ", curses.color_pair(C_TITLE) | curses.A_BOLD)
        return sub
    except curses.error:
        return None


def _draw_bar(
    win: curses.window,
    y: int,
    x: int,
    width: int,
    pct: float,
    label: str = "",
    color: int = C_NORMAL,
) -> None:
    """Render ``label ████░░░░ 42.0%`` on one line."""
    max_y, max_x = win.getmaxyx()
    if y >= max_y - 1 or x >= max_x - 1:
        return

    cx = x
    if label:
        _safe(win, y, cx, f"{label:>6s} ", curses.color_pair(C_DIM))
        cx += 7

    suffix = f" {pct:5.1f}%"
    bar_w = min(width - (cx - x) - len(suffix), max_x - cx - len(suffix) - 1)
    if bar_w < 3:
        return

    filled = int(bar_w * min(pct, 100.0) / 100.0)
    _safe(win, y, cx, BAR_FILL * filled, curses.color_pair(color) | curses.A_BOLD)
    _safe(win, BAR_EMPTY * (bar_w - filled), curses.color_pair(C_DIM))
    _safe(win, suffix, curses.color_pair(color) | curses.A_BOLD)


def _draw_sparkline(
    win: curses.window,
    y: int,
    x: int,
    width: int,
    history: Sequence[float],
    max_val: float | None = 100.0,
    color: int = C_BLUE,
) -> None:
    max_y, max_x = win.getmaxyx()
    if y >= max_y - 1 or x >= max_x - 1:
        return
    line = sparkline(history, min(width, max_x - x - 1), max_val)
    if line:
        _safe(win, y, x, line, curses.color_pair(color))


# ── Panel renderers ────────────────────────────────────────────────────────


def draw_cpu_panel(win: curses.window, y: int, x: int, w: int, h: int, snap: EngineSnapshot) -> None:
    title = "CPU (stale)" if "cpu" in snap.stale else "CPU"
    box = _draw_box(win, y, x, h, w, title)
    if not box:
        return
    row = 1

    _draw_bar(box, row, 1, w - 3, snap.cpu_busy, "Total", _severity_color(snap.cpu_busy))
    row += 1

    cores = sorted((label for label in snap.cpu if label != "cpu"), key=_core_sort_key)
    max_cores = max(0, min(len(cores), h - 5))
    for label in cores[:max_cores]:
        busy = snap.cpu[label].busy
        _draw_bar(box, row, 1, w - 3, busy, f"#{label[3:]}", _severity_color(busy))
        row += 1
    if len(cores) > max_cores:
        _safe(box, row, 2, f"... +{len(cores) - max_cores} cores", curses.color_pair(C_DIM))
        row += 1

    row = max(row, h - 2)
    _draw_sparkline(box, row, 2, w - 4, snap.cpu_history, 100.0, C_TITLE)


def draw_mem_panel(win: curses.window, y: int, x: int, w: int, h: int, snap: EngineSnapshot) -> None:
    title = "Memory (stale)" if "mem" in snap.stale else "Memory"
    box = _draw_box(win, y, x, h, w, title)
    if not box:
        return
    pct = float(snap.mem.used_percent)
    _draw_bar(box, 1, 1, w - 3, pct, "Used", _severity_color(pct))
    used = snap.mem.total - snap.mem.free
    detail = f"       {fmt_kb(used)} / {fmt_kb(snap.mem.total)}"
    _safe(box, 2, 1, detail[: w - 3], curses.color_pair(C_DIM))
    _draw_sparkline(box, max(4, h - 2), 2, w - 4, snap.mem_history, 100.0, C_NORMAL)


def draw_net_panel(win: curses.window, y: int, x: int, w: int, h: int, snap: EngineSnapshot) -> None:
    title = "Network (stale)" if "net" in snap.stale else "Network"
    box = _draw_box(win, y, x, h, w, title)
    if not box:
        return
    row = 1
    _safe(box, row, 2, "Rx ", curses.color_pair(C_DIM))
    _safe(box, format_rate(snap.net_rx_rate), curses.color_pair(C_BLUE) | curses.A_BOLD)
    row += 1
    _draw_sparkline(box, row, 2, w - 4, snap.rx_history, None, C_BLUE)
    row += 2
    _safe(box, row, 2, "Tx ", curses.color_pair(C_DIM))
    _safe(box, format_rate(snap.net_tx_rate), curses.color_pair(C_RED) | curses.A_BOLD)
    row += 1
    _draw_sparkline(box, row, 2, w - 4, snap.tx_history, None, C_RED)


def draw_proc_panel(win: curses.window, y: int, x: int, w: int, h: int, snap: EngineSnapshot) -> None:
    title = "Processes (stale)" if "processes" in snap.stale else "Processes"
    box = _draw_box(win, y, x, h, w, title)
    if not box:
        return
    row = 1

    hdr = f" {'PID':>7s}  {'USER':<10s}  {'%CPU':>5s}  {'%MEM':>5s}  {'DISK I/O':<28s}  COMMAND"
    _safe(box, row, 1, hdr[: w - 3], curses.color_pair(C_TITLE) | curses.A_BOLD)
    row += 1

    procs = sorted(snap.processes, key=lambda p: p.cpu_percent, reverse=True)
    for p in procs[: max(0, h - 3)]:
        line = (
            f" {p.pid:>7d}  {p.user[:10]:<10s}  {p.cpu_percent:>5.1f}  {p.mem_percent:>5.1f}"
            f"  {fmt_disk_io(p):<28s}  {p.command}"
        )
        color = C_NORMAL
        if p.cpu_percent >= 50:
            color = C_CRITICAL
        elif p.cpu_percent >= 20:
            color = C_WARNING
        _safe(box, row, 1, line[: w - 3], curses.color_pair(color))
        row += 1


# ── Header ─────────────────────────────────────────────────────────────────


def _draw_header(win: curses.window, w: int, snap: EngineSnapshot) -> None:
    ts = time.strftime("%H:%M:%S")
    attr = curses.color_pair(C_TITLE) | curses.A_REVERSE
    _safe(win, 0, 0, " " * (w - 1), attr)
    _safe(win, 0, 1, "sysdash", attr | curses.A_BOLD)
    hint = f"tick {snap.tick}  q: quit"
    _safe(win, 0, max(0, w - len(hint) - 2), hint, attr)
    _safe(win, 0, (w - len(ts)) // 2, ts, attr)


def _draw(stdscr: curses.window, engine: MetricsEngine, snap: EngineSnapshot, margin: int) -> None:
    max_y, max_x = stdscr.getmaxyx()
    stdscr.erase()

    if max_y < 12 or max_x < 40:
        _safe(stdscr, 0, 0, "Terminal too small (need 40x12+)")
        stdscr.refresh()
        return

    _draw_header(stdscr, max_x, snap)

    col_w = max_x // 3
    chart_h = min(14, max(8, max_y // 2))

    draw_cpu_panel(stdscr, 1, 0, col_w, chart_h, snap)
    draw_mem_panel(stdscr, 1, col_w, col_w, chart_h, snap)
    draw_net_panel(stdscr, 1, 2 * col_w, max_x - 2 * col_w, chart_h, snap)

    proc_y = 1 + chart_h
    if max_y - proc_y >= 4:
        draw_proc_panel(stdscr, proc_y, 0, max_x, max_y - proc_y, snap)

    stdscr.refresh()
    # charts keep one sample per column of the narrowest panel
    engine.resize_history(col_w - 4 - margin)


# ── Main loop ──────────────────────────────────────────────────────────────


def _dashboard_loop(stdscr: curses.window, engine: MetricsEngine, margin: int) -> None:
    _init_colors()
    curses.curs_set(0)

    schedule = TickSchedule(engine.interval)
    while True:
        snap = engine.tick()
        schedule.advance()
        _draw(stdscr, engine, snap, margin)

        # Handle keys until the next tick is due
        while True:
            stdscr.timeout(max(1, int(schedule.wait_time() * 1000)))
            key = stdscr.getch()
            if key in (ord("q"), ord("Q")):
                return
            if key == curses.KEY_RESIZE:
                stdscr.clear()
                _draw(stdscr, engine, snap, margin)
            if schedule.wait_time() <= 0:
                break


# ── One-shot text output ───────────────────────────────────────────────────


def print_snapshot(snap: EngineSnapshot, top: int = 10) -> None:
    """Print a plain-text summary of one snapshot."""
    ts = time.strftime("%H:%M:%S")
    lines = [f"── sysdash [{ts}] ──"]

    lines.append(f"  {'CPU':12s}  {snap.cpu_busy:.1f}%")
    for label in sorted((lb for lb in snap.cpu if lb != "cpu"), key=_core_sort_key):
        util = snap.cpu[label]
        lines.append(
            f"    {label:8s}  user {util.user:5.1f}%  nice {util.nice:5.1f}%"
            f"  sys {util.system:5.1f}%  idle {util.idle:5.1f}%"
        )
    lines.append(
        f"  {'Memory':12s}  {snap.mem.used_percent}%  "
        f"({fmt_kb(snap.mem.total - snap.mem.free)} / {fmt_kb(snap.mem.total)})"
    )
    lines.append(f"  {'Net Rx':12s}  {format_rate(snap.net_rx_rate)}")
    lines.append(f"  {'Net Tx':12s}  {format_rate(snap.net_tx_rate)}")
    if snap.stale:
        lines.append(f"  {'Stale':12s}  {', '.join(sorted(snap.stale))}")

    procs = sorted(snap.processes, key=lambda p: p.cpu_percent, reverse=True)[:top]
    if procs:
        lines.append(f"  {'PID':>7s}  {'USER':<10s}  {'%CPU':>5s}  {'%MEM':>5s}  {'DISK I/O':<28s}  COMMAND")
        for p in procs:
            lines.append(
                f"  {p.pid:>7d}  {p.user[:10]:<10s}  {p.cpu_percent:>5.1f}  {p.mem_percent:>5.1f}"
                f"  {fmt_disk_io(p):<28s}  {p.command}"
            )

    print("\n".join(lines))


# ── CLI entry point ────────────────────────────────────────────────────────


def _setup_logging(log_file: str, level: str, to_stderr: bool) -> None:
    """Log to *log_file*, to stderr in one-shot mode, or nowhere (curses owns the screen)."""
    handler: logging.Handler
    if log_file:
        handler = logging.FileHandler(log_file, encoding="utf-8")
    elif to_stderr:
        handler = logging.StreamHandler(sys.stderr)
    else:
        handler = logging.NullHandler()
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[handler],
        force=True,
    )


def main(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Terminal dashboard for CPU, memory, network and processes.",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between samples (default: 1.0, or the config value)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help="Path to TOML config file",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        metavar="PATH",
        help="Write log messages to this file",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Take two samples one interval apart, print them and exit",
    )
    parser.add_argument(
        "--dump-config",
        action="store_true",
        help="Print the default configuration as TOML and exit",
    )
    args = parser.parse_args(argv)

    if args.dump_config:
        print(dump_default_config(), end="")
        return

    config = load_config(args.config)
    if args.interval is not None:
        config["interval"] = max(0.1, args.interval)
    log_file = args.log_file if args.log_file is not None else str(config.get("log_file", ""))
    _setup_logging(log_file, str(config.get("log_level", "WARNING")), to_stderr=args.once)

    engine = MetricsEngine.from_config(config)
    margin = int(config.get("history", {}).get("margin", 2))

    if args.once:
        engine.tick()
        time.sleep(engine.interval)
        print_snapshot(engine.tick())
        return

    try:
        curses.wrapper(_dashboard_loop, engine, margin)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
