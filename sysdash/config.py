"""Configuration loading for sysdash.

Loads settings from TOML config files with sensible defaults.
Search order: explicit --config path → ~/.config/sysdash/config.toml → defaults only.
"""

from __future__ import annotations

import sys
import tomllib
from pathlib import Path
from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {
    "interval": 1.0,
    "proc_root": "/proc",
    "log_file": "",
    "log_level": "WARNING",
    "process": {
        "command": ["ps", "-e", "-opid,%cpu,%mem,user,comm", "--sort=-pcpu"],
        "timeout": 2.0,
    },
    "history": {
        "capacity": 120,
        "margin": 2,
    },
}

_DEFAULT_PATH = Path.home() / ".config" / "sysdash" / "config.toml"


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Merge overlay into base. Nested dicts are merged at the first level only."""
    merged = dict(base)
    for key, value in overlay.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def _problem(config: dict[str, Any]) -> str | None:
    """Describe the first setting the engine can't run with, if any."""
    interval = config.get("interval")
    if isinstance(interval, bool) or not isinstance(interval, int | float) or interval <= 0:
        return f"interval must be a positive number, got {interval!r}"

    process = config.get("process")
    if not isinstance(process, dict):
        return "[process] must be a table"
    command = process.get("command")
    if not isinstance(command, list) or not command or not all(isinstance(a, str) and a for a in command):
        return f"process.command must be a non-empty list of strings, got {command!r}"
    timeout = process.get("timeout")
    if isinstance(timeout, bool) or not isinstance(timeout, int | float) or timeout <= 0:
        return f"process.timeout must be a positive number, got {timeout!r}"

    history = config.get("history")
    if not isinstance(history, dict):
        return "[history] must be a table"
    for key in ("capacity", "margin"):
        value = history.get(key)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            return f"history.{key} must be a non-negative integer, got {value!r}"
    return None


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration, merging user TOML over defaults.

    Args:
        path: Explicit config file path (from --config). If None, tries the
              default location ~/.config/sysdash/config.toml.

    Returns:
        Merged configuration dict.

    Raises:
        SystemExit: If an explicit path doesn't exist or can't be parsed,
            or holds a value the engine can't run with.
    """
    if path is not None:
        if not path.is_file():
            print(f"sysdash: config file not found: {path}", file=sys.stderr)
            raise SystemExit(1)
        try:
            user_config = tomllib.loads(path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as e:
            print(f"sysdash: invalid TOML in {path}: {e}", file=sys.stderr)
            raise SystemExit(1) from e
        merged = _deep_merge(DEFAULT_CONFIG, user_config)
        problem = _problem(merged)
        if problem:
            print(f"sysdash: {path}: {problem}", file=sys.stderr)
            raise SystemExit(1)
        return merged

    # Try default location silently
    if _DEFAULT_PATH.is_file():
        try:
            user_config = tomllib.loads(_DEFAULT_PATH.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError:
            print(
                f"sysdash: warning: ignoring invalid TOML in {_DEFAULT_PATH}",
                file=sys.stderr,
            )
        else:
            merged = _deep_merge(DEFAULT_CONFIG, user_config)
            problem = _problem(merged)
            if not problem:
                return merged
            print(f"sysdash: warning: ignoring {_DEFAULT_PATH}: {problem}", file=sys.stderr)

    return dict(DEFAULT_CONFIG)


def _toml_value(value: Any) -> str:
    if isinstance(value, str):
        return f'"{value}"'
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(v) for v in value) + "]"
    return str(value)


def dump_default_config() -> str:
    """Return the default configuration as a TOML string."""
    lines = [
        "# sysdash configuration",
        "# Place this file at ~/.config/sysdash/config.toml",
        "",
    ]
    tables: list[tuple[str, dict[str, Any]]] = []
    for key, value in DEFAULT_CONFIG.items():
        if isinstance(value, dict):
            tables.append((key, value))
        else:
            lines.append(f"{key} = {_toml_value(value)}")
    lines.append("")

    for name, table in tables:
        lines.append(f"[{name}]")
        for key, value in table.items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")

    return "\n".join(lines) + "\n"
