"""Error taxonomy for the sampling engine.

None of these are fatal: the engine absorbs them, logs, and keeps the last
good snapshot for the affected source.
"""

from __future__ import annotations


class SysdashError(Exception):
    """Base class for every error raised by the sampling engine."""


class SourceUnavailable(SysdashError):
    """A counter file or the process-listing command could not be read."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class ParseError(SysdashError):
    """One malformed line. Only that line's contribution is dropped."""

    def __init__(self, message: str, line: str = "", lineno: int = 0) -> None:
        super().__init__(message)
        self.line = line
        self.lineno = lineno

    def __str__(self) -> str:
        if self.lineno:
            return f"line {self.lineno}: {self.args[0]} ({self.line!r})"
        return str(self.args[0])


class NoProcessData(SysdashError):
    """The process listing produced no usable rows."""


class TransientNegativeDelta(SysdashError):
    """A cumulative counter went backwards between two ticks."""

    def __init__(self, key: str, previous: int, current: int) -> None:
        super().__init__(f"{key}: counter went from {previous} to {current}")
        self.key = key
        self.previous = previous
        self.current = current
