"""Utility functions for formatting and parsing."""

import math
import re
import shlex

__all__ = [
    "format_command",
    "format_time",
    "parse_duration",
]


# (upper bound, major unit, minor unit, suffixes)
_TIME_UNITS = (
    (3600, 60, 1, ("m", "s")),
    (172800, 3600, 60, ("h", "m")),
    (math.inf, 86400, 3600, ("d", "h")),
)


def format_time(seconds: float) -> str:
    """Compact duration such as 250ms, 42s, 2m30s, 5h or 2d7h.

    Units are truncated, a zero minor unit is left out, and negative values
    (an overdue estimate) render as ``--``.
    """
    if seconds < 0:
        return "--"
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 120:
        return f"{int(seconds)}s"
    for limit, major, minor, (big, small) in _TIME_UNITS:
        if seconds < limit:
            break
    high, rest = divmod(int(seconds), major)
    low = rest // minor
    return f"{high}{big}{low}{small}" if low else f"{high}{big}"


_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(text: str | None) -> float | None:
    """Parse a duration string into seconds.

    Supports plain numbers (seconds) and the suffixes ms, s, m and h,
    e.g. 500ms, 2s, 1.5m, 1h. Case insensitive.
    """
    if text is None:
        return None
    s = text.strip().lower().replace("_", "")
    m = re.match(r"^(\d+(?:\.\d+)?|\.\d+)\s*(ms|s|m|h)?$", s)
    if not m:
        raise ValueError(f"Invalid duration: {text}")
    num, unit = m.groups()
    return float(num) * _DURATION_UNITS[unit or "s"]


def format_command(argv: list[str]) -> str:
    """Shell-quoted display form of a command line."""
    return shlex.join(argv)
