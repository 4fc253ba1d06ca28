"""Duration parsing for config values like heartbeat_interval and timeout."""

from __future__ import annotations

import re
from datetime import timedelta

_DURATION_RE = re.compile(r"^\s*(\d+)\s*(ms|s|m|h|d)\s*$", re.IGNORECASE)
_UNIT_MS = {
    "ms": 1,
    "s": 1000,
    "m": 60_000,
    "h": 3_600_000,
    "d": 86_400_000,
}


def parse_duration(value: str | int | float) -> timedelta:
    """Parse compact duration strings like '500ms', '60s', '10m', '7d'.

    Bare numbers are read as seconds.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if value < 0:
            raise ValueError(f"Invalid duration: {value!r}. Must not be negative.")
        return timedelta(seconds=value)

    match = _DURATION_RE.match(str(value or ""))
    if not match:
        raise ValueError(f"Invalid duration: {value!r}. Expected '<int><ms|s|m|h|d>'.")

    amount = int(match.group(1))
    unit = match.group(2).lower()
    return timedelta(milliseconds=amount * _UNIT_MS[unit])


def duration_seconds(value: str | int | float) -> float:
    return parse_duration(value).total_seconds()
