"""Minimal cron expression support. No external dependencies.

Expressions are standard 5-field cron: minute hour day_of_month month day_of_week

Recurring definitions only use the restricted form "M H * * DOW", where
H may be "*" for hourly schedules. The field matcher below handles the
day-of-week field.

Examples:
    "30 9 * * *"     -> 09:30 every day
    "0 8 * * 1"      -> 08:00 on Mondays
    "15 * * * *"     -> quarter past every hour
"""

from __future__ import annotations

from datetime import datetime
from typing import NamedTuple


class CronTime(NamedTuple):
    minute: int
    hour: int | None  # None means every hour
    day_of_week: str  # raw field, "*" when unrestricted


def split_fields(expression: str) -> list[str]:
    parts = (expression or "").strip().split()
    if len(parts) != 5:
        raise ValueError(f"Invalid cron expression (need 5 fields): {expression!r}")
    return parts


def parse_time_fields(expression: str) -> CronTime:
    """Extract the fixed minute/hour and the day-of-week field.

    Raises ValueError for anything other than an integer minute and an
    integer (or '*') hour.
    """
    minute_field, hour_field, _dom, _month, dow_field = split_fields(expression)

    try:
        minute = int(minute_field)
    except ValueError:
        raise ValueError(f"Invalid cron minute: {minute_field!r}")
    if not 0 <= minute <= 59:
        raise ValueError(f"Cron minute out of range: {minute}")

    hour: int | None = None
    if hour_field != "*":
        try:
            hour = int(hour_field)
        except ValueError:
            raise ValueError(f"Invalid cron hour: {hour_field!r}")
        if not 0 <= hour <= 23:
            raise ValueError(f"Cron hour out of range: {hour}")

    if dow_field != "*":
        # Validate eagerly so a bad field fails at compute time
        _field_matches(dow_field, 0, 0, 6)

    return CronTime(minute=minute, hour=hour, day_of_week=dow_field)


def weekday_matches(dow_field: str, dt: datetime) -> bool:
    """True if dt falls on a day allowed by a day-of-week field (0=Sun)."""
    return _field_matches(dow_field, dt.isoweekday() % 7, 0, 6)


def _field_matches(field: str, value: int, min_val: int, max_val: int) -> bool:
    """Check if a single cron field matches a value.

    Supports: *, */N, N, N-M, N,M,O
    """
    if field == "*":
        return True

    if field.startswith("*/"):
        try:
            step = int(field[2:])
        except ValueError:
            raise ValueError(f"Invalid cron step: {field!r}")
        if step <= 0:
            raise ValueError(f"Invalid cron step: {field!r}")
        return value % step == 0

    if "," in field:
        return any(_field_matches(part.strip(), value, min_val, max_val) for part in field.split(","))

    if "-" in field:
        try:
            start, end = (int(p) for p in field.split("-", 1))
        except ValueError:
            raise ValueError(f"Invalid cron range: {field!r}")
        if start < min_val or end > max_val:
            raise ValueError(f"Cron range out of bounds: {field!r}")
        return start <= value <= end

    try:
        exact = int(field)
    except ValueError:
        raise ValueError(f"Invalid cron field: {field!r}")
    if not min_val <= exact <= max_val:
        raise ValueError(f"Cron value out of range: {field!r}")
    return value == exact
