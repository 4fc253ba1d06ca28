"""Schedule builder -- turns operator schedule choices into stored fields.

Operators pick one of HOURLY, DAILY, WEEKLY or INTERVAL plus an
hour/minute/day config. This module maps that onto the stored
pattern/cron_expression/interval_minutes triple and computes the first
run time, and maps a stored definition back to its schedule type.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Literal

from pydantic import BaseModel, Field

from core.errors import InvalidRequestError
from core.models.schedule import RecurrencePattern, RecurringTaskDefinition
from scheduler.cron import parse_time_fields

ScheduleType = Literal["HOURLY", "DAILY", "WEEKLY", "INTERVAL"]

DEFAULT_INTERVAL_MINUTES = 60


class ScheduleConfig(BaseModel):
    hour: int = Field(default=0, ge=0, le=23)
    minute: int = Field(default=0, ge=0, le=59)
    # 0=Sunday .. 6=Saturday
    day: int = Field(default=1, ge=0, le=6)


class BuiltSchedule(BaseModel):
    pattern: RecurrencePattern
    cron_expression: str | None = None
    interval_minutes: int | None = None
    next_execution_at: datetime


def build_schedule(
    schedule_type: ScheduleType,
    config: ScheduleConfig | None = None,
    interval_minutes: int | None = None,
    now: datetime | None = None,
    tz: tzinfo = timezone.utc,
) -> BuiltSchedule:
    """Build the stored schedule fields and the first run time."""
    config = config or ScheduleConfig()
    now = now or datetime.now(timezone.utc)
    local_now = now.astimezone(tz)

    if schedule_type == "HOURLY":
        first = local_now.replace(minute=config.minute, second=0, microsecond=0).astimezone(timezone.utc)
        if first <= now:
            first += timedelta(hours=1)
        return BuiltSchedule(
            pattern=RecurrencePattern.CUSTOM,
            cron_expression=f"{config.minute} * * * *",
            next_execution_at=first,
        )

    if schedule_type == "DAILY":
        first = local_now.replace(hour=config.hour, minute=config.minute, second=0, microsecond=0)
        if first <= local_now:
            first = _wall_clock(first + timedelta(days=1), tz)
        return BuiltSchedule(
            pattern=RecurrencePattern.DAILY,
            cron_expression=f"{config.minute} {config.hour} * * *",
            next_execution_at=first.astimezone(timezone.utc),
        )

    if schedule_type == "WEEKLY":
        first = local_now.replace(hour=config.hour, minute=config.minute, second=0, microsecond=0)
        days_until = (config.day - local_now.isoweekday() % 7) % 7
        if days_until == 0 and first <= local_now:
            days_until = 7
        first = _wall_clock(first + timedelta(days=days_until), tz)
        return BuiltSchedule(
            pattern=RecurrencePattern.WEEKLY,
            cron_expression=f"{config.minute} {config.hour} * * {config.day}",
            next_execution_at=first.astimezone(timezone.utc),
        )

    if schedule_type == "INTERVAL":
        minutes = interval_minutes if interval_minutes is not None else DEFAULT_INTERVAL_MINUTES
        if minutes <= 0:
            raise InvalidRequestError("interval_minutes must be positive", {"interval_minutes": minutes})
        return BuiltSchedule(
            pattern=RecurrencePattern.CUSTOM,
            interval_minutes=minutes,
            next_execution_at=now + timedelta(minutes=minutes),
        )

    raise InvalidRequestError(f"Unknown schedule type: {schedule_type!r}")


def schedule_type_of(definition: RecurringTaskDefinition) -> str:
    """Best-effort operator schedule type for a stored definition."""
    if definition.pattern != RecurrencePattern.CUSTOM:
        return definition.pattern.value
    if definition.cron_expression:
        try:
            if parse_time_fields(definition.cron_expression).hour is None:
                return "HOURLY"
        except ValueError:
            pass
        return "DAILY"
    return "INTERVAL"


def _wall_clock(local: datetime, tz: tzinfo) -> datetime:
    return local.replace(tzinfo=None).replace(tzinfo=tz)
