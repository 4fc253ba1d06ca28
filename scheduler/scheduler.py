"""Scheduler -- computes when a recurring definition next fires.

compute_next_execution() is a pure function of the definition and the
clock. mark_executed() is the only place that advances a definition's
scheduling state after a run.
"""

from __future__ import annotations

import calendar
import logging
from datetime import datetime, timedelta, timezone, tzinfo

from core.data.recurring import RecurringTaskStore
from core.errors import ScheduleError
from core.models.schedule import RecurrencePattern, RecurringTaskDefinition
from core.time_context import TimeContext
from scheduler.cron import CronTime, parse_time_fields, weekday_matches

logger = logging.getLogger(__name__)


def add_month(dt: datetime) -> datetime:
    """Same day-of-month next month, clamped to the last day of that month."""
    year = dt.year + (1 if dt.month == 12 else 0)
    month = 1 if dt.month == 12 else dt.month + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


class Scheduler:
    """Next-run arithmetic plus the two-phase mark_executed update.

    Usage:
        scheduler = Scheduler(recurring_store, time_context, tz=ZoneInfo("America/Chicago"))
        for definition in scheduler.get_due_tasks():
            ...
            scheduler.mark_executed(definition.id)
    """

    def __init__(
        self,
        recurring_store: RecurringTaskStore,
        time_context: TimeContext,
        tz: tzinfo = timezone.utc,
        honor_day_of_week: bool = False,
    ) -> None:
        self._store = recurring_store
        self._time = time_context
        self._tz = tz
        self._honor_day_of_week = honor_day_of_week

    @property
    def tz(self) -> tzinfo:
        return self._tz

    @property
    def now(self) -> datetime:
        return self._time.current_time

    # ------------------------------------------------------------------
    # Computation
    # ------------------------------------------------------------------

    def compute_next_execution(self, definition: RecurringTaskDefinition) -> datetime:
        """Return the next fire time for a definition.

        Raises ScheduleError when the definition's schedule is unusable.
        """
        now = self._time.current_time
        anchor = definition.anchor

        if definition.pattern == RecurrencePattern.DAILY:
            return anchor + timedelta(days=1)

        if definition.pattern == RecurrencePattern.WEEKLY:
            return anchor + timedelta(days=7)

        if definition.pattern == RecurrencePattern.MONTHLY:
            local = anchor.astimezone(self._tz)
            return add_month(local).astimezone(timezone.utc)

        if definition.pattern == RecurrencePattern.CUSTOM:
            if definition.cron_expression:
                try:
                    cron = parse_time_fields(definition.cron_expression)
                except ValueError as exc:
                    raise ScheduleError(
                        f"Recurring task {definition.id} has a bad cron expression: {exc}",
                        {"recurring_task_id": definition.id, "cron": definition.cron_expression},
                    ) from exc
                return self._next_cron_time(cron, now)

            if definition.interval_minutes is not None:
                if definition.interval_minutes <= 0:
                    raise ScheduleError(
                        f"Recurring task {definition.id} has a non-positive interval",
                        {"recurring_task_id": definition.id, "interval_minutes": definition.interval_minutes},
                    )
                return now + timedelta(minutes=definition.interval_minutes)

            raise ScheduleError(
                f"Recurring task {definition.id} is CUSTOM but has neither a cron expression nor an interval",
                {"recurring_task_id": definition.id},
            )

        raise ScheduleError(
            f"Unknown recurrence pattern: {definition.pattern!r}",
            {"recurring_task_id": definition.id},
        )

    def _next_cron_time(self, cron: CronTime, now: datetime) -> datetime:
        local_now = now.astimezone(self._tz)
        honor_dow = self._honor_day_of_week and cron.day_of_week != "*"

        if cron.hour is None:
            # Hour steps are taken in UTC so DST transitions do not skip or repeat a run
            candidate = local_now.replace(minute=cron.minute, second=0, microsecond=0).astimezone(timezone.utc)
            if candidate <= now:
                candidate += timedelta(hours=1)
            local = candidate.astimezone(self._tz)
            if honor_dow and not weekday_matches(cron.day_of_week, local):
                local = self._next_matching_day(
                    cron, self._localize(local.replace(hour=0) + timedelta(days=1))
                )
            return local.astimezone(timezone.utc)

        candidate = local_now.replace(hour=cron.hour, minute=cron.minute, second=0, microsecond=0)
        if candidate <= local_now:
            candidate = self._localize(candidate + timedelta(days=1))
        if honor_dow:
            candidate = self._next_matching_day(cron, candidate)
        return candidate.astimezone(timezone.utc)

    def _next_matching_day(self, cron: CronTime, candidate: datetime) -> datetime:
        for _ in range(7):
            if weekday_matches(cron.day_of_week, candidate):
                return candidate
            candidate = self._localize(candidate + timedelta(days=1))
        raise ScheduleError(f"Day-of-week field never matches: {cron.day_of_week!r}")

    def _localize(self, local: datetime) -> datetime:
        """Re-resolve the UTC offset after wall-clock arithmetic across DST."""
        return local.replace(tzinfo=None).replace(tzinfo=self._tz)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def mark_executed(self, recurring_id: str) -> RecurringTaskDefinition:
        """Record a run at 'now', then advance next_execution_at from it.

        last_executed_at is committed first so the recompute reads the new
        anchor.
        """
        now = self._time.current_time
        self._store.update(recurring_id, last_executed_at=now)

        refreshed = self._store.get(recurring_id)
        next_at = self.compute_next_execution(refreshed)
        updated = self._store.update(recurring_id, next_execution_at=next_at)
        logger.info(
            "Recurring task %s executed at %s, next run %s",
            recurring_id,
            now.isoformat(),
            next_at.isoformat(),
        )
        return updated

    def update_next_execution(self, recurring_id: str) -> RecurringTaskDefinition:
        """Recompute next_execution_at without recording a run."""
        definition = self._store.get(recurring_id)
        next_at = self.compute_next_execution(definition)
        return self._store.update(recurring_id, next_execution_at=next_at)

    def get_due_tasks(self) -> list[RecurringTaskDefinition]:
        return self._store.find_due(self._time.current_time)
