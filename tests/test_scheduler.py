# tests/test_scheduler.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from core.errors import ScheduleError
from core.models.schedule import RecurrencePattern, RecurringTaskDefinition
from scheduler.scheduler import Scheduler, add_month

from .conftest import T0


def _definition(**kwargs) -> RecurringTaskDefinition:
    kwargs.setdefault("brain_id", "alpha")
    kwargs.setdefault("title", "Check inbox")
    kwargs.setdefault("created_at", T0)
    return RecurringTaskDefinition(**kwargs)


# ---- fixed periods ----

@pytest.mark.parametrize("pattern, period", [
    (RecurrencePattern.DAILY, timedelta(days=1)),
    (RecurrencePattern.WEEKLY, timedelta(days=7)),
])
def test_fixed_period_advances_exactly_one_period_per_fire(
    scheduler, recurring_store, clock, pattern, period
):
    d = recurring_store.create(_definition(pattern=pattern))
    assert scheduler.compute_next_execution(d) == T0 + period

    # First fire, a little late
    clock.advance(period + timedelta(minutes=3))
    first = scheduler.mark_executed(d.id)
    assert first.next_execution_at - first.last_executed_at == period

    # Second fire, on time
    clock.advance_to(first.next_execution_at)
    second = scheduler.mark_executed(d.id)
    assert second.last_executed_at == first.next_execution_at
    assert second.next_execution_at - second.last_executed_at == period


def test_monthly_uses_calendar_months_and_clamps(clock):
    s = Scheduler(recurring_store=None, time_context=clock, tz=timezone.utc)
    d = _definition(pattern=RecurrencePattern.MONTHLY, created_at=datetime(2025, 1, 31, 10, 0, tzinfo=timezone.utc))
    assert s.compute_next_execution(d) == datetime(2025, 2, 28, 10, 0, tzinfo=timezone.utc)

    d = _definition(pattern=RecurrencePattern.MONTHLY, last_executed_at=datetime(2025, 12, 15, 8, 0, tzinfo=timezone.utc))
    assert s.compute_next_execution(d) == datetime(2026, 1, 15, 8, 0, tzinfo=timezone.utc)


def test_add_month_handles_leap_years():
    assert add_month(datetime(2024, 1, 31)) == datetime(2024, 2, 29)
    assert add_month(datetime(2024, 3, 31)) == datetime(2024, 4, 30)


# ---- CUSTOM cron ----

def test_cron_before_target_fires_today(scheduler):
    d = _definition(pattern=RecurrencePattern.CUSTOM, cron_expression="30 15 * * *")
    assert scheduler.compute_next_execution(d) == T0.replace(hour=15, minute=30)


def test_cron_after_target_fires_tomorrow(scheduler):
    d = _definition(pattern=RecurrencePattern.CUSTOM, cron_expression="0 9 * * *")
    assert scheduler.compute_next_execution(d) == T0.replace(hour=9) + timedelta(days=1)


def test_cron_exactly_at_target_rolls_to_tomorrow(scheduler):
    d = _definition(pattern=RecurrencePattern.CUSTOM, cron_expression="0 14 * * *")
    assert scheduler.compute_next_execution(d) == T0 + timedelta(days=1)


def test_cron_uses_scheduler_timezone(recurring_store, clock):
    # T0 is 09:00 in Chicago (CDT, UTC-5)
    s = Scheduler(recurring_store, clock, tz=ZoneInfo("America/Chicago"))
    d = _definition(pattern=RecurrencePattern.CUSTOM, cron_expression="30 9 * * *")
    assert s.compute_next_execution(d) == datetime(2025, 3, 10, 14, 30, tzinfo=timezone.utc)

    d = _definition(pattern=RecurrencePattern.CUSTOM, cron_expression="0 8 * * *")
    assert s.compute_next_execution(d) == datetime(2025, 3, 11, 13, 0, tzinfo=timezone.utc)


def test_hourly_cron_fires_at_next_matching_minute(scheduler, clock):
    d = _definition(pattern=RecurrencePattern.CUSTOM, cron_expression="15 * * * *")
    assert scheduler.compute_next_execution(d) == T0.replace(minute=15)

    clock.advance(timedelta(minutes=20))
    assert scheduler.compute_next_execution(d) == T0.replace(hour=15, minute=15)


def test_day_of_week_is_ignored_by_default(scheduler):
    # Friday-only expression still fires tomorrow (Tuesday)
    d = _definition(pattern=RecurrencePattern.CUSTOM, cron_expression="0 8 * * 5")
    assert scheduler.compute_next_execution(d) == datetime(2025, 3, 11, 8, 0, tzinfo=timezone.utc)


def test_day_of_week_honored_when_enabled(recurring_store, clock):
    s = Scheduler(recurring_store, clock, tz=timezone.utc, honor_day_of_week=True)
    d = _definition(pattern=RecurrencePattern.CUSTOM, cron_expression="0 8 * * 5")
    assert s.compute_next_execution(d) == datetime(2025, 3, 14, 8, 0, tzinfo=timezone.utc)

    # Today (Monday) still counts when the time has not passed
    d = _definition(pattern=RecurrencePattern.CUSTOM, cron_expression="0 18 * * 1")
    assert s.compute_next_execution(d) == datetime(2025, 3, 10, 18, 0, tzinfo=timezone.utc)


def test_cron_takes_precedence_over_interval(scheduler):
    d = _definition(pattern=RecurrencePattern.CUSTOM, cron_expression="30 15 * * *", interval_minutes=5)
    assert scheduler.compute_next_execution(d) == T0.replace(hour=15, minute=30)


# ---- CUSTOM interval ----

def test_interval_is_relative_to_now_not_last_fire(scheduler, clock):
    d = _definition(
        pattern=RecurrencePattern.CUSTOM,
        interval_minutes=90,
        last_executed_at=T0 - timedelta(days=3),
    )
    assert scheduler.compute_next_execution(d) == T0 + timedelta(minutes=90)


# ---- configuration errors ----

@pytest.mark.parametrize("fields", [
    {"pattern": RecurrencePattern.CUSTOM},
    {"pattern": RecurrencePattern.CUSTOM, "cron_expression": "every morning"},
    {"pattern": RecurrencePattern.CUSTOM, "cron_expression": "0 25 * * *"},
    {"pattern": RecurrencePattern.CUSTOM, "cron_expression": "*/5 9 * * *"},
    {"pattern": RecurrencePattern.CUSTOM, "interval_minutes": 0},
])
def test_bad_custom_schedules_raise_schedule_error(scheduler, fields):
    with pytest.raises(ScheduleError):
        scheduler.compute_next_execution(_definition(**fields))


# ---- mark_executed / due query ----

def test_mark_executed_updates_both_fields(scheduler, recurring_store, clock):
    d = recurring_store.create(_definition(pattern=RecurrencePattern.CUSTOM, cron_expression="0 14 * * *"))
    clock.advance(timedelta(hours=1, seconds=7))

    updated = scheduler.mark_executed(d.id)
    stored = recurring_store.get(d.id)

    assert stored.last_executed_at == clock.current_time
    assert stored.next_execution_at > stored.last_executed_at
    assert updated.next_execution_at == stored.next_execution_at


def test_explicit_first_run_is_authoritative_until_first_fire(scheduler, recurring_store, clock):
    d = recurring_store.create(_definition(pattern=RecurrencePattern.DAILY))
    assert d.next_execution_at == T0 + timedelta(hours=1)

    assert scheduler.get_due_tasks() == []
    clock.advance(timedelta(minutes=59))
    assert scheduler.get_due_tasks() == []
    clock.advance(timedelta(minutes=1))
    assert [x.id for x in scheduler.get_due_tasks()] == [d.id]

    scheduler.mark_executed(d.id)
    assert recurring_store.get(d.id).next_execution_at == clock.current_time + timedelta(days=1)
    assert scheduler.get_due_tasks() == []


def test_due_tasks_are_active_only_and_sorted(scheduler, recurring_store, clock):
    later = recurring_store.create(_definition(title="later", next_execution_at=T0 - timedelta(minutes=1)))
    earlier = recurring_store.create(_definition(title="earlier", next_execution_at=T0 - timedelta(hours=2)))
    paused = recurring_store.create(_definition(title="paused", next_execution_at=T0 - timedelta(hours=3), active=False))

    due = scheduler.get_due_tasks()
    assert [d.id for d in due] == [earlier.id, later.id]
    assert paused.id not in {d.id for d in due}


def test_update_next_execution_keeps_last_executed(scheduler, recurring_store):
    d = recurring_store.create(_definition(pattern=RecurrencePattern.CUSTOM, interval_minutes=10))
    updated = scheduler.update_next_execution(d.id)
    assert updated.last_executed_at is None
    assert updated.next_execution_at == T0 + timedelta(minutes=10)
