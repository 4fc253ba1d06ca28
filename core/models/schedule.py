"""Recurring task definitions -- templates that periodically spawn tasks."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class RecurrencePattern(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    CUSTOM = "CUSTOM"


class RecurringTaskDefinition(BaseModel):
    """A recurring definition and its scheduling state.

    `next_execution_at` is the only field the heartbeat reads to decide
    due-ness. `last_executed_at` and `next_execution_at` are only advanced
    by Scheduler.mark_executed (or recomputed after an operator edit).
    """

    id: str = Field(default_factory=lambda: f"recurring_{uuid4().hex[:12]}")
    brain_id: str
    title: str
    description: str = ""
    model_override: str | None = None

    pattern: RecurrencePattern = RecurrencePattern.DAILY
    cron_expression: str | None = None
    interval_minutes: int | None = None

    # Copied onto every spawned task
    payload: dict[str, Any] = Field(default_factory=dict)

    active: bool = True
    last_executed_at: datetime | None = None
    next_execution_at: datetime | None = None

    # Post-execution side-effect hints
    send_discord_notification: bool = True
    triggers_report: bool = False
    report_delay_minutes: int = 0

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def anchor(self) -> datetime:
        """The time the next period is measured from."""
        return self.last_executed_at or self.created_at
