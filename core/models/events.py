"""Event model -- the message format for task lifecycle notifications."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, Field


class Event(BaseModel):
    """A typed event that flows through the event bus.

    Events live in memory only; a handler registered after an event was
    emitted never sees it.
    """

    id: str = Field(default_factory=lambda: f"evt_{uuid4().hex[:12]}")
    type: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: str = Field(default_factory=lambda: uuid4().hex[:12])
    source: str
    payload: dict = Field(default_factory=dict)


# -- Event type constants --

class EventTypes:
    """Well-known event type strings."""

    # Tasks
    TASK_CREATED = "task.created"
    TASK_EXECUTION_STARTED = "task.execution.started"
    TASK_EXECUTION_COMPLETED = "task.execution.completed"
    TASK_EXECUTION_FAILED = "task.execution.failed"

    # Recurring definitions
    RECURRING_TASK_TRIGGERED = "recurring.triggered"

    # Brains
    BRAIN_AUTO_MODE_CHANGED = "brain.auto_mode_changed"
