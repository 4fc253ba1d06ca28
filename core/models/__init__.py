"""Pydantic data models shared across all components."""

from core.models.brains import BrainConfig, BrainState, BrainStatus
from core.models.events import Event, EventTypes
from core.models.schedule import RecurrencePattern, RecurringTaskDefinition
from core.models.tasks import (
    BackoffType,
    DependencyType,
    RetryPolicy,
    Task,
    TaskDependency,
    TaskStatus,
)

__all__ = [
    "BackoffType",
    "BrainConfig",
    "BrainState",
    "BrainStatus",
    "DependencyType",
    "Event",
    "EventTypes",
    "RecurrencePattern",
    "RecurringTaskDefinition",
    "RetryPolicy",
    "Task",
    "TaskDependency",
    "TaskStatus",
]
