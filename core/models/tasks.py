"""Task model -- one concrete unit of work owned by a brain.

Tasks are created by operators or materialized by the heartbeat from a
recurring definition. The executor is the only component that moves a task
through its status lifecycle.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class TaskStatus(str, Enum):
    READY = "READY"
    EXECUTING = "EXECUTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @classmethod
    def from_db(cls, value: str) -> TaskStatus:
        """Read a stored status, mapping legacy PENDING/WAITING rows to READY."""
        if value in ("PENDING", "WAITING"):
            return cls.READY
        return cls(value)


class DependencyType(str, Enum):
    HARD = "HARD"
    SOFT = "SOFT"


class TaskDependency(BaseModel):
    task_id: str
    type: DependencyType = DependencyType.HARD


class BackoffType(str, Enum):
    FIXED = "FIXED"
    EXPONENTIAL = "EXPONENTIAL"


class RetryPolicy(BaseModel):
    """How many times a failing task is re-queued, and how far apart."""

    max_attempts: int = Field(default=3, ge=1)
    backoff_type: BackoffType = BackoffType.FIXED
    backoff_ms: int = Field(default=1000, ge=0)

    def delay_ms(self, attempts: int) -> int:
        """Backoff before the retry that follows failure number `attempts`.

        EXPONENTIAL doubles per failure: 1x after the first, 2x after the
        second, 4x after the third.
        """
        if self.backoff_type == BackoffType.EXPONENTIAL:
            return self.backoff_ms * 2 ** max(attempts - 1, 0)
        return self.backoff_ms


class Task(BaseModel):
    """A persisted unit of work with a status lifecycle."""

    id: str = Field(default_factory=lambda: f"task_{uuid4().hex[:12]}")
    brain_id: str
    status: TaskStatus = TaskStatus.READY
    title: str
    description: str = ""

    # Runner-specific opaque context
    payload: dict[str, Any] = Field(default_factory=dict)

    # Back-reference to the recurring definition that spawned this task
    recurring_task_id: str | None = None
    model_override: str | None = None
    dependencies: list[TaskDependency] = Field(default_factory=list)

    # Scheduling / execution state
    execute_at: datetime | None = None
    attempts: int = 0
    retry_policy: RetryPolicy | None = None
    error: str | None = None
    output: str | None = None

    send_discord_notification: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_recurring_instance(self) -> bool:
        return self.recurring_task_id is not None

    @property
    def hard_dependencies(self) -> list[str]:
        return [d.task_id for d in self.dependencies if d.type == DependencyType.HARD]
