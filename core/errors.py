"""Error taxonomy for the task engine.

Every error carries a short machine-readable `code` and an optional
`context` dict that is safe to log.
"""

from __future__ import annotations

from typing import Any


class CerebroError(Exception):
    """Base class for all task engine errors."""

    code = "CEREBRO_ERROR"

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}


class StoreError(CerebroError):
    """Raised when the SQLite layer fails underneath a store operation."""

    code = "STORE_ERROR"


class RecordNotFoundError(CerebroError):
    code = "NOT_FOUND"


class TaskNotFoundError(RecordNotFoundError):
    """Raised when a task identifier does not exist in the task store."""

    code = "TASK_NOT_FOUND"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task with id '{task_id}' was not found.", {"task_id": task_id})
        self.task_id = task_id


class RecurringTaskNotFoundError(RecordNotFoundError):
    code = "RECURRING_TASK_NOT_FOUND"

    def __init__(self, recurring_id: str) -> None:
        super().__init__(
            f"Recurring task with id '{recurring_id}' was not found.",
            {"recurring_task_id": recurring_id},
        )
        self.recurring_id = recurring_id


class BrainNotFoundError(CerebroError):
    code = "BRAIN_NOT_FOUND"

    def __init__(self, brain_id: str) -> None:
        super().__init__(f"Brain '{brain_id}' is not registered.", {"brain_id": brain_id})
        self.brain_id = brain_id


class InvalidRequestError(CerebroError):
    """Raised when an operator request is malformed."""

    code = "INVALID_REQUEST"


class ScheduleError(CerebroError):
    """A recurring definition whose schedule cannot be computed.

    Bad cron expressions, missing intervals and unknown patterns all land
    here, at compute time.
    """

    code = "SCHEDULE_ERROR"


class TaskExecutionError(CerebroError):
    """Raised by the executor after a failed run has been recorded."""

    code = "TASK_EXECUTION_ERROR"

    def __init__(self, task_id: str, message: str, retry_scheduled: bool = False) -> None:
        super().__init__(
            f"Task {task_id} failed: {message}",
            {"task_id": task_id, "retry_scheduled": retry_scheduled},
        )
        self.task_id = task_id
        self.reason = message
        self.retry_scheduled = retry_scheduled


class TaskBlockedError(CerebroError):
    """Raised when a task still has unmet HARD dependencies."""

    code = "TASK_BLOCKED"

    def __init__(self, task_id: str, blocking: list[str]) -> None:
        super().__init__(
            f"Task {task_id} is blocked by: {', '.join(blocking)}",
            {"task_id": task_id, "blocking": blocking},
        )
        self.task_id = task_id
        self.blocking = blocking


class RunnerError(CerebroError):
    """The external runner could not produce usable output."""

    code = "RUNNER_ERROR"
