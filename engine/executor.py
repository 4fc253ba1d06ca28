"""Task executor -- owns the status state machine of a single task.

READY -> EXECUTING -> COMPLETED | FAILED, with FAILED -> READY as the only
backward edge (retry). The executor never notifies anyone directly; side
effects subscribe to the lifecycle events it emits.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from core.data.tasks import TaskStore
from core.errors import InvalidRequestError, TaskBlockedError, TaskExecutionError
from core.models.events import Event, EventTypes
from core.models.tasks import Task, TaskStatus
from core.protocols import EventBus, TaskRunner
from core.time_context import TimeContext

logger = logging.getLogger(__name__)


class TaskExecutor:
    """Runs one task at a time through the external runner."""

    def __init__(
        self,
        task_store: TaskStore,
        runner: TaskRunner,
        bus: EventBus,
        time_context: TimeContext,
    ) -> None:
        self._tasks = task_store
        self._runner = runner
        self._bus = bus
        self._time = time_context
        # Tasks between their READY check and the EXECUTING write
        self._claimed: set[str] = set()

    async def execute_task(self, task_id: str) -> Task:
        """Run a task to COMPLETED, or record the failure and raise.

        Raises:
            TaskNotFoundError: no such task.
            InvalidRequestError: the task is not READY or is already starting.
            TaskBlockedError: a HARD dependency has not completed (no state change).
            TaskExecutionError: the runner failed; FAILED and any retry are already persisted.
        """
        task = self._tasks.get(task_id)
        if task.status != TaskStatus.READY or task_id in self._claimed:
            raise InvalidRequestError(
                f"Task {task_id} is not ready (status: {task.status.value})",
                {"task_id": task_id, "status": task.status.value},
            )

        blocking = self._tasks.unmet_hard_dependencies(task)
        if blocking:
            raise TaskBlockedError(task_id, blocking)

        self._claimed.add(task_id)
        try:
            await self._emit(EventTypes.TASK_EXECUTION_STARTED, task)
            task = self._tasks.update_status(task_id, TaskStatus.EXECUTING)
        finally:
            self._claimed.discard(task_id)
        logger.info("Executing task %s (%s) for brain %s", task.id, task.title, task.brain_id)

        try:
            await self._runner.execute(task)
        except Exception as exc:
            raise await self._record_failure(task, exc) from exc

        completed = self._tasks.update_status(
            task_id,
            TaskStatus.COMPLETED,
            output=task.output,
            error=None,
        )
        logger.info("Task %s completed", task_id)
        await self._emit(EventTypes.TASK_EXECUTION_COMPLETED, completed, output=completed.output)
        return completed

    async def _record_failure(self, task: Task, exc: Exception) -> TaskExecutionError:
        message = str(exc) or type(exc).__name__
        attempts = task.attempts + 1

        failed = self._tasks.update_status(
            task.id,
            TaskStatus.FAILED,
            error=message,
            attempts=attempts,
        )
        logger.warning("Task %s failed (attempt %d): %s", task.id, attempts, message)
        await self._emit(EventTypes.TASK_EXECUTION_FAILED, failed, error=message)

        policy = failed.retry_policy
        retry_scheduled = policy is not None and attempts < policy.max_attempts
        if retry_scheduled:
            self._schedule_retry(failed)

        return TaskExecutionError(task.id, message, retry_scheduled=retry_scheduled)

    def _schedule_retry(self, task: Task) -> Task:
        delay_ms = task.retry_policy.delay_ms(task.attempts)
        execute_at = self._time.current_time + timedelta(milliseconds=delay_ms)
        retried = self._tasks.update_status(task.id, TaskStatus.READY, execute_at=execute_at)
        logger.info(
            "Retry %d/%d for task %s scheduled in %dms",
            task.attempts + 1,
            task.retry_policy.max_attempts,
            task.id,
            delay_ms,
        )
        return retried

    async def _emit(self, event_type: str, task: Task, **extra: object) -> None:
        payload = {
            "task_id": task.id,
            "brain_id": task.brain_id,
            "title": task.title,
            "recurring_task_id": task.recurring_task_id,
            "send_discord_notification": task.send_discord_notification,
        }
        payload.update(extra)
        await self._bus.emit(Event(
            type=event_type,
            source="executor",
            correlation_id=task.id,
            payload=payload,
        ))
