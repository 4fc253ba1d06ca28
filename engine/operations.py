"""Operator surface -- create/read/update/delete/toggle/run-now for tasks
and recurring definitions.

Transport layers (HTTP, CLI, chat) call into TaskService; nothing in the
engine depends on them.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

from core.data.recurring import RecurringTaskStore
from core.data.tasks import TaskStore
from core.errors import BrainNotFoundError, InvalidRequestError
from core.models.events import Event, EventTypes
from core.models.schedule import RecurringTaskDefinition
from core.models.tasks import RetryPolicy, Task, TaskDependency, TaskStatus
from core.protocols import EventBus
from engine.brains import BrainRegistry
from engine.executor import TaskExecutor
from scheduler.builder import ScheduleConfig, ScheduleType, build_schedule
from scheduler.heartbeat import HeartbeatDriver
from scheduler.scheduler import Scheduler

logger = logging.getLogger(__name__)

_SCHEDULE_FIELDS = {"pattern", "cron_expression", "interval_minutes"}


class TaskService:
    """Operator-facing task and recurring-definition operations."""

    def __init__(
        self,
        task_store: TaskStore,
        recurring_store: RecurringTaskStore,
        executor: TaskExecutor,
        scheduler: Scheduler,
        heartbeat: HeartbeatDriver,
        brains: BrainRegistry,
        bus: EventBus,
    ) -> None:
        self._tasks = task_store
        self._recurring = recurring_store
        self._executor = executor
        self._scheduler = scheduler
        self._heartbeat = heartbeat
        self._brains = brains
        self._bus = bus
        self._background: set[asyncio.Task] = set()

    def _require_brain(self, brain_id: str) -> None:
        if not self._brains.has(brain_id):
            raise BrainNotFoundError(brain_id)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def create_task(
        self,
        brain_id: str,
        title: str,
        description: str = "",
        payload: dict[str, Any] | None = None,
        dependencies: list[TaskDependency] | None = None,
        execute_at: datetime | None = None,
        retry_policy: RetryPolicy | None = None,
        model_override: str | None = None,
        send_discord_notification: bool = True,
    ) -> Task:
        self._require_brain(brain_id)
        if not title or not title.strip():
            raise InvalidRequestError("title is required")

        task = self._tasks.create(Task(
            brain_id=brain_id,
            title=title.strip(),
            description=description,
            payload=payload or {},
            dependencies=dependencies or [],
            execute_at=execute_at,
            retry_policy=retry_policy,
            model_override=model_override,
            send_discord_notification=send_discord_notification,
        ))
        await self._bus.emit(Event(
            type=EventTypes.TASK_CREATED,
            source="operations",
            correlation_id=task.id,
            payload={"task_id": task.id, "brain_id": brain_id, "title": task.title},
        ))
        return task

    def get_task(self, task_id: str) -> Task:
        return self._tasks.get(task_id)

    def list_tasks(self, brain_id: str | None = None, status: TaskStatus | None = None) -> list[Task]:
        tasks = self._tasks.find_by_brain(brain_id) if brain_id else self._tasks.list_all()
        if status is not None:
            tasks = [t for t in tasks if t.status == status]
        return tasks

    def update_task(self, task_id: str, **changes: Any) -> Task:
        if "brain_id" in changes:
            self._require_brain(changes["brain_id"])
        return self._tasks.update(task_id, **changes)

    def delete_task(self, task_id: str) -> bool:
        return self._tasks.delete(task_id)

    def clear_tasks(self) -> int:
        deleted = sum(1 for task in self._tasks.list_all() if self._tasks.delete(task.id))
        logger.info("Cleared %d task(s)", deleted)
        return deleted

    def _prepare_run(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        # A failed task can be re-run by hand
        if task.status == TaskStatus.FAILED:
            task = self._tasks.update_status(task_id, TaskStatus.READY, error=None)
        if task.status != TaskStatus.READY:
            raise InvalidRequestError(
                f"Task cannot be executed (status: {task.status.value})",
                {"task_id": task_id, "status": task.status.value},
            )
        return task

    async def run_task_now(self, task_id: str) -> Task:
        """Execute a task immediately, regardless of execute_at and auto mode.

        Errors from the executor propagate to the caller.
        """
        self._prepare_run(task_id)
        return await self._executor.execute_task(task_id)

    def start_task_now(self, task_id: str) -> asyncio.Task:
        """Like run_task_now, but in the background; failures are logged."""
        self._prepare_run(task_id)
        job = asyncio.create_task(self._executor.execute_task(task_id))
        self._background.add(job)
        job.add_done_callback(self._on_background_done)
        return job

    def _on_background_done(self, job: asyncio.Task) -> None:
        self._background.discard(job)
        if job.cancelled():
            return
        exc = job.exception()
        if exc is not None:
            logger.error("Background task execution failed: %s", exc)

    # ------------------------------------------------------------------
    # Recurring definitions
    # ------------------------------------------------------------------

    def create_recurring(self, definition: RecurringTaskDefinition) -> RecurringTaskDefinition:
        """Store a definition after checking its schedule can be computed."""
        self._require_brain(definition.brain_id)
        self._scheduler.compute_next_execution(definition)
        return self._recurring.create(definition)

    def create_recurring_from_schedule(
        self,
        brain_id: str,
        title: str,
        schedule_type: ScheduleType,
        schedule_config: ScheduleConfig | None = None,
        interval_minutes: int | None = None,
        **fields: Any,
    ) -> RecurringTaskDefinition:
        """Create a definition from an operator schedule type (HOURLY/DAILY/WEEKLY/INTERVAL)."""
        built = build_schedule(
            schedule_type,
            schedule_config,
            interval_minutes=interval_minutes,
            now=self._scheduler.now,
            tz=self._scheduler.tz,
        )
        definition = RecurringTaskDefinition(
            brain_id=brain_id,
            title=title,
            **built.model_dump(),
            **fields,
        )
        return self.create_recurring(definition)

    def get_recurring(self, recurring_id: str) -> RecurringTaskDefinition:
        return self._recurring.get(recurring_id)

    def list_recurring(self, brain_id: str | None = None) -> list[RecurringTaskDefinition]:
        if brain_id:
            return self._recurring.find_by_brain(brain_id)
        return self._recurring.list_all()

    def update_recurring(self, recurring_id: str, **changes: Any) -> RecurringTaskDefinition:
        """Partial update. Changing the schedule recomputes next_execution_at
        unless one is given explicitly.
        """
        if "brain_id" in changes:
            self._require_brain(changes["brain_id"])
        updated = self._recurring.update(recurring_id, **changes)
        if _SCHEDULE_FIELDS & set(changes) and "next_execution_at" not in changes:
            updated = self._scheduler.update_next_execution(recurring_id)
        return updated

    def reschedule_recurring(
        self,
        recurring_id: str,
        schedule_type: ScheduleType,
        schedule_config: ScheduleConfig | None = None,
        interval_minutes: int | None = None,
    ) -> RecurringTaskDefinition:
        built = build_schedule(
            schedule_type,
            schedule_config,
            interval_minutes=interval_minutes,
            now=self._scheduler.now,
            tz=self._scheduler.tz,
        )
        return self._recurring.update(recurring_id, **built.model_dump())

    def delete_recurring(self, recurring_id: str) -> bool:
        return self._recurring.delete(recurring_id)

    def toggle_recurring(self, recurring_id: str, active: bool | None = None) -> RecurringTaskDefinition:
        current = self._recurring.get(recurring_id)
        target = (not current.active) if active is None else active
        return self._recurring.set_active(recurring_id, target)

    async def run_recurring_now(self, recurring_id: str) -> Task:
        """Materialize a definition immediately and advance its schedule."""
        definition = self._recurring.get(recurring_id)
        return await self._heartbeat.materialize(definition)

    def due_recurring(self) -> list[RecurringTaskDefinition]:
        return self._scheduler.get_due_tasks()
