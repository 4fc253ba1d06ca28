"""Brains -- independently addressable execution contexts.

A brain is data (BrainConfig) plus an injected message-handling strategy.
It owns no tasks; it is a query key into the task store. The registry
fans heartbeats out to every brain.
"""

from __future__ import annotations

import asyncio
import logging
import re

from core.data.tasks import TaskStore
from core.errors import BrainNotFoundError, CerebroError, TaskExecutionError
from core.models.brains import BrainConfig, BrainState, BrainStatus
from core.models.events import Event, EventTypes
from core.models.tasks import Task, TaskStatus
from core.protocols import EventBus, MessageHandler
from core.time_context import TimeContext
from engine.executor import TaskExecutor

logger = logging.getLogger(__name__)


class Brain:
    """Processes its own ready tasks, one at a time, in creation order."""

    def __init__(
        self,
        config: BrainConfig,
        task_store: TaskStore,
        executor: TaskExecutor,
        time_context: TimeContext,
        message_handler: MessageHandler | None = None,
    ) -> None:
        self.config = config
        self._tasks = task_store
        self._executor = executor
        self._time = time_context
        self._message_handler = message_handler
        # Held while the queue is processed; never two tasks of one brain at once
        self._lock = asyncio.Lock()

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def auto_mode(self) -> bool:
        return self.config.auto_mode

    @property
    def status(self) -> BrainStatus:
        return BrainStatus.EXECUTING if self._lock.locked() else BrainStatus.IDLE

    def toggle_auto_mode(self, enabled: bool | None = None) -> bool:
        self.config.auto_mode = (not self.config.auto_mode) if enabled is None else enabled
        logger.info("Brain %s auto mode %s", self.id, "on" if self.config.auto_mode else "off")
        return self.config.auto_mode

    def get_state(self) -> BrainState:
        ready = self._tasks.get_ready_tasks(self.id, self._time.current_time)
        return BrainState(
            id=self.id,
            name=self.config.name or self.id,
            auto_mode=self.auto_mode,
            status=self.status,
            ready_tasks=len(ready),
        )

    async def on_heartbeat(self) -> int:
        return await self.process_tasks(force=False)

    async def force_run(self) -> int:
        return await self.process_tasks(force=True)

    async def process_tasks(self, force: bool = False) -> int:
        """Execute eligible ready tasks and return how many completed.

        Recurring instances always run. Other tasks run only in auto mode
        or when forced. Tasks with unmet HARD dependencies stay READY.
        """
        async with self._lock:
            completed = 0
            for queued in self._tasks.get_ready_tasks(self.id, self._time.current_time):
                # The queue may change while an earlier task runs
                task = self._tasks.find(queued.id)
                if task is None or task.status != TaskStatus.READY:
                    logger.debug("Brain %s: task %s no longer ready; skipping", self.id, queued.id)
                    continue
                if not self._should_run(task, force):
                    continue
                blocking = self._tasks.unmet_hard_dependencies(task)
                if blocking:
                    logger.debug("Task %s waiting on %s", task.id, ", ".join(blocking))
                    continue
                try:
                    await self._executor.execute_task(task.id)
                    completed += 1
                except TaskExecutionError as exc:
                    logger.error("Brain %s: task %s failed: %s", self.id, task.id, exc.reason)
                except CerebroError as exc:
                    logger.warning("Brain %s: task %s skipped: %s", self.id, task.id, exc)
            return completed

    def _should_run(self, task: Task, force: bool) -> bool:
        return self.auto_mode or force or task.is_recurring_instance

    async def handle_user_message(self, text: str) -> str | None:
        if self._message_handler is None:
            logger.debug("Brain %s has no message handler; ignoring message", self.id)
            return None
        return await self._message_handler.handle(self.id, text)


class TaskCommandHandler:
    """Message strategy that turns '!task <title>' into a queued task."""

    _COMMAND = re.compile(r"^!task\s+(?P<title>.+)$", re.IGNORECASE | re.DOTALL)

    def __init__(self, task_store: TaskStore) -> None:
        self._tasks = task_store

    async def handle(self, brain_id: str, text: str) -> str | None:
        match = self._COMMAND.match(text.strip())
        if not match:
            return None
        title, _, description = match.group("title").partition("\n")
        task = self._tasks.create(Task(
            brain_id=brain_id,
            title=title.strip(),
            description=description.strip(),
        ))
        return f"Queued task {task.id}: {task.title}"


class BrainRegistry:
    """All registered brains, addressed by id."""

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self._brains: dict[str, Brain] = {}

    def register(self, brain: Brain) -> None:
        if brain.id in self._brains:
            logger.warning("Replacing registered brain %s", brain.id)
        self._brains[brain.id] = brain
        logger.info("Registered brain %s (auto_mode=%s)", brain.id, brain.auto_mode)

    def unregister(self, brain_id: str) -> bool:
        return self._brains.pop(brain_id, None) is not None

    def get(self, brain_id: str) -> Brain:
        brain = self._brains.get(brain_id)
        if brain is None:
            raise BrainNotFoundError(brain_id)
        return brain

    def has(self, brain_id: str) -> bool:
        return brain_id in self._brains

    def all(self) -> list[Brain]:
        return list(self._brains.values())

    def states(self) -> list[BrainState]:
        return [brain.get_state() for brain in self._brains.values()]

    async def heartbeat_all(self) -> None:
        """Run every brain's heartbeat concurrently; one failure never stops the others."""
        brains = self.all()
        results = await asyncio.gather(
            *(brain.on_heartbeat() for brain in brains),
            return_exceptions=True,
        )
        for brain, result in zip(brains, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Heartbeat failed for brain %s",
                    brain.id,
                    exc_info=(type(result), result, result.__traceback__),
                )

    async def force_run(self, brain_id: str) -> int:
        return await self.get(brain_id).force_run()

    async def toggle_auto_mode(self, brain_id: str, enabled: bool | None = None) -> bool:
        brain = self.get(brain_id)
        auto_mode = brain.toggle_auto_mode(enabled)
        await self._bus.emit(Event(
            type=EventTypes.BRAIN_AUTO_MODE_CHANGED,
            source="brains",
            payload={"brain_id": brain_id, "auto_mode": auto_mode},
        ))
        return auto_mode

    async def handle_user_message(self, brain_id: str, text: str) -> str | None:
        return await self.get(brain_id).handle_user_message(text)
