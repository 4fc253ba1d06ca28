"""Heartbeat driver -- the periodic tick behind recurring tasks.

Every `interval_seconds`:
1. Materializes a task for each due recurring definition and advances the
   definition with Scheduler.mark_executed
2. Runs every registered brain's heartbeat so brains pick up ready tasks

Each tick runs as its own asyncio task, so a slow or hung execution never
stops the timer from firing again.
"""

from __future__ import annotations

import asyncio
import logging

from core.data.tasks import TaskStore
from core.errors import ScheduleError
from core.models.events import Event, EventTypes
from core.models.schedule import RecurringTaskDefinition
from core.models.tasks import Task
from core.protocols import EventBus
from engine.brains import BrainRegistry
from scheduler.scheduler import Scheduler

logger = logging.getLogger(__name__)


class HeartbeatDriver:
    """Explicit, injectable driver loop.

    Usage:
        heartbeat = HeartbeatDriver(brains, scheduler, task_store, bus, interval_seconds=60)
        await heartbeat.start()
        ...
        await heartbeat.stop()

    Tests call `await heartbeat.tick()` directly instead of starting the loop.
    """

    def __init__(
        self,
        brains: BrainRegistry,
        scheduler: Scheduler,
        task_store: TaskStore,
        bus: EventBus,
        interval_seconds: float = 60,
    ) -> None:
        self._brains = brains
        self._scheduler = scheduler
        self._tasks = task_store
        self._bus = bus
        self._interval = max(0.01, float(interval_seconds))
        self._running = False
        self._loop_task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()
        # Overlapping ticks must not materialize the same definition twice
        self._recurring_lock = asyncio.Lock()
        self.tick_count = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the heartbeat loop."""
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._loop())
        logger.info("Heartbeat started (tick every %.0fs)", self._interval)

    async def stop(self) -> None:
        """Stop the loop and cancel ticks still in flight."""
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        for task in list(self._inflight):
            task.cancel()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        logger.info("Heartbeat stopped")

    async def _loop(self) -> None:
        while self._running:
            tick = asyncio.create_task(self._safe_tick())
            self._inflight.add(tick)
            tick.add_done_callback(self._inflight.discard)
            await asyncio.sleep(self._interval)

    async def _safe_tick(self) -> None:
        try:
            await self.tick()
        except Exception:
            logger.exception("Error in heartbeat tick")

    async def tick(self) -> None:
        """One heartbeat: materialize due recurring tasks, then run brains."""
        self.tick_count += 1
        created = await self.process_recurring_tasks()
        if created:
            logger.info("Heartbeat %d materialized %d recurring task(s)", self.tick_count, len(created))
        await self._brains.heartbeat_all()

    async def process_recurring_tasks(self) -> list[Task]:
        """Materialize every due definition. One bad definition never stops the rest."""
        created: list[Task] = []
        async with self._recurring_lock:
            for definition in self._scheduler.get_due_tasks():
                try:
                    task = await self.materialize(definition)
                except ScheduleError as exc:
                    logger.error("Recurring task %s has an invalid schedule: %s", definition.id, exc)
                    continue
                except Exception:
                    logger.exception("Failed to materialize recurring task %s", definition.id)
                    continue
                created.append(task)
        return created

    async def materialize(self, definition: RecurringTaskDefinition) -> Task:
        """Create a task from a definition and advance the definition.

        The schedule is validated before anything is written. If the task is
        created but the advance fails, the failure is logged and the
        definition stays due.
        """
        self._scheduler.compute_next_execution(definition)

        task = self._tasks.create(Task(
            brain_id=definition.brain_id,
            title=definition.title,
            description=definition.description,
            payload=dict(definition.payload),
            recurring_task_id=definition.id,
            model_override=definition.model_override,
            send_discord_notification=definition.send_discord_notification,
        ))

        try:
            self._scheduler.mark_executed(definition.id)
        except Exception:
            logger.exception(
                "Created task %s but failed to advance recurring task %s; it remains due",
                task.id,
                definition.id,
            )

        await self._bus.emit(Event(
            type=EventTypes.RECURRING_TASK_TRIGGERED,
            source="heartbeat",
            correlation_id=task.id,
            payload={
                "recurring_task_id": definition.id,
                "task_id": task.id,
                "brain_id": definition.brain_id,
                "title": definition.title,
            },
        ))
        return task
