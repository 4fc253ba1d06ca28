# tests/conftest.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from core.bus import AsyncIOBus
from core.data.recurring import RecurringTaskStore
from core.data.store import Store
from core.data.tasks import TaskStore
from core.models.brains import BrainConfig
from core.registry import PluginRegistry
from core.time_context import TimeContext
from engine.brains import Brain, BrainRegistry, TaskCommandHandler
from engine.executor import TaskExecutor
from engine.operations import TaskService
from scheduler.heartbeat import HeartbeatDriver
from scheduler.scheduler import Scheduler

from .fakes import FakeNotifier, FakeRunner

# Monday 2025-03-10 14:00 UTC
T0 = datetime(2025, 3, 10, 14, 0, tzinfo=timezone.utc)


@pytest.fixture()
def clock() -> TimeContext:
    """Manual clock pinned at T0; tests move it with clock.advance()."""
    return TimeContext.at(T0)


@pytest.fixture()
def store(tmp_path: Path):
    s = Store(tmp_path / "cerebro.db")
    yield s
    s.close()


@pytest.fixture()
def task_store(store: Store, clock: TimeContext) -> TaskStore:
    return TaskStore(store, clock)


@pytest.fixture()
def recurring_store(store: Store, clock: TimeContext) -> RecurringTaskStore:
    return RecurringTaskStore(store, clock, first_run_delay=timedelta(hours=1))


@pytest.fixture()
def bus() -> AsyncIOBus:
    return AsyncIOBus()


@pytest.fixture()
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture()
def registry(runner: FakeRunner, notifier: FakeNotifier) -> PluginRegistry:
    r = PluginRegistry()
    r.register("runner", runner)
    r.register("notifier", notifier)
    return r


@pytest.fixture()
def scheduler(recurring_store: RecurringTaskStore, clock: TimeContext) -> Scheduler:
    return Scheduler(recurring_store, clock, tz=timezone.utc)


@pytest.fixture()
def executor(task_store: TaskStore, runner: FakeRunner, bus: AsyncIOBus, clock: TimeContext) -> TaskExecutor:
    return TaskExecutor(task_store, runner, bus, clock)


@pytest.fixture()
def brains(task_store: TaskStore, executor: TaskExecutor, bus: AsyncIOBus, clock: TimeContext) -> BrainRegistry:
    """Two brains: 'alpha' (manual) and 'beta' (auto mode)."""
    registry = BrainRegistry(bus)
    handler = TaskCommandHandler(task_store)
    registry.register(Brain(
        BrainConfig(id="alpha", name="Alpha", description="Research", channel_id="chan-alpha"),
        task_store, executor, clock, message_handler=handler,
    ))
    registry.register(Brain(
        BrainConfig(id="beta", name="Beta", auto_mode=True, channel_id="chan-beta"),
        task_store, executor, clock,
    ))
    return registry


@pytest.fixture()
def heartbeat(
    brains: BrainRegistry,
    scheduler: Scheduler,
    task_store: TaskStore,
    bus: AsyncIOBus,
) -> HeartbeatDriver:
    return HeartbeatDriver(brains, scheduler, task_store, bus, interval_seconds=60)


@pytest.fixture()
def service(
    task_store: TaskStore,
    recurring_store: RecurringTaskStore,
    executor: TaskExecutor,
    scheduler: Scheduler,
    heartbeat: HeartbeatDriver,
    brains: BrainRegistry,
    bus: AsyncIOBus,
) -> TaskService:
    return TaskService(task_store, recurring_store, executor, scheduler, heartbeat, brains, bus)


@pytest.fixture()
def events(bus: AsyncIOBus) -> list:
    """Every event emitted on the bus, in order."""
    seen: list = []

    async def record(event) -> None:
        seen.append(event)

    bus.on("*", record)
    return seen
