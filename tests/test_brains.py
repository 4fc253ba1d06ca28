# tests/test_brains.py

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from core.errors import BrainNotFoundError, StoreError
from core.models.brains import BrainStatus
from core.models.events import EventTypes
from core.models.tasks import Task, TaskDependency, TaskStatus

from .conftest import T0


def _create(task_store, brain_id: str, title: str = "Do a thing", **kwargs) -> Task:
    return task_store.create(Task(brain_id=brain_id, title=title, **kwargs))


@pytest.mark.asyncio
async def test_manual_brain_waits_for_force(brains, task_store, runner):
    alpha = brains.get("alpha")
    task = _create(task_store, "alpha")

    assert await alpha.on_heartbeat() == 0
    assert task_store.get(task.id).status == TaskStatus.READY

    assert await brains.force_run("alpha") == 1
    assert task_store.get(task.id).status == TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_auto_mode_brain_runs_on_heartbeat_in_creation_order(brains, task_store, runner, clock):
    first = _create(task_store, "beta", "first")
    clock.advance(timedelta(seconds=1))
    second = _create(task_store, "beta", "second")
    _create(task_store, "alpha", "not mine")

    assert await brains.get("beta").on_heartbeat() == 2
    assert runner.calls == [first.id, second.id]


@pytest.mark.asyncio
async def test_one_brain_never_runs_two_tasks_at_once(brains, task_store, runner):
    for n in range(3):
        _create(task_store, "beta", f"task {n}")
    beta = brains.get("beta")

    results = await asyncio.gather(beta.on_heartbeat(), beta.force_run())

    assert sum(results) == 3
    assert runner.max_active == 1


@pytest.mark.asyncio
async def test_different_brains_run_concurrently(brains, task_store, runner):
    runner.gate = asyncio.Event()
    _create(task_store, "alpha")
    _create(task_store, "beta")

    job = asyncio.ensure_future(asyncio.gather(brains.force_run("alpha"), brains.force_run("beta")))
    while len(runner.calls) < 2:
        await asyncio.sleep(0)

    assert runner.max_active == 2
    assert brains.get("alpha").status == BrainStatus.EXECUTING
    runner.gate.set()
    assert await job == [1, 1]
    assert brains.get("alpha").status == BrainStatus.IDLE


@pytest.mark.asyncio
async def test_unmet_hard_dependency_keeps_task_ready(brains, task_store, runner):
    dep = _create(task_store, "beta", "later", execute_at=T0 + timedelta(hours=1))
    blocked = _create(task_store, "beta", "blocked", dependencies=[TaskDependency(task_id=dep.id)])

    assert await brains.get("beta").on_heartbeat() == 0
    assert runner.calls == []
    assert task_store.get(blocked.id).status == TaskStatus.READY


@pytest.mark.asyncio
async def test_failure_does_not_stop_brain_queue(brains, task_store, runner):
    runner.fail_times = 1
    failed = _create(task_store, "beta", "flaky")
    ok = _create(task_store, "beta", "fine")

    assert await brains.get("beta").on_heartbeat() == 1
    assert task_store.get(failed.id).status == TaskStatus.FAILED
    assert task_store.get(ok.id).status == TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_toggle_auto_mode_emits_event(brains, events):
    assert await brains.toggle_auto_mode("alpha") is True
    assert brains.get("alpha").auto_mode is True
    assert await brains.toggle_auto_mode("alpha", enabled=True) is True

    changed = [e for e in events if e.type == EventTypes.BRAIN_AUTO_MODE_CHANGED]
    assert changed[0].payload == {"brain_id": "alpha", "auto_mode": True}


def test_state_reports_ready_count(brains, task_store):
    _create(task_store, "alpha")
    _create(task_store, "alpha")
    _create(task_store, "alpha", execute_at=T0 + timedelta(minutes=1))

    state = brains.get("alpha").get_state()
    assert state.name == "Alpha"
    assert state.status == BrainStatus.IDLE
    assert state.ready_tasks == 2
    assert [s.id for s in brains.states()] == ["alpha", "beta"]


@pytest.mark.asyncio
async def test_unknown_brain(brains):
    with pytest.raises(BrainNotFoundError):
        brains.get("zeta")
    with pytest.raises(BrainNotFoundError):
        await brains.force_run("zeta")
    assert brains.has("zeta") is False


@pytest.mark.asyncio
async def test_task_command_message(brains, task_store):
    reply = await brains.handle_user_message("alpha", "!task Research NVDA\nLook at last quarter")

    [task] = task_store.find_by_brain("alpha")
    assert reply == f"Queued task {task.id}: Research NVDA"
    assert task.description == "Look at last quarter"

    assert await brains.handle_user_message("alpha", "hello there") is None
    assert await brains.handle_user_message("beta", "!task ignored") is None


@pytest.mark.asyncio
async def test_heartbeat_all_isolates_failing_brain(brains, task_store, monkeypatch):
    async def broken() -> int:
        raise RuntimeError("brain crashed")

    monkeypatch.setattr(brains.get("alpha"), "on_heartbeat", broken)
    task = _create(task_store, "beta")

    await brains.heartbeat_all()

    assert task_store.get(task.id).status == TaskStatus.COMPLETED


def _queue(task_store, brain_id: str, count: int) -> list[Task]:
    return [_create(task_store, brain_id, f"queued {n}") for n in range(count)]


async def _until(predicate) -> None:
    while not predicate():
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_task_deleted_mid_pass_is_skipped(brains, task_store, runner, service):
    runner.gate = asyncio.Event()
    first, deleted, last = _queue(task_store, "beta", 3)

    job = asyncio.ensure_future(brains.get("beta").on_heartbeat())
    await _until(lambda: runner.calls == [first.id])
    service.delete_task(deleted.id)
    runner.gate.set()

    assert await job == 2
    assert runner.calls == [first.id, last.id]
    assert task_store.get(last.id).status == TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_task_started_by_operator_mid_pass_runs_once(brains, task_store, runner, service):
    runner.gate = asyncio.Event()
    first, manual, last = _queue(task_store, "beta", 3)

    job = asyncio.ensure_future(brains.get("beta").on_heartbeat())
    await _until(lambda: runner.calls == [first.id])
    run_now = asyncio.ensure_future(service.run_task_now(manual.id))
    await _until(lambda: runner.calls == [first.id, manual.id])
    runner.gate.set()

    assert await job == 2
    assert (await run_now).status == TaskStatus.COMPLETED
    assert runner.calls.count(manual.id) == 1
    assert task_store.get(last.id).status == TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_engine_error_on_one_task_does_not_end_pass(brains, task_store, executor, monkeypatch):
    broken, ok = _queue(task_store, "beta", 2)
    execute = executor.execute_task

    async def flaky_store(task_id: str):
        if task_id == broken.id:
            raise StoreError("database is locked")
        return await execute(task_id)

    monkeypatch.setattr(executor, "execute_task", flaky_store)

    assert await brains.get("beta").on_heartbeat() == 1
    assert task_store.get(broken.id).status == TaskStatus.READY
    assert task_store.get(ok.id).status == TaskStatus.COMPLETED
