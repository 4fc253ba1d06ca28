# tests/test_bus.py

from __future__ import annotations

import asyncio
import json

import pytest

from core.bus import AsyncIOBus
from core.models.events import Event, EventTypes


def _event(type_: str = EventTypes.TASK_CREATED) -> Event:
    return Event(type=type_, source="test", payload={"task_id": "task_1"})


@pytest.mark.asyncio
async def test_emit_waits_for_all_handlers_running_concurrently():
    bus = AsyncIOBus()
    both_started = asyncio.Event()
    started: list[str] = []
    finished: list[str] = []

    def make(name: str):
        async def handler(event: Event) -> None:
            started.append(name)
            if len(started) == 2:
                both_started.set()
            # Only completes if the other handler is running concurrently
            await asyncio.wait_for(both_started.wait(), timeout=1)
            finished.append(name)
        return handler

    bus.on(EventTypes.TASK_CREATED, make("a"))
    bus.on(EventTypes.TASK_CREATED, make("b"))
    await bus.emit(_event())

    assert sorted(finished) == ["a", "b"]


@pytest.mark.asyncio
async def test_failing_handler_does_not_affect_others_or_emitter():
    bus = AsyncIOBus()
    seen: list[str] = []

    async def boom(event: Event) -> None:
        raise RuntimeError("handler broke")

    async def ok(event: Event) -> None:
        seen.append(event.payload["task_id"])

    bus.on(EventTypes.TASK_CREATED, boom)
    bus.on(EventTypes.TASK_CREATED, ok)
    await bus.emit(_event())

    assert seen == ["task_1"]


@pytest.mark.asyncio
async def test_only_matching_and_wildcard_handlers_fire():
    bus = AsyncIOBus()
    typed: list[str] = []
    everything: list[str] = []

    async def on_typed(event: Event) -> None:
        typed.append(event.type)

    async def on_all(event: Event) -> None:
        everything.append(event.type)

    bus.on(EventTypes.TASK_EXECUTION_COMPLETED, on_typed)
    bus.on("*", on_all)

    await bus.emit(_event(EventTypes.TASK_CREATED))
    await bus.emit(_event(EventTypes.TASK_EXECUTION_COMPLETED))

    assert typed == [EventTypes.TASK_EXECUTION_COMPLETED]
    assert everything == [EventTypes.TASK_CREATED, EventTypes.TASK_EXECUTION_COMPLETED]
    assert bus.handler_count() == 2
    assert bus.handler_count("*") == 1


@pytest.mark.asyncio
async def test_off_removes_handler():
    bus = AsyncIOBus()
    seen: list[Event] = []

    async def handler(event: Event) -> None:
        seen.append(event)

    bus.on(EventTypes.TASK_CREATED, handler)
    bus.off(EventTypes.TASK_CREATED, handler)
    await bus.emit(_event())

    assert seen == []
    assert bus.handler_count(EventTypes.TASK_CREATED) == 0


@pytest.mark.asyncio
async def test_events_are_appended_to_jsonl(tmp_path):
    bus = AsyncIOBus(events_dir=tmp_path / "events")
    await bus.emit(_event())
    await bus.emit(_event(EventTypes.TASK_EXECUTION_STARTED))

    files = list((tmp_path / "events").glob("*.jsonl"))
    assert len(files) == 1
    lines = files[0].read_text().splitlines()
    assert [json.loads(line)["type"] for line in lines] == [
        EventTypes.TASK_CREATED,
        EventTypes.TASK_EXECUTION_STARTED,
    ]
