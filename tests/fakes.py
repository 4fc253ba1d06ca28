# tests/fakes.py

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from core.models.tasks import Task


class FakeRunner:
    """
    Deterministic TaskRunner for unit tests.

    - Records the id of every task it runs, in order
    - Fails the next `fail_times` runs with `error`
    - Optionally blocks on `gate` until the test releases it
    """

    def __init__(self, output: str = "done", name: str = "fake") -> None:
        self._name = name
        self.output = output
        self.fail_times = 0
        self.error = "runner exploded"
        self.gate: asyncio.Event | None = None
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0

    @property
    def name(self) -> str:
        return self._name

    async def execute(self, task: Task) -> None:
        self.calls.append(task.id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            if self.fail_times > 0:
                self.fail_times -= 1
                raise RuntimeError(self.error)
            task.output = self.output
        finally:
            self.active -= 1


class ScriptedRunner:
    """Runner that returns a fixed sequence of outputs, one per call."""

    def __init__(self, outputs: list[str], name: str = "scripted") -> None:
        self._name = name
        self.outputs = list(outputs)
        self.calls = 0

    @property
    def name(self) -> str:
        return self._name

    async def execute(self, task: Task) -> None:
        self.calls += 1
        task.output = self.outputs.pop(0)


@dataclass(slots=True)
class SentText:
    text: str
    channel_id: str | None


@dataclass
class FakeNotifier:
    """Notifier that records what it was asked to send."""

    name: str = "fake_notifier"
    fail: bool = False
    sent: list[SentText] = field(default_factory=list)

    async def send_text(self, text: str, channel_id: str | None = None) -> None:
        if self.fail:
            raise RuntimeError("notifier down")
        self.sent.append(SentText(text=text, channel_id=channel_id))
