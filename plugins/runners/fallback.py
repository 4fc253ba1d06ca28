"""Fallback runner -- retries once with an alternate runner on fatal output."""

from __future__ import annotations

import logging
import re

from core.errors import RunnerError
from core.models.tasks import Task
from core.protocols import TaskRunner

logger = logging.getLogger(__name__)

_FATAL_RE = re.compile(r"no models match|model restrictions|\b404\b", re.IGNORECASE)


def is_fatal_output(output: str | None) -> bool:
    """True for runner output that signals the agent could not run at all."""
    if not output:
        return False
    text = output.strip()
    return text.startswith("ERROR:") or bool(_FATAL_RE.search(text))


class FallbackRunner:
    """Wraps a primary runner with at most one fallback attempt."""

    def __init__(self, primary: TaskRunner, fallback: TaskRunner) -> None:
        self._primary = primary
        self._fallback = fallback

    @property
    def name(self) -> str:
        return self._primary.name

    async def execute(self, task: Task) -> None:
        await self._primary.execute(task)
        if not is_fatal_output(task.output):
            return

        logger.warning(
            "Runner %s returned fatal output for task %s; retrying with %s",
            self._primary.name, task.id, self._fallback.name,
        )
        first = task.output
        task.output = None
        await self._fallback.execute(task)
        if is_fatal_output(task.output):
            raise RunnerError(
                f"Both runners failed: {first} / {task.output}",
                {"task_id": task.id},
            )
