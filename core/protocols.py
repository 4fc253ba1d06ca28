"""Core protocols -- the extension points of the task engine.

The core imports these protocols. Plugins implement them.
The core NEVER imports concrete implementations.

All protocols use Python's structural subtyping (typing.Protocol):
if your class has the right methods, it implements the protocol.
"""

from __future__ import annotations

from typing import Any, Callable, Coroutine, Protocol, runtime_checkable

from core.models.events import Event
from core.models.tasks import Task


# ---------------------------------------------------------------------------
# 1. EventBus -- lifecycle notifications
# ---------------------------------------------------------------------------

@runtime_checkable
class EventBus(Protocol):
    """Publish/subscribe bus for task lifecycle events.

    Default implementation: AsyncIOBus (in-process, instance-scoped).
    """

    async def emit(self, event: Event) -> None:
        """Run every handler for the event's type and wait for all of them."""
        ...

    def on(self, event_type: str, handler: Callable[[Event], Coroutine[Any, Any, None]]) -> None:
        ...

    def off(self, event_type: str, handler: Callable[[Event], Coroutine[Any, Any, None]]) -> None:
        ...


# ---------------------------------------------------------------------------
# 2. TaskRunner -- the external unit-of-work backend
# ---------------------------------------------------------------------------

@runtime_checkable
class TaskRunner(Protocol):
    """Performs the actual work of a task.

    The engine treats runners as opaque: execute() either sets
    `task.output` and returns, or raises with a descriptive message.
    Timeouts are the runner's responsibility.
    """

    @property
    def name(self) -> str:
        """Runner name, e.g. 'openclaw'."""
        ...

    async def execute(self, task: Task) -> None:
        ...


# ---------------------------------------------------------------------------
# 3. Notifier -- outbound chat channel
# ---------------------------------------------------------------------------

@runtime_checkable
class Notifier(Protocol):
    """Delivers short text notifications to a chat channel.

    send_text raises when delivery fails; the caller decides how to log it.
    """

    @property
    def name(self) -> str:
        """Notifier name, e.g. 'discord'."""
        ...

    async def send_text(self, text: str, channel_id: str | None = None) -> None:
        ...


# ---------------------------------------------------------------------------
# 4. MessageHandler -- per-brain chat behaviour
# ---------------------------------------------------------------------------

@runtime_checkable
class MessageHandler(Protocol):
    """Strategy a brain delegates inbound user messages to.

    Returns the reply text, or None when there is nothing to say.
    """

    async def handle(self, brain_id: str, text: str) -> str | None:
        ...
