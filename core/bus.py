"""AsyncIOBus -- in-process async pub/sub for task lifecycle events.

Handlers for an event run concurrently and emit() returns once all of them
have finished. Optionally, emitted events are appended to daily JSONL files
for audit.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Coroutine

from core.models.events import Event

logger = logging.getLogger(__name__)

Handler = Callable[[Event], Coroutine[Any, Any, None]]


class AsyncIOBus:
    """Instance-scoped event bus. Implements the EventBus protocol.

    Usage:
        bus = AsyncIOBus()
        bus.on(EventTypes.TASK_EXECUTION_COMPLETED, notify)
        await bus.emit(event)
    """

    def __init__(self, events_dir: Path | None = None) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._wildcard_handlers: list[Handler] = []
        self._events_dir = events_dir
        if self._events_dir is not None:
            self._events_dir.mkdir(parents=True, exist_ok=True)

    @property
    def name(self) -> str:
        return "asyncio_bus"

    async def emit(self, event: Event) -> None:
        """Dispatch an event to its handlers and wait for all of them."""
        if self._events_dir is not None:
            self._persist(event)

        handlers = self._handlers.get(event.type, []) + self._wildcard_handlers
        if not handlers:
            logger.debug("No handlers for event type: %s", event.type)
            return

        logger.debug(
            "Emitting %s to %d handler(s) [correlation=%s]",
            event.type,
            len(handlers),
            event.correlation_id,
        )

        tasks = [asyncio.create_task(self._safe_invoke(h, event)) for h in handlers]
        await asyncio.gather(*tasks, return_exceptions=True)

    def on(self, event_type: str, handler: Handler) -> None:
        """Register a handler for events of the given type.

        Use event_type="*" to receive all events.
        """
        if event_type == "*":
            self._wildcard_handlers.append(handler)
        else:
            self._handlers.setdefault(event_type, []).append(handler)
        logger.debug("Handler registered for '%s': %s", event_type, handler)

    def off(self, event_type: str, handler: Handler) -> None:
        """Remove a previously registered handler."""
        handlers = self._wildcard_handlers if event_type == "*" else self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    async def _safe_invoke(self, handler: Handler, event: Event) -> None:
        try:
            await handler(event)
        except Exception:
            logger.exception(
                "Error in event handler for %s [correlation=%s]",
                event.type,
                event.correlation_id,
            )

    def _persist(self, event: Event) -> None:
        """Append event to today's JSONL audit file."""
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        filepath = self._events_dir / f"{today}.jsonl"
        try:
            with open(filepath, "a") as f:
                f.write(event.model_dump_json() + "\n")
        except OSError:
            logger.exception("Failed to persist event to %s", filepath)

    def handler_count(self, event_type: str | None = None) -> int:
        """Return the number of handlers, optionally filtered by event type."""
        if event_type is None:
            total = sum(len(hs) for hs in self._handlers.values())
            return total + len(self._wildcard_handlers)
        if event_type == "*":
            return len(self._wildcard_handlers)
        return len(self._handlers.get(event_type, []))
