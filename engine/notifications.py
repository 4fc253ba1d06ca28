"""Task notifications -- announces lifecycle events on chat channels.

Subscribes to task execution events and delivers a short text through
every registered notifier, addressed to the owning brain's channel.
"""

from __future__ import annotations

import logging

from core.models.events import Event, EventTypes
from core.protocols import EventBus
from core.registry import PluginRegistry
from engine.brains import BrainRegistry

logger = logging.getLogger(__name__)

OUTPUT_PREVIEW_CHARS = 1000


def _preview(text: str | None, limit: int = OUTPUT_PREVIEW_CHARS) -> str:
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


def format_notification(event: Event) -> str | None:
    payload = event.payload
    title = payload.get("title") or payload.get("task_id", "?")

    if event.type == EventTypes.TASK_EXECUTION_STARTED:
        return f"▶️ **Task started:** {title}"
    if event.type == EventTypes.TASK_EXECUTION_COMPLETED:
        body = _preview(payload.get("output"))
        return f"✅ **Task completed:** {title}" + (f"\n\n{body}" if body else "")
    if event.type == EventTypes.TASK_EXECUTION_FAILED:
        return f"❌ **Task failed:** {title}\n\n{_preview(payload.get('error'))}"
    return None


class TaskNotificationService:
    """Deliver task lifecycle events via registered notifiers."""

    EVENT_TYPES = (
        EventTypes.TASK_EXECUTION_STARTED,
        EventTypes.TASK_EXECUTION_COMPLETED,
        EventTypes.TASK_EXECUTION_FAILED,
    )

    def __init__(self, bus: EventBus, registry: PluginRegistry, brains: BrainRegistry) -> None:
        self._registry = registry
        self._brains = brains
        for event_type in self.EVENT_TYPES:
            bus.on(event_type, self.handle_event)

    async def handle_event(self, event: Event) -> None:
        payload = event.payload or {}
        if not payload.get("send_discord_notification", True):
            return

        text = format_notification(event)
        if not text:
            return

        channel_id = self._channel_for(payload.get("brain_id"))
        delivered = 0
        for notifier in self._registry.get_all("notifier"):
            try:
                await notifier.send_text(text, channel_id=channel_id)
                delivered += 1
            except Exception:
                logger.exception("Failed delivering %s via %s", event.type, notifier.name)

        if delivered == 0:
            logger.debug("No notifier delivered %s for task %s", event.type, payload.get("task_id"))

    def _channel_for(self, brain_id: str | None) -> str | None:
        if brain_id and self._brains.has(brain_id):
            return self._brains.get(brain_id).config.channel_id
        return None
