"""Follow-up report scheduling for recurring tasks.

When a recurring instance completes and its definition has
`triggers_report`, a report task is queued for the same brain after
`report_delay_minutes`. Report tasks never trigger further reports.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from core.data.recurring import RecurringTaskStore
from core.data.tasks import TaskStore
from core.models.events import Event, EventTypes
from core.models.tasks import Task
from core.protocols import EventBus
from core.time_context import TimeContext

logger = logging.getLogger(__name__)

REPORT_MARKER = "report_for_task_id"


class ReportScheduler:
    def __init__(
        self,
        bus: EventBus,
        task_store: TaskStore,
        recurring_store: RecurringTaskStore,
        time_context: TimeContext,
    ) -> None:
        self._tasks = task_store
        self._recurring = recurring_store
        self._time = time_context
        bus.on(EventTypes.TASK_EXECUTION_COMPLETED, self.handle_completed)

    async def handle_completed(self, event: Event) -> None:
        recurring_id = event.payload.get("recurring_task_id")
        task_id = event.payload.get("task_id")
        if not recurring_id or not task_id:
            return

        definition = self._recurring.find(recurring_id)
        if definition is None or not definition.triggers_report:
            return

        source = self._tasks.find(task_id)
        if source is None or REPORT_MARKER in source.payload:
            return

        self.schedule_report(source, definition.report_delay_minutes)

    def schedule_report(self, source: Task, delay_minutes: int) -> Task:
        execute_at = self._time.current_time + timedelta(minutes=max(delay_minutes, 0))
        report = self._tasks.create(Task(
            brain_id=source.brain_id,
            title=f"Report: {source.title}",
            description=(
                f"Write a report on the results of the task '{source.title}'.\n\n"
                f"Task output:\n{source.output or '(none)'}"
            ),
            payload={REPORT_MARKER: source.id},
            recurring_task_id=source.recurring_task_id,
            model_override=source.model_override,
            execute_at=execute_at,
            send_discord_notification=source.send_discord_notification,
        ))
        logger.info("Scheduled report %s for task %s at %s", report.id, source.id, execute_at.isoformat())
        return report
