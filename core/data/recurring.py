"""RecurringTaskStore -- durable record of recurring task definitions."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Any

from core.data.store import Store, dump_json, from_ms, load_json, to_ms
from core.errors import InvalidRequestError, RecurringTaskNotFoundError
from core.models.schedule import RecurrencePattern, RecurringTaskDefinition
from core.time_context import TimeContext

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id", "brain_id", "title", "description", "pattern", "cron_expression",
    "interval_minutes", "payload", "model_override", "active",
    "last_executed_at", "next_execution_at", "send_discord_notification",
    "triggers_report", "report_delay_minutes", "created_at", "updated_at",
)

_IMMUTABLE_FIELDS = {"id", "created_at"}


class RecurringTaskStore:
    """CRUD and due queries over the recurring_tasks table."""

    def __init__(
        self,
        store: Store,
        time_context: TimeContext,
        first_run_delay: timedelta = timedelta(hours=1),
    ) -> None:
        self._store = store
        self._time = time_context
        self._first_run_delay = first_run_delay

    @staticmethod
    def _row_to_definition(row: sqlite3.Row) -> RecurringTaskDefinition:
        payload = load_json(row["payload"], {})
        interval = row["interval_minutes"]
        if interval is None and payload.get("intervalMinutes") is not None:
            interval = int(payload["intervalMinutes"])
        return RecurringTaskDefinition(
            id=row["id"],
            brain_id=row["brain_id"],
            title=row["title"],
            description=row["description"] or "",
            pattern=RecurrencePattern(row["pattern"]),
            cron_expression=row["cron_expression"],
            interval_minutes=interval,
            payload=payload,
            model_override=row["model_override"],
            active=bool(row["active"]),
            last_executed_at=from_ms(row["last_executed_at"]),
            next_execution_at=from_ms(row["next_execution_at"]),
            send_discord_notification=bool(row["send_discord_notification"]),
            triggers_report=bool(row["triggers_report"]),
            report_delay_minutes=int(row["report_delay_minutes"] or 0),
            created_at=from_ms(row["created_at"]),
            updated_at=from_ms(row["updated_at"]),
        )

    @staticmethod
    def _definition_to_params(d: RecurringTaskDefinition) -> tuple:
        return (
            d.id,
            d.brain_id,
            d.title,
            d.description,
            d.pattern.value,
            d.cron_expression,
            d.interval_minutes,
            dump_json(d.payload),
            d.model_override,
            int(d.active),
            to_ms(d.last_executed_at),
            to_ms(d.next_execution_at),
            int(d.send_discord_notification),
            int(d.triggers_report),
            d.report_delay_minutes,
            to_ms(d.created_at),
            to_ms(d.updated_at),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, definition: RecurringTaskDefinition) -> RecurringTaskDefinition:
        """Insert a definition.

        An unset next_execution_at defaults to now + first_run_delay and is
        authoritative until the first mark_executed.
        """
        now = self._time.current_time
        changes: dict[str, Any] = {"created_at": now, "updated_at": now}
        if definition.next_execution_at is None:
            changes["next_execution_at"] = now + self._first_run_delay
        definition = definition.model_copy(update=changes)

        placeholders = ", ".join("?" for _ in _COLUMNS)
        with self._store.transaction("create recurring task") as db:
            db.execute(
                f"INSERT INTO recurring_tasks ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                self._definition_to_params(definition),
            )
        logger.info(
            "Created recurring task %s (%s) for brain %s, first run %s",
            definition.id,
            definition.pattern.value,
            definition.brain_id,
            definition.next_execution_at.isoformat(),
        )
        return definition

    def update(self, recurring_id: str, **changes: Any) -> RecurringTaskDefinition:
        """Apply a partial update in one statement and return the stored record."""
        unknown = set(changes) - set(RecurringTaskDefinition.model_fields)
        if unknown:
            raise InvalidRequestError(f"Unknown recurring task fields: {sorted(unknown)}")
        if _IMMUTABLE_FIELDS & set(changes):
            raise InvalidRequestError(f"Fields cannot be changed: {sorted(_IMMUTABLE_FIELDS & set(changes))}")

        current = self.get(recurring_id)
        merged = current.model_dump()
        merged.update(changes)
        merged["updated_at"] = self._time.current_time
        definition = RecurringTaskDefinition.model_validate(merged)

        assignments = ", ".join(f"{col} = ?" for col in _COLUMNS[1:])
        params = self._definition_to_params(definition)
        with self._store.transaction("update recurring task") as db:
            db.execute(
                f"UPDATE recurring_tasks SET {assignments} WHERE id = ?",
                (*params[1:], definition.id),
            )
        return definition

    def set_active(self, recurring_id: str, active: bool) -> RecurringTaskDefinition:
        return self.update(recurring_id, active=active)

    def delete(self, recurring_id: str) -> bool:
        with self._store.transaction("delete recurring task") as db:
            cur = db.execute("DELETE FROM recurring_tasks WHERE id = ?", (recurring_id,))
        deleted = cur.rowcount > 0
        if deleted:
            logger.info("Deleted recurring task %s", recurring_id)
        return deleted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find(self, recurring_id: str) -> RecurringTaskDefinition | None:
        rows = self._store.query("SELECT * FROM recurring_tasks WHERE id = ?", (recurring_id,))
        return self._row_to_definition(rows[0]) if rows else None

    def get(self, recurring_id: str) -> RecurringTaskDefinition:
        definition = self.find(recurring_id)
        if definition is None:
            raise RecurringTaskNotFoundError(recurring_id)
        return definition

    def list_all(self) -> list[RecurringTaskDefinition]:
        rows = self._store.query("SELECT * FROM recurring_tasks ORDER BY created_at ASC, rowid ASC")
        return [self._row_to_definition(r) for r in rows]

    def find_by_brain(self, brain_id: str) -> list[RecurringTaskDefinition]:
        rows = self._store.query(
            "SELECT * FROM recurring_tasks WHERE brain_id = ? ORDER BY created_at ASC, rowid ASC",
            (brain_id,),
        )
        return [self._row_to_definition(r) for r in rows]

    def find_active(self) -> list[RecurringTaskDefinition]:
        rows = self._store.query(
            "SELECT * FROM recurring_tasks WHERE active = 1 ORDER BY next_execution_at ASC"
        )
        return [self._row_to_definition(r) for r in rows]

    def find_due(self, now: datetime | None = None) -> list[RecurringTaskDefinition]:
        """Active definitions whose next_execution_at has elapsed, earliest first."""
        now_ms = to_ms(now or self._time.current_time)
        rows = self._store.query(
            """SELECT * FROM recurring_tasks
               WHERE active = 1
                 AND next_execution_at IS NOT NULL
                 AND next_execution_at <= ?
               ORDER BY next_execution_at ASC, rowid ASC""",
            (now_ms,),
        )
        return [self._row_to_definition(r) for r in rows]
