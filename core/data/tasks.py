"""TaskStore -- durable record of task instances."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any

from core.data.store import Store, dump_json, from_ms, load_json, to_ms
from core.errors import InvalidRequestError, TaskNotFoundError
from core.models.tasks import RetryPolicy, Task, TaskDependency, TaskStatus
from core.time_context import TimeContext

logger = logging.getLogger(__name__)

# Statuses read as READY (see TaskStatus.from_db)
_READY_STATUSES = ("READY", "PENDING", "WAITING")

_COLUMNS = (
    "id", "brain_id", "status", "title", "description", "payload",
    "recurring_task_id", "model_override", "dependencies", "execute_at",
    "attempts", "retry_policy", "error", "output",
    "send_discord_notification", "created_at", "updated_at",
)

_IMMUTABLE_FIELDS = {"id", "created_at"}


class TaskStore:
    """CRUD and ready-queue queries over the tasks table."""

    def __init__(self, store: Store, time_context: TimeContext) -> None:
        self._store = store
        self._time = time_context

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        payload = load_json(row["payload"], {})
        # Older rows only carry the back-reference inside the payload
        recurring_id = row["recurring_task_id"] or payload.pop("recurringTaskId", None)
        retry_raw = load_json(row["retry_policy"], None)
        return Task(
            id=row["id"],
            brain_id=row["brain_id"],
            status=TaskStatus.from_db(row["status"]),
            title=row["title"],
            description=row["description"] or "",
            payload=payload,
            recurring_task_id=recurring_id,
            model_override=row["model_override"],
            dependencies=[TaskDependency(**d) for d in load_json(row["dependencies"], [])],
            execute_at=from_ms(row["execute_at"]),
            attempts=int(row["attempts"] or 0),
            retry_policy=RetryPolicy(**retry_raw) if retry_raw else None,
            error=row["error"],
            output=row["output"],
            send_discord_notification=bool(row["send_discord_notification"]),
            created_at=from_ms(row["created_at"]),
            updated_at=from_ms(row["updated_at"]),
        )

    @staticmethod
    def _task_to_params(task: Task) -> tuple:
        return (
            task.id,
            task.brain_id,
            task.status.value,
            task.title,
            task.description,
            dump_json(task.payload),
            task.recurring_task_id,
            task.model_override,
            dump_json([d.model_dump(mode="json") for d in task.dependencies]),
            to_ms(task.execute_at),
            task.attempts,
            task.retry_policy.model_dump_json() if task.retry_policy else None,
            task.error,
            task.output,
            int(task.send_discord_notification),
            to_ms(task.created_at),
            to_ms(task.updated_at),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, task: Task) -> Task:
        """Insert a new task. Timestamps are taken from the time context."""
        now = self._time.current_time
        task = task.model_copy(update={"created_at": now, "updated_at": now})
        placeholders = ", ".join("?" for _ in _COLUMNS)
        with self._store.transaction("create task") as db:
            db.execute(
                f"INSERT INTO tasks ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                self._task_to_params(task),
            )
        logger.info("Created task %s for brain %s: %s", task.id, task.brain_id, task.title)
        return task

    def update(self, task_id: str, **changes: Any) -> Task:
        """Apply a partial update and return the stored task.

        Passing None for a field clears it.
        """
        unknown = set(changes) - set(Task.model_fields)
        if unknown:
            raise InvalidRequestError(f"Unknown task fields: {sorted(unknown)}")
        if _IMMUTABLE_FIELDS & set(changes):
            raise InvalidRequestError(f"Fields cannot be changed: {sorted(_IMMUTABLE_FIELDS & set(changes))}")

        current = self.get(task_id)
        merged = current.model_dump()
        merged.update(changes)
        merged["updated_at"] = self._time.current_time
        task = Task.model_validate(merged)

        assignments = ", ".join(f"{col} = ?" for col in _COLUMNS[1:])
        params = self._task_to_params(task)
        with self._store.transaction("update task") as db:
            db.execute(f"UPDATE tasks SET {assignments} WHERE id = ?", (*params[1:], task.id))
        return task

    def update_status(self, task_id: str, status: TaskStatus, **changes: Any) -> Task:
        return self.update(task_id, status=status, **changes)

    def delete(self, task_id: str) -> bool:
        with self._store.transaction("delete task") as db:
            cur = db.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        deleted = cur.rowcount > 0
        if deleted:
            logger.info("Deleted task %s", task_id)
        return deleted

    def requeue_interrupted(self) -> int:
        """Move tasks left EXECUTING by a previous process back to READY."""
        now_ms = to_ms(self._time.current_time)
        with self._store.transaction("requeue interrupted tasks") as db:
            cur = db.execute(
                "UPDATE tasks SET status = 'READY', updated_at = ? WHERE status = 'EXECUTING'",
                (now_ms,),
            )
        if cur.rowcount:
            logger.warning("Re-queued %d task(s) interrupted mid-execution", cur.rowcount)
        return cur.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find(self, task_id: str) -> Task | None:
        rows = self._store.query("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return self._row_to_task(rows[0]) if rows else None

    def get(self, task_id: str) -> Task:
        task = self.find(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def list_all(self) -> list[Task]:
        rows = self._store.query("SELECT * FROM tasks ORDER BY created_at ASC, rowid ASC")
        return [self._row_to_task(r) for r in rows]

    def find_by_brain(self, brain_id: str) -> list[Task]:
        rows = self._store.query(
            "SELECT * FROM tasks WHERE brain_id = ? ORDER BY created_at ASC, rowid ASC",
            (brain_id,),
        )
        return [self._row_to_task(r) for r in rows]

    def find_by_status(self, status: TaskStatus) -> list[Task]:
        statuses = _READY_STATUSES if status == TaskStatus.READY else (status.value,)
        marks = ", ".join("?" for _ in statuses)
        rows = self._store.query(
            f"SELECT * FROM tasks WHERE status IN ({marks}) ORDER BY created_at ASC, rowid ASC",
            statuses,
        )
        return [self._row_to_task(r) for r in rows]

    def find_by_recurring(self, recurring_id: str) -> list[Task]:
        rows = self._store.query(
            "SELECT * FROM tasks WHERE recurring_task_id = ? ORDER BY created_at ASC, rowid ASC",
            (recurring_id,),
        )
        return [self._row_to_task(r) for r in rows]

    def get_ready_tasks(self, brain_id: str, now: datetime | None = None) -> list[Task]:
        """READY tasks for a brain whose execute_at is unset or elapsed, oldest first."""
        now_ms = to_ms(now or self._time.current_time)
        marks = ", ".join("?" for _ in _READY_STATUSES)
        rows = self._store.query(
            f"""SELECT * FROM tasks
                WHERE brain_id = ?
                  AND status IN ({marks})
                  AND (execute_at IS NULL OR execute_at <= ?)
                ORDER BY created_at ASC, rowid ASC""",
            (brain_id, *_READY_STATUSES, now_ms),
        )
        return [self._row_to_task(r) for r in rows]

    def unmet_hard_dependencies(self, task: Task) -> list[str]:
        """IDs of HARD dependencies that have not COMPLETED.

        A dependency that no longer exists counts as met.
        """
        blocking: list[str] = []
        for dep_id in task.hard_dependencies:
            dep = self.find(dep_id)
            if dep is None:
                logger.warning("Task %s depends on missing task %s; ignoring", task.id, dep_id)
                continue
            if dep.status != TaskStatus.COMPLETED:
                blocking.append(dep_id)
        return blocking
