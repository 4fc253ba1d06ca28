"""SQLite storage layer -- one connection, schema and row helpers.

Tasks and recurring definitions live in SQLite. Timestamps are stored as
millisecond epoch integers and booleans as 0/1 so schedule fields round-trip
without loss.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from core.errors import StoreError

logger = logging.getLogger(__name__)


def to_ms(dt: datetime | None) -> int | None:
    """datetime -> millisecond epoch (naive values are taken as UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(round(dt.timestamp() * 1000))


def from_ms(value: int | float | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


def dump_json(value: Any) -> str:
    return json.dumps(value if value is not None else {}, ensure_ascii=False, default=str)


def load_json(raw: str | None, default: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding malformed JSON column value: %.80s", raw)
        return default


class Store:
    """Owns the SQLite connection shared by TaskStore and RecurringTaskStore.

    Writes are serialized by the event loop: every store method runs to
    completion without awaiting, so a single connection is enough.
    """

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path)
        self._db: sqlite3.Connection | None = None
        self._init_sqlite()

    # ------------------------------------------------------------------
    # SQLite
    # ------------------------------------------------------------------

    def _init_sqlite(self) -> None:
        """Open the database and create or migrate tables."""
        if str(self._db_path) != ":memory:":
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(str(self._db_path))
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")

        self._db.executescript("""
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                brain_id TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'READY',
                title TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                payload TEXT NOT NULL DEFAULT '{}',
                execute_at INTEGER,
                attempts INTEGER NOT NULL DEFAULT 0,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS recurring_tasks (
                id TEXT PRIMARY KEY,
                brain_id TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                pattern TEXT NOT NULL,
                payload TEXT NOT NULL DEFAULT '{}',
                active INTEGER NOT NULL DEFAULT 1,
                last_executed_at INTEGER,
                next_execution_at INTEGER,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );
        """)

        self._migrate("tasks", {
            "recurring_task_id": "TEXT",
            "model_override": "TEXT",
            "dependencies": "TEXT NOT NULL DEFAULT '[]'",
            "retry_policy": "TEXT",
            "error": "TEXT",
            "output": "TEXT",
            "send_discord_notification": "INTEGER NOT NULL DEFAULT 1",
        })
        self._migrate("recurring_tasks", {
            "cron_expression": "TEXT",
            "interval_minutes": "INTEGER",
            "model_override": "TEXT",
            "send_discord_notification": "INTEGER NOT NULL DEFAULT 1",
            "triggers_report": "INTEGER NOT NULL DEFAULT 0",
            "report_delay_minutes": "INTEGER NOT NULL DEFAULT 0",
        })

        self._db.executescript("""
            CREATE INDEX IF NOT EXISTS idx_tasks_brain_status
                ON tasks(brain_id, status, execute_at);
            CREATE INDEX IF NOT EXISTS idx_tasks_recurring
                ON tasks(recurring_task_id);
            CREATE INDEX IF NOT EXISTS idx_recurring_due
                ON recurring_tasks(active, next_execution_at);
        """)
        self._db.commit()
        logger.info("SQLite initialized at %s", self._db_path)

    def _migrate(self, table: str, columns: dict[str, str]) -> None:
        """Add any missing columns to an existing table."""
        existing = {row["name"] for row in self.db.execute(f"PRAGMA table_info({table})")}
        for name, decl in columns.items():
            if name in existing:
                continue
            self.db.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
            logger.info("Store migration: added %s.%s", table, name)

    @property
    def db(self) -> sqlite3.Connection:
        if self._db is None:
            raise RuntimeError("Store not initialized")
        return self._db

    @contextmanager
    def transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Run a block of writes atomically, translating sqlite errors."""
        try:
            with self.db:
                yield self.db
        except sqlite3.Error as exc:
            logger.exception("SQLite error during %s", operation)
            raise StoreError(f"{operation} failed: {exc}", {"operation": operation}) from exc

    def query(self, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        try:
            return self.db.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            logger.exception("SQLite query failed: %s", sql)
            raise StoreError(f"query failed: {exc}") from exc

    def close(self) -> None:
        """Close the SQLite connection."""
        if self._db:
            self._db.close()
            self._db = None
