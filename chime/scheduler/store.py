"""TaskStore — key/value persistence for one scheduling domain, over libsql."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from chime.db import connect
from chime.scheduler.models import Task, TaskEvent, format_ts, parse_ts

if TYPE_CHECKING:
    from pathlib import Path

    from chime.db import _AsyncConnection

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS kv (
    domain TEXT NOT NULL,
    key    TEXT NOT NULL,
    value  TEXT NOT NULL,
    PRIMARY KEY (domain, key)
)
"""

INDEX_KEY = "__index"
EVENTS_KEY = "__events"
ALARM_KEY = "__alarm"


def task_key(task_id: str) -> str:
    return f"task:{task_id}"


def last_run_key(task_id: str) -> str:
    return f"task:{task_id}:lastRun"


class TaskStore:
    """Persists task records, the id index, the event log and last-run markers.

    Every value is a JSON document stored under ``(domain, key)``; each
    single-key write commits on its own. :meth:`insert` is the one multi-key
    write and commits the task record and the index together.

    Pass an explicit *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    def __init__(self, domain: str = "shared", db_path: Path | None = None) -> None:
        self.domain = domain
        self._db_path = db_path
        self._initialised = False

    # -- Internal helpers ------------------------------------------------------

    async def _ensure_table(self, db: _AsyncConnection) -> None:
        if not self._initialised:
            await db.execute(_CREATE_TABLE)
            await db.commit()
            self._initialised = True

    async def _read(self, db: _AsyncConnection, key: str) -> Any:
        cursor = await db.execute(
            "SELECT value FROM kv WHERE domain = ? AND key = ?", (self.domain, key)
        )
        row = await cursor.fetchone()
        return json.loads(row[0]) if row else None

    async def _write(self, db: _AsyncConnection, key: str, value: Any) -> None:
        await db.execute(
            "INSERT OR REPLACE INTO kv (domain, key, value) VALUES (?, ?, ?)",
            (self.domain, key, json.dumps(value)),
        )

    # -- Raw key/value ---------------------------------------------------------

    async def get_value(self, key: str) -> Any:
        """Return the decoded JSON value at *key*, or None if absent."""
        async with connect(self._db_path) as db:
            await self._ensure_table(db)
            return await self._read(db, key)

    async def put_value(self, key: str, value: Any) -> None:
        async with connect(self._db_path) as db:
            await self._ensure_table(db)
            async with db.transaction():
                await self._write(db, key, value)

    async def delete_value(self, key: str) -> None:
        async with connect(self._db_path) as db:
            await self._ensure_table(db)
            async with db.transaction():
                await db.execute(
                    "DELETE FROM kv WHERE domain = ? AND key = ?", (self.domain, key)
                )

    # -- Tasks -----------------------------------------------------------------

    async def insert(self, task: Task) -> Task:
        """Persist a new task and append its id to the index in one transaction."""
        async with connect(self._db_path) as db:
            await self._ensure_table(db)
            async with db.transaction():
                index = await self._read(db, INDEX_KEY) or []
                await self._write(db, task_key(task.id), task.to_dict())
                if task.id not in index:
                    index.append(task.id)
                    await self._write(db, INDEX_KEY, index)
        logger.info("Added task: %s (%s)", task.title, task.id)
        return task

    async def put(self, task: Task) -> None:
        """Overwrite an existing task record."""
        await self.put_value(task_key(task.id), task.to_dict())

    async def get(self, task_id: str) -> Task | None:
        data = await self.get_value(task_key(task_id))
        return Task.from_dict(data) if data else None

    async def list_all(self) -> list[Task]:
        """Return every indexed task in insertion order, skipping missing records."""
        tasks: list[Task] = []
        async with connect(self._db_path) as db:
            await self._ensure_table(db)
            index = await self._read(db, INDEX_KEY) or []
            for task_id in index:
                data = await self._read(db, task_key(task_id))
                if data is None:
                    logger.warning("Index references missing task: %s", task_id)
                    continue
                tasks.append(Task.from_dict(data))
        return tasks

    # -- Last-run markers ------------------------------------------------------

    async def set_last_run(self, task_id: str, at: datetime) -> None:
        await self.put_value(last_run_key(task_id), {"at": format_ts(at)})

    async def get_last_run(self, task_id: str) -> datetime | None:
        marker = await self.get_value(last_run_key(task_id))
        return parse_ts(marker.get("at")) if marker else None

    # -- Events ----------------------------------------------------------------

    async def append_events(self, events: list[TaskEvent], *, limit: int) -> int:
        """Append *events* to the log, dropping the oldest beyond *limit*.

        Returns the number of entries dropped.
        """
        if not events:
            return 0
        async with connect(self._db_path) as db:
            await self._ensure_table(db)
            async with db.transaction():
                existing = await self._read(db, EVENTS_KEY) or []
                merged = existing + [event.to_dict() for event in events]
                dropped = max(0, len(merged) - limit)
                await self._write(db, EVENTS_KEY, merged[dropped:])
        if dropped:
            logger.debug("Event log trimmed by %d entries", dropped)
        return dropped

    async def get_events(self, since: datetime | None = None) -> list[TaskEvent]:
        """Return logged events in chronological order, strictly after *since* if given."""
        raw = await self.get_value(EVENTS_KEY) or []
        events = [TaskEvent.from_dict(item) for item in raw]
        if since is None:
            return events
        return [event for event in events if event.occurred_at > since]
