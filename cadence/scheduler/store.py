"""TaskStore and StateStore — aiosqlite persistence for tasks and scheduler state."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import aiosqlite

from cadence.config import settings
from cadence.scheduler.models import Task

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_TASKS_TABLE = """
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    due_at TEXT NOT NULL,
    frequency TEXT NOT NULL,
    enabled INTEGER NOT NULL DEFAULT 1,
    description TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_completed_at TEXT,
    snooze_count INTEGER NOT NULL DEFAULT 0,
    completion_count INTEGER NOT NULL DEFAULT 0,
    miss_count INTEGER NOT NULL DEFAULT 0,
    current_streak INTEGER NOT NULL DEFAULT 0,
    best_streak INTEGER NOT NULL DEFAULT 0,
    recent_completions TEXT NOT NULL DEFAULT '[]'
)
"""

_CREATE_STATE_TABLE = """
CREATE TABLE IF NOT EXISTS scheduler_state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""

_UPSERT_TASK = """
INSERT OR REPLACE INTO tasks
    (id, name, due_at, frequency, enabled, description, created_at, updated_at,
     last_completed_at, snooze_count, completion_count, miss_count,
     current_streak, best_streak, recent_completions)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


async def _connect(db_path: Path, schema: str) -> aiosqlite.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(db_path))
    await db.execute(schema)
    await db.commit()
    return db


class TaskStore:
    """Persists tasks in SQLite and serves reads from memory.

    Reads are synchronous so the scheduler's check can run without awaiting;
    call :meth:`load` once before use. Writes go to SQLite first, then to the
    in-memory map. Pass an explicit *db_path* for test isolation
    (e.g. ``tmp_path / "test.db"``).
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._tasks: dict[str, Task] = {}
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self) -> int:
        """Read every task from SQLite into memory. Returns the task count."""
        db = await _connect(self._db_path, _CREATE_TASKS_TABLE)
        try:
            cursor = await db.execute("SELECT * FROM tasks ORDER BY created_at")
            rows = await cursor.fetchall()
        finally:
            await db.close()

        tasks: dict[str, Task] = {}
        for row in rows:
            try:
                task = Task.from_row(tuple(row))
            except ValueError:
                logger.exception("Skipping unreadable task row: %s", row[0])
                continue
            tasks[task.id] = task
        self._tasks = tasks
        self._loaded = True
        logger.info("Loaded %d task(s) from %s", len(tasks), self._db_path)
        return len(tasks)

    # -- Reads -----------------------------------------------------------------

    def get_task(self, task_id: str) -> Task | None:
        """Return a task by ID, or None if not found."""
        return self._tasks.get(task_id)

    def get_enabled_tasks(self) -> list[Task]:
        return [task for task in self._tasks.values() if task.enabled]

    def list_tasks(self) -> list[Task]:
        return list(self._tasks.values())

    # -- Writes ----------------------------------------------------------------

    async def save_task(self, task: Task) -> Task:
        """Insert or replace a task. Returns the same task object."""
        db = await _connect(self._db_path, _CREATE_TASKS_TABLE)
        try:
            await db.execute(_UPSERT_TASK, task.to_row())
            await db.commit()
        finally:
            await db.close()
        self._tasks[task.id] = task
        logger.debug("Saved task: %s (%s)", task.name, task.id)
        return task

    async def add_task(self, task: Task) -> Task:
        """Insert a new task. Raises ValueError if the ID already exists."""
        if task.id in self._tasks:
            msg = f"Task already exists: {task.id}"
            raise ValueError(msg)
        await self.save_task(task)
        logger.info("Added task: %s (%s)", task.name, task.id)
        return task

    async def delete_task(self, task_id: str) -> bool:
        """Delete a task. Returns True if a row was removed."""
        db = await _connect(self._db_path, _CREATE_TASKS_TABLE)
        try:
            cursor = await db.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            await db.commit()
            deleted = cursor.rowcount > 0
        finally:
            await db.close()
        self._tasks.pop(task_id, None)
        if deleted:
            logger.info("Deleted task: %s", task_id)
        return deleted


class StateStore:
    """Small JSON key/value store for scheduler bookkeeping (last run, dedup keys)."""

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path

    async def load(self, key: str) -> dict[str, Any] | None:
        db = await _connect(self._db_path, _CREATE_STATE_TABLE)
        try:
            cursor = await db.execute(
                "SELECT value FROM scheduler_state WHERE key = ?", (key,)
            )
            row = await cursor.fetchone()
        finally:
            await db.close()
        return json.loads(row[0]) if row else None

    async def save(self, key: str, value: dict[str, Any]) -> None:
        db = await _connect(self._db_path, _CREATE_STATE_TABLE)
        try:
            await db.execute(
                "INSERT OR REPLACE INTO scheduler_state (key, value) VALUES (?, ?)",
                (key, json.dumps(value)),
            )
            await db.commit()
        finally:
            await db.close()
