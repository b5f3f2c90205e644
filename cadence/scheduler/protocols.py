"""Protocols for the collaborators the scheduler reads from and writes to."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from cadence.scheduler.models import Task


@runtime_checkable
class TaskSource(Protocol):
    """Source of truth for task existence and persistence of mutations."""

    def get_enabled_tasks(self) -> list[Task]:
        """Return every task with ``enabled == True``."""
        ...

    def get_task(self, task_id: str) -> Task | None:
        """Look up a task by ID."""
        ...

    async def save_task(self, task: Task) -> Any:
        """Persist a mutated task."""
        ...


@runtime_checkable
class StateSink(Protocol):
    """Key/value storage for small JSON documents (e.g. the last-run timestamp)."""

    async def load(self, key: str) -> dict[str, Any] | None:
        ...

    async def save(self, key: str, value: dict[str, Any]) -> None:
        ...
