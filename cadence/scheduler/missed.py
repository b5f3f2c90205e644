"""Missed-occurrence recovery — helpers for the startup catch-up pass."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from cadence.scheduler.recurrence import RuleExhaustedError

if TYPE_CHECKING:
    from cadence.scheduler.models import Task
    from cadence.scheduler.protocols import StateSink
    from cadence.scheduler.recurrence import RecurrenceEngine

logger = logging.getLogger(__name__)

LAST_RUN_KEY = "last-run-timestamp"


async def load_last_run(state: StateSink | None) -> datetime | None:
    """Return the persisted last-run instant, or None on the very first run."""
    if state is None:
        return None
    data = await state.load(LAST_RUN_KEY)
    if not data or not data.get("timestamp"):
        return None
    last_run = datetime.fromisoformat(data["timestamp"])
    if last_run.tzinfo is None:
        last_run = last_run.replace(tzinfo=UTC)
    return last_run


async def save_last_run(state: StateSink | None, timestamp: datetime) -> None:
    if state is None:
        return
    await state.save(LAST_RUN_KEY, {"timestamp": timestamp.astimezone(UTC).isoformat()})


def advance_to_future(
    task: Task,
    now: datetime,
    recurrence: RecurrenceEngine,
    max_iterations: int,
) -> bool:
    """Move ``task.due_at`` to its first occurrence at or after *now*.

    Stops after *max_iterations* steps, leaving the task wherever it got to.
    Returns True if ``due_at`` moved.
    """
    current_due = task.due_at
    if current_due >= now:
        return False

    next_due = current_due
    iterations = 0
    while next_due < now and iterations < max_iterations:
        try:
            next_due = recurrence.calculate_next(
                next_due, task.frequency, owner=task.id, dtstart=current_due
            )
        except RuleExhaustedError:
            logger.info("Rule for task %s has ended; not advancing further", task.id)
            break
        iterations += 1

    if next_due < now:
        logger.warning(
            "Task '%s' (%s) still in the past after %d advance(s): %s",
            task.name,
            task.id,
            iterations,
            next_due.isoformat(),
        )
    if next_due > current_due:
        task.due_at = next_due
        return True
    return False
