"""Cadence entry point — runs the reminder scheduler until interrupted."""

import asyncio
import logging
import signal

from cadence.config import settings
from cadence.scheduler.engine import SchedulerEngine
from cadence.scheduler.events import TASK_DUE, TASK_OVERDUE, TaskEvent
from cadence.scheduler.store import StateStore, TaskStore

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


def _log_due(event: TaskEvent) -> None:
    logger.info("Reminder: '%s' is due (%s)", event.task.name, event.due_at.isoformat())


def _log_overdue(event: TaskEvent) -> None:
    logger.warning("Reminder: '%s' is overdue (%s)", event.task.name, event.due_at.isoformat())


async def run() -> None:
    """Load tasks, recover missed occurrences, then poll until SIGINT/SIGTERM."""
    store = TaskStore()
    await store.load()
    state = StateStore()
    engine = SchedulerEngine(store, state)
    engine.on(TASK_DUE, _log_due)
    engine.on(TASK_OVERDUE, _log_overdue)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await engine.recover_missed_tasks()
    await engine.start()
    try:
        await stop.wait()
    finally:
        await engine.stop()


def main() -> None:
    """Start the scheduler."""
    logger.info(
        "Starting Cadence (db=%s, tz=%s)", settings.database_path, settings.scheduler_timezone
    )
    asyncio.run(run())


if __name__ == "__main__":
    main()
