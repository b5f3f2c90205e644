"""SchedulerEngine — detects due and missed occurrences and reschedules tasks."""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from cadence.config import settings
from cadence.scheduler.dedup import OccurrenceLog, occurrence_key
from cadence.scheduler.events import TASK_DUE, TASK_OVERDUE, EventBus, TaskEvent
from cadence.scheduler.missed import advance_to_future, load_last_run, save_last_run
from cadence.scheduler.models import record_completion, record_miss
from cadence.scheduler.recurrence import RecurrenceEngine, RuleExhaustedError
from cadence.scheduler.timezone import TimezoneHandler

if TYPE_CHECKING:
    from collections.abc import Callable

    from cadence.scheduler.dedup import KeyPrecision
    from cadence.scheduler.models import Task
    from cadence.scheduler.protocols import StateSink, TaskSource

logger = logging.getLogger(__name__)

TICK_JOB_ID = "cadence-tick"
EMITTED_STATE_KEY = "emitted-occurrences"


class TaskNotFoundError(LookupError):
    """Raised by mutation calls for an unknown task ID."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SchedulerEngine:
    """Polls enabled tasks and emits ``task:due`` / ``task:overdue`` once per occurrence.

    A single APScheduler job drives the checks. Each tick re-arms itself at the
    next multiple of the interval, so drift does not accumulate.

    Args:
        store: Task source (reads are synchronous, ``save_task`` is awaited).
        state: Optional key/value store for the last-run timestamp and the
            emitted-occurrence keys. Without it recovery is a no-op and dedup
            state lives only as long as the process.
        recurrence: RecurrenceEngine (built from *timezone* when omitted).
        timezone: IANA timezone string (default from settings).
        interval_seconds: Seconds between checks.
        grace_period: Time after ``due_at`` before a task counts as missed.
        max_recovery_iterations: Cap on advances per task during recovery.
        emitted_keys_max: Size cap of each dedup log.
        tick_timeout_seconds: Age after which an in-progress check is ignored.
        due_key_precision: Occurrence key precision for routine polling.
        recovery_key_precision: Occurrence key precision for recovery.
        clock: Returns the current aware datetime, injectable for tests.
    """

    def __init__(
        self,
        store: TaskSource,
        state: StateSink | None = None,
        *,
        recurrence: RecurrenceEngine | None = None,
        timezone: str | None = None,
        interval_seconds: int | None = None,
        grace_period: timedelta | None = None,
        max_recovery_iterations: int | None = None,
        emitted_keys_max: int | None = None,
        tick_timeout_seconds: float | None = None,
        due_key_precision: KeyPrecision | None = None,
        recovery_key_precision: KeyPrecision | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._state = state
        if timezone or recurrence is None:
            self._tz = TimezoneHandler(timezone)
        else:
            self._tz = recurrence.timezone_handler
        self._recurrence = recurrence or RecurrenceEngine(timezone=self._tz)

        self._interval = interval_seconds or settings.scheduler_interval_seconds
        self._grace = (
            grace_period
            if grace_period is not None
            else timedelta(minutes=settings.missed_grace_period_minutes)
        )
        self._max_recovery_iterations = (
            max_recovery_iterations or settings.max_recovery_iterations
        )
        self._tick_timeout = tick_timeout_seconds or settings.tick_timeout_seconds
        self._due_precision = due_key_precision or settings.due_key_precision
        self._recovery_precision = recovery_key_precision or settings.recovery_key_precision
        self._clock = clock or _utcnow

        self._events = EventBus()
        max_keys = emitted_keys_max or settings.emitted_keys_max
        self._emitted_due = OccurrenceLog(max_keys)
        self._emitted_missed = OccurrenceLog(max_keys)
        self._emitted_loaded = False
        self._emitted_dirty = False

        self._scheduler = AsyncIOScheduler(timezone=self._tz.name)
        self._running = False
        self._checking = False
        self._check_started_at: float | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def recurrence(self) -> RecurrenceEngine:
        return self._recurrence

    @property
    def timezone_handler(self) -> TimezoneHandler:
        return self._tz

    def on(self, event_type: str, listener: Callable[[TaskEvent], Any]) -> Callable[[], None]:
        """Subscribe to ``task:due`` or ``task:overdue``. Returns an unsubscribe callable."""
        return self._events.on(event_type, listener)

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Restore dedup state, check immediately, then start periodic checks."""
        if self._running:
            return
        await self._load_emitted_state()
        self._scheduler.start()
        self._running = True
        self.run_once()
        self._schedule_next_tick()
        await self._flush_emitted_state()
        logger.info(
            "Scheduler started (interval=%ss, grace=%s, tz=%s)",
            self._interval,
            self._grace,
            self._tz.name,
        )

    async def stop(self) -> None:
        """Cancel the pending tick and shut down. A check in flight completes."""
        if not self._running:
            return
        self._running = False
        if self._scheduler.get_job(TICK_JOB_ID) is not None:
            self._scheduler.remove_job(TICK_JOB_ID)
        self._scheduler.shutdown(wait=False)
        await self._flush_emitted_state()
        await save_last_run(self._state, self._clock())
        logger.info("Scheduler stopped")

    def next_tick_delay(self, now: datetime) -> float:
        """Seconds until the next interval boundary after *now*."""
        return self._interval - (now.timestamp() % self._interval)

    def _schedule_next_tick(self) -> None:
        now = _utcnow()
        run_at = now + timedelta(seconds=self.next_tick_delay(now))
        self._scheduler.add_job(
            self._tick,
            trigger=DateTrigger(run_date=run_at),
            id=TICK_JOB_ID,
            name="cadence check",
            misfire_grace_time=None,
            replace_existing=True,
        )

    async def _tick(self) -> None:
        """Callback invoked by APScheduler. Checks, records the run, and re-arms."""
        if not self._running:
            return
        try:
            self.run_once()
            await self._flush_emitted_state()
            await save_last_run(self._state, self._clock())
        except Exception:
            logger.exception("Scheduler tick failed")
        finally:
            if self._running:
                self._schedule_next_tick()

    # -- Due / missed detection ------------------------------------------------

    def run_once(self) -> int:
        """Run a single check now. Returns the number of events emitted."""
        if self._checking:
            elapsed = time.monotonic() - (self._check_started_at or 0.0)
            if elapsed < self._tick_timeout:
                logger.debug("Check already in progress (%.1fs); skipping", elapsed)
                return 0
            logger.warning("Check has been running for %.1fs; forcing reset", elapsed)

        self._checking = True
        self._check_started_at = time.monotonic()
        try:
            emitted = self._check_due_tasks(self._clock())
        finally:
            self._checking = False
            self._check_started_at = None
        self._trim_emitted()
        return emitted

    def _check_due_tasks(self, now: datetime) -> int:
        emitted = 0
        for task in self._store.get_enabled_tasks():
            if not task.enabled:
                continue
            due_at = task.due_at
            if due_at > now:
                continue

            key = occurrence_key(task.id, due_at, self._due_precision)
            if key not in self._emitted_due:
                self._emitted_due.add(key)
                self._emitted_dirty = True
                logger.info("Task due: '%s' (%s) at %s", task.name, task.id, due_at.isoformat())
                self._events.emit(TASK_DUE, TaskEvent(task.id, due_at, "today", task))
                emitted += 1

            if self._is_missed(task, due_at, now) and key not in self._emitted_missed:
                self._emitted_missed.add(key)
                self._emitted_dirty = True
                logger.warning(
                    "Task missed: '%s' (%s) was due %s", task.name, task.id, due_at.isoformat()
                )
                self._events.emit(TASK_OVERDUE, TaskEvent(task.id, due_at, "overdue", task))
                emitted += 1
        return emitted

    def _is_missed(self, task: Task, due_at: datetime, now: datetime) -> bool:
        if now - due_at < self._grace:
            return False
        return task.last_completed_at is None or task.last_completed_at < due_at

    def _trim_emitted(self) -> None:
        dropped = self._emitted_due.trim() + self._emitted_missed.trim()
        if dropped:
            self._emitted_dirty = True
            logger.debug("Trimmed %d emitted occurrence key(s)", dropped)

    # -- Dedup persistence -----------------------------------------------------

    async def _load_emitted_state(self) -> None:
        if self._emitted_loaded:
            return
        self._emitted_loaded = True
        if self._state is None:
            return
        data = await self._state.load(EMITTED_STATE_KEY) or {}
        max_keys = self._emitted_due.max_keys
        # Persisted keys are older than anything emitted in this process
        self._emitted_due = OccurrenceLog(max_keys, [*data.get("due", []), *self._emitted_due])
        self._emitted_missed = OccurrenceLog(
            max_keys, [*data.get("missed", []), *self._emitted_missed]
        )
        logger.debug(
            "Restored %d due / %d missed occurrence key(s)",
            len(self._emitted_due),
            len(self._emitted_missed),
        )

    async def _flush_emitted_state(self) -> None:
        if self._state is None or not self._emitted_dirty:
            return
        await self._state.save(
            EMITTED_STATE_KEY,
            {"due": list(self._emitted_due), "missed": list(self._emitted_missed)},
        )
        self._emitted_dirty = False

    # -- Recovery --------------------------------------------------------------

    async def recover_missed_tasks(self) -> int:
        """Report occurrences missed while the process was down and advance stale tasks.

        Safe to call more than once. Returns the number of missed occurrences
        reported.
        """
        await self._load_emitted_state()
        now = self._clock()
        last_run = await load_last_run(self._state)
        if last_run is None:
            await save_last_run(self._state, now)
            logger.info("First run detected, no recovery needed")
            return 0

        logger.info("Recovering missed tasks since %s", last_run.isoformat())
        recovered = 0
        for task in list(self._store.get_enabled_tasks()):
            try:
                recovered += await self._recover_task(task, last_run, now)
            except Exception:
                logger.exception("Failed to recover task '%s' (%s)", task.name, task.id)

        self._trim_emitted()
        await self._flush_emitted_state()
        await save_last_run(self._state, now)
        logger.info("Missed task recovery completed (%d occurrence(s))", recovered)
        return recovered

    async def _recover_task(self, task: Task, last_run: datetime, now: datetime) -> int:
        # Polling before the crash may not have reached the grace period yet
        since = last_run - self._grace
        missed = self._recurrence.get_missed_occurrences(
            since, now, task.frequency, task.due_at, owner=task.id
        )
        reported = 0
        for missed_at in missed:
            key = occurrence_key(task.id, missed_at, self._recovery_precision)
            polled_key = occurrence_key(task.id, missed_at, self._due_precision)
            if key in self._emitted_missed or polled_key in self._emitted_missed:
                continue
            self._emitted_missed.add(key)
            self._emitted_dirty = True
            logger.warning(
                "Missed while offline: '%s' (%s) at %s", task.name, task.id, missed_at.isoformat()
            )
            self._events.emit(TASK_OVERDUE, TaskEvent(task.id, missed_at, "overdue", task))
            reported += 1

        if advance_to_future(task, now, self._recurrence, self._max_recovery_iterations):
            await self._store.save_task(task)
            logger.info(
                "Advanced task '%s' (%s) to %s", task.name, task.id, task.due_at.isoformat()
            )
        return reported

    # -- Mutations -------------------------------------------------------------

    def _require_task(self, task_id: str) -> Task:
        task = self._store.get_task(task_id)
        if task is None:
            msg = f"Task not found: {task_id}"
            raise TaskNotFoundError(msg)
        return task

    def _reschedule(self, task: Task, action: str) -> None:
        """Move the task to its next occurrence, or disable it if its rule has ended."""
        try:
            next_due = self._recurrence.calculate_next(task.due_at, task.frequency, owner=task.id)
        except RuleExhaustedError:
            task.enabled = False
            logger.info(
                "Task '%s' (%s) %s; rule has no further occurrences, disabling",
                task.name,
                task.id,
                action,
            )
            return
        task.due_at = next_due
        logger.info(
            "Task '%s' (%s) %s, next due %s", task.name, task.id, action, next_due.isoformat()
        )

    async def mark_task_done(self, task_id: str) -> Task:
        """Record a completion and advance the task to its next occurrence."""
        task = self._require_task(task_id)
        record_completion(task, self._clock())
        self._reschedule(task, "completed")
        await self._store.save_task(task)
        return task

    async def skip_occurrence(self, task_id: str) -> Task:
        """Record a miss and advance the task to its next occurrence."""
        task = self._require_task(task_id)
        record_miss(task, self._clock())
        self._reschedule(task, "skipped")
        await self._store.save_task(task)
        return task

    async def delay_task(self, task_id: str, minutes: int) -> Task:
        """Push the current occurrence back by *minutes*."""
        if minutes <= 0:
            msg = f"minutes must be positive, got {minutes}"
            raise ValueError(msg)
        task = self._require_task(task_id)
        task.due_at = task.due_at + timedelta(minutes=minutes)
        task.snooze_count += 1
        task.updated_at = self._clock()
        await self._store.save_task(task)
        logger.info(
            "Task '%s' (%s) delayed %d minute(s) to %s",
            task.name,
            task.id,
            minutes,
            task.due_at.isoformat(),
        )
        return task

    async def delay_to_tomorrow(self, task_id: str) -> Task:
        """Move the current occurrence to tomorrow, keeping its local clock time."""
        task = self._require_task(task_id)
        tz = self._tz
        if task.frequency.timezone and task.frequency.timezone != tz.name:
            tz = TimezoneHandler(task.frequency.timezone)
        now = self._clock()
        task.due_at = tz.tomorrow_at(task.due_at, now)
        task.snooze_count += 1
        task.updated_at = now
        await self._store.save_task(task)
        logger.info(
            "Task '%s' (%s) delayed to tomorrow: %s", task.name, task.id, task.due_at.isoformat()
        )
        return task

    def invalidate_rules(self, task_id: str) -> int:
        """Drop cached compiled rules for a task (call after its rule changes)."""
        return self._recurrence.rule_cache.invalidate_for_owner(task_id)
