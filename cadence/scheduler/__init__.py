"""Recurring task scheduling — models, recurrence, persistence, and the check loop."""

from cadence.scheduler.engine import SchedulerEngine, TaskNotFoundError
from cadence.scheduler.events import TASK_DUE, TASK_OVERDUE, TaskEvent
from cadence.scheduler.models import Task, make_task_id
from cadence.scheduler.recurrence import RecurrenceEngine, RuleExhaustedError
from cadence.scheduler.rule_cache import RuleCache
from cadence.scheduler.store import StateStore, TaskStore
from cadence.scheduler.timezone import TimezoneHandler
from cadence.scheduler.validator import RecurrenceValidator, ValidationResult

__all__ = [
    "TASK_DUE",
    "TASK_OVERDUE",
    "RecurrenceEngine",
    "RecurrenceValidator",
    "RuleCache",
    "RuleExhaustedError",
    "SchedulerEngine",
    "StateStore",
    "Task",
    "TaskEvent",
    "TaskNotFoundError",
    "TaskStore",
    "TimezoneHandler",
    "ValidationResult",
    "make_task_id",
]
