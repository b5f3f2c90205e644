"""Task and Frequency data models."""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter, field_validator

MAX_RECENT_COMPLETIONS = 10

_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


# -- Frequency -----------------------------------------------------------------


class _FrequencyBase(BaseModel):
    """Fields shared by every frequency kind.

    Attributes:
        time: Optional fixed local clock time (``"HH:MM"``) forced onto every
            computed occurrence.
        timezone: Optional IANA timezone overriding the scheduler default.
    """

    time: str | None = None
    timezone: str | None = None

    model_config = {"extra": "forbid"}

    @field_validator("time")
    @classmethod
    def _check_time(cls, value: str | None) -> str | None:
        if value is not None and not _TIME_PATTERN.match(value):
            msg = f"time must be HH:MM, got {value!r}"
            raise ValueError(msg)
        return value

    @property
    def clock_time(self) -> tuple[int, int] | None:
        """Return ``(hour, minute)`` for the fixed time, or None."""
        if self.time is None:
            return None
        hours, minutes = self.time.split(":")
        return int(hours), int(minutes)


class DailyFrequency(_FrequencyBase):
    """Every *interval* days."""

    kind: Literal["daily"] = "daily"
    interval: int = Field(default=1, ge=1)


class WeeklyFrequency(_FrequencyBase):
    """Every *interval* weeks, optionally on specific weekdays (Monday = 0)."""

    kind: Literal["weekly"] = "weekly"
    interval: int = Field(default=1, ge=1)
    weekdays: list[int] | None = None

    @field_validator("weekdays")
    @classmethod
    def _check_weekdays(cls, value: list[int] | None) -> list[int] | None:
        if value is None:
            return None
        if not value:
            msg = "weekdays must not be empty when present"
            raise ValueError(msg)
        if any(day < 0 or day > 6 for day in value):
            msg = f"weekdays must be in 0..6, got {value}"
            raise ValueError(msg)
        return sorted(set(value))


class MonthlyFrequency(_FrequencyBase):
    """Every *interval* months on *day_of_month* (clamped for short months)."""

    kind: Literal["monthly"] = "monthly"
    interval: int = Field(default=1, ge=1)
    day_of_month: int | None = Field(default=None, ge=1, le=31)


class CustomFrequency(_FrequencyBase):
    """An RFC 5545 RRULE evaluated by the rule engine.

    ``anchor`` is the rule's DTSTART. A task pins it to its first due date
    when it is not given, so COUNT bounds are counted from a fixed start.
    """

    kind: Literal["custom"] = "custom"
    rule: str = Field(min_length=1)
    anchor: datetime | None = None


Frequency = Annotated[
    DailyFrequency | WeeklyFrequency | MonthlyFrequency | CustomFrequency,
    Field(discriminator="kind"),
]

_frequency_adapter: TypeAdapter[Frequency] = TypeAdapter(Frequency)


def frequency_from_dict(data: dict) -> Frequency:
    """Deserialize a frequency. Raises ``pydantic.ValidationError`` on bad input."""
    return _frequency_adapter.validate_python(data)


def frequency_to_dict(frequency: Frequency) -> dict:
    """Serialize a frequency to a JSON-safe dict."""
    return frequency.model_dump(mode="json", exclude_none=True)


# -- Task ----------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def _format_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass
class Task:
    """A recurring obligation.

    Attributes:
        id: Unique identifier (UUID hex).
        name: Human-readable name.
        due_at: The pending occurrence (timezone-aware).
        frequency: How the task repeats.
        enabled: Disabled tasks are never reported as due.
        description: Optional free text.
        created_at: Creation instant.
        updated_at: Last mutation instant.
        last_completed_at: Instant of the most recent completion.
        snooze_count: Delays since the last completion.
        completion_count: Total completions.
        miss_count: Total skipped occurrences.
        current_streak: Consecutive completions without a skip.
        best_streak: Longest streak seen.
        recent_completions: Most recent completion instants (ISO strings).
    """

    id: str
    name: str
    due_at: datetime
    frequency: Frequency
    enabled: bool = True
    description: str = ""
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    last_completed_at: datetime | None = None
    snooze_count: int = 0
    completion_count: int = 0
    miss_count: int = 0
    current_streak: int = 0
    best_streak: int = 0
    recent_completions: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.due_at.tzinfo is None:
            self.due_at = self.due_at.replace(tzinfo=UTC)
        if isinstance(self.frequency, CustomFrequency) and self.frequency.anchor is None:
            self.frequency = self.frequency.model_copy(update={"anchor": self.due_at})

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``tasks`` column order."""
        return (
            self.id,
            self.name,
            self.due_at.isoformat(),
            json.dumps(frequency_to_dict(self.frequency)),
            int(self.enabled),
            self.description,
            self.created_at.isoformat(),
            self.updated_at.isoformat(),
            _format_dt(self.last_completed_at),
            self.snooze_count,
            self.completion_count,
            self.miss_count,
            self.current_streak,
            self.best_streak,
            json.dumps(self.recent_completions),
        )

    @classmethod
    def from_row(cls, row: tuple) -> Task:
        """Deserialize from a SQLite row tuple."""
        return cls(
            id=row[0],
            name=row[1],
            due_at=_parse_dt(row[2]),
            frequency=frequency_from_dict(json.loads(row[3])),
            enabled=bool(row[4]),
            description=row[5] or "",
            created_at=_parse_dt(row[6]),
            updated_at=_parse_dt(row[7]),
            last_completed_at=_parse_dt(row[8]),
            snooze_count=row[9],
            completion_count=row[10],
            miss_count=row[11],
            current_streak=row[12],
            best_streak=row[13],
            recent_completions=json.loads(row[14] or "[]"),
        )


def make_task_id() -> str:
    """Generate a new task ID."""
    return uuid.uuid4().hex


def record_completion(task: Task, now: datetime | None = None) -> None:
    """Update completion analytics on *task* in place."""
    now = now or _utcnow()
    task.completion_count += 1
    task.current_streak += 1
    task.best_streak = max(task.best_streak, task.current_streak)
    task.recent_completions.append(now.isoformat())
    del task.recent_completions[:-MAX_RECENT_COMPLETIONS]
    task.snooze_count = 0
    task.last_completed_at = now
    task.updated_at = now


def record_miss(task: Task, now: datetime | None = None) -> None:
    """Count a skipped occurrence and break the streak."""
    task.miss_count += 1
    task.current_streak = 0
    task.updated_at = now or _utcnow()
