"""Tests for Task and Frequency data models."""

import json
from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from cadence.scheduler.models import (
    MAX_RECENT_COMPLETIONS,
    CustomFrequency,
    DailyFrequency,
    MonthlyFrequency,
    Task,
    WeeklyFrequency,
    frequency_from_dict,
    frequency_to_dict,
    make_task_id,
    record_completion,
    record_miss,
)

DUE = datetime(2025, 1, 10, 9, 0, tzinfo=UTC)


def _make_task(**kwargs) -> Task:
    defaults = {
        "id": "t1",
        "name": "Water plants",
        "due_at": DUE,
        "frequency": DailyFrequency(),
    }
    defaults.update(kwargs)
    return Task(**defaults)


# -- Frequency -----------------------------------------------------------------


def test_daily_defaults() -> None:
    freq = frequency_from_dict({"kind": "daily"})
    assert isinstance(freq, DailyFrequency)
    assert freq.interval == 1
    assert freq.clock_time is None


def test_discriminator_selects_kind() -> None:
    assert isinstance(frequency_from_dict({"kind": "weekly"}), WeeklyFrequency)
    assert isinstance(frequency_from_dict({"kind": "monthly"}), MonthlyFrequency)
    assert isinstance(
        frequency_from_dict({"kind": "custom", "rule": "FREQ=DAILY"}), CustomFrequency
    )


def test_unknown_kind_rejected() -> None:
    with pytest.raises(ValidationError):
        frequency_from_dict({"kind": "yearly"})


def test_extra_fields_rejected() -> None:
    with pytest.raises(ValidationError):
        frequency_from_dict({"kind": "daily", "every": 2})


def test_interval_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        DailyFrequency(interval=0)


def test_weekdays_sorted_and_deduplicated() -> None:
    freq = WeeklyFrequency(weekdays=[4, 0, 4, 2])
    assert freq.weekdays == [0, 2, 4]


def test_empty_weekdays_rejected() -> None:
    with pytest.raises(ValidationError):
        WeeklyFrequency(weekdays=[])


def test_weekday_out_of_range_rejected() -> None:
    with pytest.raises(ValidationError):
        WeeklyFrequency(weekdays=[7])


def test_day_of_month_bounds() -> None:
    with pytest.raises(ValidationError):
        MonthlyFrequency(day_of_month=32)
    assert MonthlyFrequency(day_of_month=31).day_of_month == 31


def test_time_parsed_to_clock_time() -> None:
    assert DailyFrequency(time="07:45").clock_time == (7, 45)


@pytest.mark.parametrize("value", ["7:45", "24:00", "12:60", "noon"])
def test_bad_time_rejected(value: str) -> None:
    with pytest.raises(ValidationError):
        DailyFrequency(time=value)


def test_custom_requires_rule() -> None:
    with pytest.raises(ValidationError):
        CustomFrequency(rule="")


def test_frequency_to_dict_omits_unset() -> None:
    assert frequency_to_dict(WeeklyFrequency(weekdays=[1])) == {
        "kind": "weekly",
        "interval": 1,
        "weekdays": [1],
    }


# -- Task ----------------------------------------------------------------------


def test_naive_due_at_becomes_utc() -> None:
    task = _make_task(due_at=datetime(2025, 1, 10, 9, 0))
    assert task.due_at.tzinfo is UTC


def test_defaults() -> None:
    task = _make_task()
    assert task.enabled is True
    assert task.description == ""
    assert task.last_completed_at is None
    assert task.completion_count == 0
    assert task.recent_completions == []


def test_row_round_trip_keeps_custom_anchor() -> None:
    anchor = datetime(2025, 1, 1, 9, 0, tzinfo=UTC)
    task = _make_task(
        frequency=CustomFrequency(rule="FREQ=WEEKLY;BYDAY=MO", anchor=anchor, time="09:00"),
        last_completed_at=DUE,
        recent_completions=[DUE.isoformat()],
    )

    row = task.to_row()
    assert json.loads(row[3])["kind"] == "custom"

    restored = Task.from_row(row)
    assert restored == task
    assert restored.frequency.anchor == anchor


def test_custom_rule_anchor_pinned_to_first_due() -> None:
    task = _make_task(frequency=CustomFrequency(rule="FREQ=DAILY;COUNT=2"))
    assert task.frequency.anchor == task.due_at

    restored = Task.from_row(task.to_row())
    assert restored.frequency.anchor == task.due_at


def test_make_task_id_unique() -> None:
    ids = {make_task_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(len(i) == 32 for i in ids)


# -- Analytics -----------------------------------------------------------------


def test_record_completion_updates_counts() -> None:
    task = _make_task(snooze_count=3)
    now = datetime(2025, 1, 10, 9, 30, tzinfo=UTC)

    record_completion(task, now)

    assert task.completion_count == 1
    assert task.current_streak == 1
    assert task.best_streak == 1
    assert task.snooze_count == 0
    assert task.last_completed_at == now
    assert task.recent_completions == [now.isoformat()]


def test_recent_completions_capped() -> None:
    task = _make_task()
    for day in range(1, 15):
        record_completion(task, datetime(2025, 1, day, tzinfo=UTC))

    assert len(task.recent_completions) == MAX_RECENT_COMPLETIONS
    assert task.recent_completions[-1] == datetime(2025, 1, 14, tzinfo=UTC).isoformat()


def test_record_miss_breaks_streak_keeps_best() -> None:
    task = _make_task(current_streak=4, best_streak=4)

    record_miss(task, DUE)

    assert task.miss_count == 1
    assert task.current_streak == 0
    assert task.best_streak == 4
    assert task.updated_at == DUE
