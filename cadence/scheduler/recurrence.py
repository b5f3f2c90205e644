"""RecurrenceEngine — computes next and past occurrences of a frequency."""

from __future__ import annotations

import calendar
import hashlib
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from dateutil.relativedelta import relativedelta

from cadence.config import settings
from cadence.scheduler.models import (
    CustomFrequency,
    DailyFrequency,
    MonthlyFrequency,
    WeeklyFrequency,
)
from cadence.scheduler.rule_cache import RuleCache
from cadence.scheduler.timezone import TimezoneHandler

if TYPE_CHECKING:
    from collections.abc import Iterator

    from cadence.scheduler.models import Frequency

logger = logging.getLogger(__name__)


class RuleExhaustedError(ValueError):
    """Raised when a custom rule has no occurrence after the given instant."""


def rule_cache_key(owner: str | None, frequency: CustomFrequency, dtstart: datetime) -> str:
    """Build the ``"<owner>:<hash>"`` cache key for a custom rule."""
    material = "|".join((frequency.rule, dtstart.isoformat(), frequency.timezone or ""))
    digest = hashlib.sha1(material.encode(), usedforsecurity=False).hexdigest()[:12]
    return f"{owner or 'rule'}:{digest}"


class RecurrenceEngine:
    """Calculates occurrence instants for daily, weekly, monthly and RRULE tasks.

    Arithmetic is done on local wall-clock time, so "every day at 09:00" stays
    at 09:00 across DST changes.

    Args:
        timezone: Default timezone handler (frequencies may override the zone).
        rule_cache: Cache for compiled custom rules.
        max_iterations: Step limit for range and missed-occurrence walks.
    """

    def __init__(
        self,
        timezone: TimezoneHandler | None = None,
        rule_cache: RuleCache | None = None,
        max_iterations: int | None = None,
    ) -> None:
        self._tz = timezone or TimezoneHandler()
        self._rule_cache = rule_cache or RuleCache()
        self._max_iterations = max_iterations or settings.max_occurrence_iterations

    @property
    def rule_cache(self) -> RuleCache:
        return self._rule_cache

    @property
    def timezone_handler(self) -> TimezoneHandler:
        return self._tz

    # -- Next occurrence -------------------------------------------------------

    def calculate_next(
        self,
        current_due: datetime,
        frequency: Frequency,
        *,
        owner: str | None = None,
        dtstart: datetime | None = None,
    ) -> datetime:
        """Return the occurrence following *current_due*.

        *owner* namespaces the rule cache key for custom frequencies
        (normally the task ID). A custom rule starts at its ``anchor``, else at
        *dtstart*, else at *current_due*. Raises TypeError for an unknown
        frequency and RuleExhaustedError when a custom rule has ended.
        """
        local = self._tz.localize(current_due, frequency.timezone)

        if isinstance(frequency, DailyFrequency):
            next_date = local + timedelta(days=frequency.interval)
        elif isinstance(frequency, WeeklyFrequency):
            next_date = self._next_weekly(local, frequency.interval, frequency.weekdays)
        elif isinstance(frequency, MonthlyFrequency):
            next_date = self._next_monthly(local, frequency.interval, frequency.day_of_month)
        elif isinstance(frequency, CustomFrequency):
            next_date = self._next_custom(local, frequency, owner, dtstart)
        else:
            msg = f"Unknown frequency type: {type(frequency).__name__}"
            raise TypeError(msg)

        clock = frequency.clock_time
        if clock is not None:
            next_date = self._tz.at_time(next_date, *clock)
        return next_date

    def _next_weekly(
        self, current: datetime, interval: int, weekdays: list[int] | None
    ) -> datetime:
        if not weekdays:
            return current + timedelta(weeks=interval)

        current_day = current.weekday()
        ordered = sorted(weekdays)
        for weekday in ordered:
            if weekday > current_day:
                return current + timedelta(days=weekday - current_day)

        # Nothing left this week: first configured weekday, `interval` weeks on
        days_to_end_of_week = 7 - current_day
        days = days_to_end_of_week + (interval - 1) * 7 + ordered[0]
        return current + timedelta(days=days)

    def _next_monthly(
        self, current: datetime, interval: int, day_of_month: int | None
    ) -> datetime:
        base = current + relativedelta(months=interval)
        target_day = day_of_month or current.day
        days_in_month = calendar.monthrange(base.year, base.month)[1]
        return base.replace(day=min(target_day, days_in_month))

    def _next_custom(
        self,
        current: datetime,
        frequency: CustomFrequency,
        owner: str | None,
        dtstart: datetime | None,
    ) -> datetime:
        dtstart = frequency.anchor or dtstart or current
        key = rule_cache_key(owner, frequency, dtstart)
        rule = self._rule_cache.get_or_parse(
            key, frequency.rule, dtstart, frequency.timezone or self._tz.name
        )
        next_date = rule.after(current, inc=False)
        if next_date is None:
            msg = f"Rule has no occurrence after {current.isoformat()}: {frequency.rule}"
            raise RuleExhaustedError(msg)
        return self._tz.localize(next_date, frequency.timezone)

    # -- Enumeration -----------------------------------------------------------

    def _walk(
        self, first: datetime, end: datetime, frequency: Frequency, owner: str | None
    ) -> Iterator[datetime]:
        """Yield occurrences from *first* up to *end*, bounded by max_iterations."""
        start = current = self._tz.localize(first, frequency.timezone)
        for _ in range(self._max_iterations):
            if current > end:
                return
            yield current
            try:
                following = self.calculate_next(current, frequency, owner=owner, dtstart=start)
            except RuleExhaustedError:
                return
            if following <= current:
                logger.warning(
                    "Frequency %s did not advance past %s; stopping walk",
                    frequency.kind,
                    current.isoformat(),
                )
                return
            current = following
        logger.warning(
            "Occurrence walk hit the %d iteration limit (%s)",
            self._max_iterations,
            frequency.kind,
        )

    def get_occurrences_in_range(
        self,
        start: datetime,
        end: datetime,
        frequency: Frequency,
        first_occurrence: datetime,
        *,
        owner: str | None = None,
    ) -> list[datetime]:
        """Occurrences in ``[start, end]`` walking forward from *first_occurrence*."""
        return [
            occurrence
            for occurrence in self._walk(first_occurrence, end, frequency, owner)
            if occurrence >= start
        ]

    def get_missed_occurrences(
        self,
        since: datetime,
        until: datetime,
        frequency: Frequency,
        first_occurrence: datetime,
        *,
        owner: str | None = None,
    ) -> list[datetime]:
        """Occurrences in ``(since, until]`` walking forward from *first_occurrence*."""
        return [
            occurrence
            for occurrence in self._walk(first_occurrence, until, frequency, owner)
            if occurrence > since
        ]
