"""RecurrenceValidator — static checks on RRULE text before it is committed.

Problems are reported, not raised: ``validate()`` returns a
:class:`ValidationResult` so a caller can show every error and warning to the
user at once.
"""

from __future__ import annotations

import calendar
import logging
import re
import zoneinfo
from dataclasses import dataclass, field
from datetime import UTC, datetime

from dateutil import parser as date_parser

from cadence.scheduler.rule_cache import compile_rule

logger = logging.getLogger(__name__)

_FREQUENCIES = {"SECONDLY", "MINUTELY", "HOURLY", "DAILY", "WEEKLY", "MONTHLY", "YEARLY"}
_SUB_HOUR_FREQUENCIES = {"SECONDLY", "MINUTELY"}
HIGH_COUNT_THRESHOLD = 1000

# Longest each month can be (February in a leap year)
_MAX_MONTH_DAYS = {
    1: 31, 2: 29, 3: 31, 4: 30, 5: 31, 6: 30,
    7: 31, 8: 31, 9: 30, 10: 31, 11: 30, 12: 31,
}

# BYDAY entry without an ordinal prefix, e.g. "MO" but not "1MO" or "-1FR"
_PLAIN_WEEKDAY = re.compile(r"^(MO|TU|WE|TH|FR|SA|SU)$")


@dataclass
class ValidationResult:
    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def error(self, message: str) -> None:
        self.errors.append(message)
        self.valid = False

    def warn(self, message: str) -> None:
        self.warnings.append(message)


def parse_rule_parts(rule_text: str) -> dict[str, str]:
    """Split ``[RRULE:]NAME=VALUE;...`` into an upper-cased name -> value dict.

    Raises ValueError on malformed pairs, duplicate names, or a missing or
    unknown FREQ.
    """
    text = rule_text.strip()
    if text.upper().startswith("RRULE:"):
        text = text[len("RRULE:"):]

    parts: dict[str, str] = {}
    for pair in text.split(";"):
        if not pair:
            continue
        name, sep, value = pair.partition("=")
        if not sep or not name or not value:
            msg = f"malformed rule part {pair!r}"
            raise ValueError(msg)
        name = name.strip().upper()
        if name in parts:
            msg = f"duplicate rule part {name}"
            raise ValueError(msg)
        parts[name] = value.strip()

    freq = parts.get("FREQ", "").upper()
    if not freq:
        msg = "FREQ is required"
        raise ValueError(msg)
    if freq not in _FREQUENCIES:
        msg = f"unknown FREQ {freq!r}"
        raise ValueError(msg)
    return parts


def _int_list(value: str) -> list[int]:
    return [int(item) for item in value.split(",") if item]


def _parse_until(value: str, timezone: str | None) -> datetime:
    until = date_parser.parse(value)
    if until.tzinfo is None:
        until = until.replace(tzinfo=zoneinfo.ZoneInfo(timezone) if timezone else UTC)
    return until


def _localize(dtstart: datetime, timezone: str | None) -> datetime:
    if dtstart.tzinfo is None:
        return dtstart.replace(tzinfo=zoneinfo.ZoneInfo(timezone) if timezone else UTC)
    return dtstart


class RecurrenceValidator:
    """Validates RRULE strings independently of any task."""

    def validate(
        self,
        rule_text: str,
        dtstart: datetime,
        timezone: str | None = None,
    ) -> ValidationResult:
        result = ValidationResult()

        if not isinstance(rule_text, str) or not rule_text.strip():
            result.error("RRULE string is required")
            return result
        if not isinstance(dtstart, datetime):
            result.error("Valid DTSTART date is required")
            return result
        if timezone is not None:
            try:
                zoneinfo.ZoneInfo(timezone)
            except (zoneinfo.ZoneInfoNotFoundError, ValueError):
                result.error(f"Unknown timezone: {timezone}")
                return result

        try:
            parts = parse_rule_parts(rule_text)
        except ValueError as exc:
            result.error(f"Invalid RRULE syntax: {exc}")
            return result

        start = _localize(dtstart, timezone)
        self._check_bounds(parts, start, timezone, result)
        impossible = self._check_month_days(parts, result)
        self._check_performance(parts, result)
        self._check_ambiguity(parts, result)

        if result.valid:
            # an impossible month/day rule would make the occurrence search scan to year 9999
            self._check_compiles(rule_text, start, timezone, result, find_first=not impossible)
        return result

    def validate_syntax(self, rule_text: str) -> bool:
        """True when *rule_text* parses and compiles."""
        if not isinstance(rule_text, str) or not rule_text.strip():
            return False
        try:
            parse_rule_parts(rule_text)
            compile_rule(rule_text, datetime.now(UTC))
        except ValueError:
            return False
        return True

    def is_expired(self, rule_text: str, dtstart: datetime, as_of: datetime) -> bool:
        """True when the rule can produce no occurrence at or after *as_of*.

        Unbounded rules never expire. Raises ValueError for unparsable rules.
        """
        parts = parse_rule_parts(rule_text)
        start = _localize(dtstart, None)
        as_of = _localize(as_of, None)

        if "UNTIL" in parts and _parse_until(parts["UNTIL"], None) < as_of:
            return True
        if "COUNT" in parts:
            rule = compile_rule(rule_text, start)
            return rule.after(as_of, inc=True) is None
        return False

    # -- Checks ----------------------------------------------------------------

    def _check_bounds(
        self,
        parts: dict[str, str],
        start: datetime,
        timezone: str | None,
        result: ValidationResult,
    ) -> None:
        if "COUNT" in parts and "UNTIL" in parts:
            result.error("COUNT and UNTIL are mutually exclusive")

        for name in ("COUNT", "INTERVAL"):
            if name not in parts:
                continue
            try:
                number = int(parts[name])
            except ValueError:
                result.error(f"{name} must be an integer, got {parts[name]!r}")
                continue
            if number <= 0:
                result.error(f"{name} must be a positive integer, got {number}")

        if "UNTIL" in parts:
            try:
                until = _parse_until(parts["UNTIL"], timezone)
            except (ValueError, OverflowError):
                result.error(f"Invalid UNTIL value: {parts['UNTIL']!r}")
                return
            if start > until:
                result.error("DTSTART after UNTIL: the rule can never produce an occurrence")

    def _check_month_days(self, parts: dict[str, str], result: ValidationResult) -> bool:
        try:
            months = _int_list(parts.get("BYMONTH", ""))
            month_days = _int_list(parts.get("BYMONTHDAY", ""))
        except ValueError:
            result.error("BYMONTH and BYMONTHDAY must be comma-separated integers")
            return False

        bad_months = [m for m in months if not 1 <= m <= 12]
        if bad_months:
            result.error(f"BYMONTH values must be in 1..12, got {bad_months}")
            return False
        bad_days = [d for d in month_days if d == 0 or not -31 <= d <= 31]
        if bad_days:
            result.error(f"BYMONTHDAY values must be in -31..-1 or 1..31, got {bad_days}")
            return False
        if not months:
            return False

        impossible = False
        for day in month_days:
            # -N counts back from the month end, so it needs at least N days too
            if any(abs(day) <= _MAX_MONTH_DAYS[m] for m in months):
                continue
            names = ", ".join(calendar.month_name[m] for m in months)
            result.warn(f"Day {day} does not exist in {names}")
            impossible = True
        return impossible

    def _check_performance(self, parts: dict[str, str], result: ValidationResult) -> None:
        freq = parts["FREQ"].upper()
        if freq in _SUB_HOUR_FREQUENCIES:
            result.warn(
                f"FREQ={freq} fires more than once per hour and may cause performance issues"
            )
        try:
            count = int(parts.get("COUNT", "0"))
        except ValueError:
            return
        if count > HIGH_COUNT_THRESHOLD:
            result.warn(f"High COUNT value ({count}) may cause performance issues")

    def _check_ambiguity(self, parts: dict[str, str], result: ValidationResult) -> None:
        if parts["FREQ"].upper() != "MONTHLY" or "BYDAY" not in parts or "BYSETPOS" in parts:
            return
        days = [day.strip().upper() for day in parts["BYDAY"].split(",")]
        if any(_PLAIN_WEEKDAY.match(day) for day in days):
            result.warn(
                "MONTHLY rule with BYDAY but no BYSETPOS matches every such weekday in the month"
            )

    def _check_compiles(
        self,
        rule_text: str,
        start: datetime,
        timezone: str | None,
        result: ValidationResult,
        *,
        find_first: bool = True,
    ) -> None:
        try:
            rule = compile_rule(rule_text, start, timezone)
        except ValueError as exc:
            result.error(f"Invalid RRULE syntax: {exc}")
            return
        if find_first and rule.after(start, inc=True) is None:
            result.warn("Rule produces no occurrences from DTSTART")
