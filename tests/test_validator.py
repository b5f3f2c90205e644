"""Tests for RecurrenceValidator."""

from datetime import UTC, datetime

import pytest

from cadence.scheduler.validator import RecurrenceValidator, parse_rule_parts

JAN_2026 = datetime(2026, 1, 1, tzinfo=UTC)


@pytest.fixture
def validator() -> RecurrenceValidator:
    return RecurrenceValidator()


# -- validate ------------------------------------------------------------------


class TestValidate:
    @pytest.mark.parametrize("rule", ["RRULE:FREQ=DAILY;INTERVAL=1", "FREQ=DAILY;INTERVAL=1"])
    def test_accepts_rule_with_or_without_prefix(self, validator, rule):
        result = validator.validate(rule, JAN_2026)
        assert result.valid is True
        assert result.errors == []

    def test_rejects_invalid_syntax(self, validator):
        result = validator.validate("INVALID_RRULE", JAN_2026)
        assert result.valid is False
        assert result.errors[0].startswith("Invalid RRULE syntax")

    def test_rejects_unknown_freq(self, validator):
        result = validator.validate("FREQ=FORTNIGHTLY", JAN_2026)
        assert result.valid is False

    def test_rejects_empty_rule(self, validator):
        result = validator.validate("", JAN_2026)
        assert result.valid is False
        assert "RRULE string is required" in result.errors

    def test_rejects_invalid_dtstart(self, validator):
        result = validator.validate("FREQ=DAILY", "not a date")
        assert result.valid is False
        assert "Valid DTSTART date is required" in result.errors

    def test_rejects_unknown_timezone(self, validator):
        result = validator.validate("FREQ=DAILY", JAN_2026, "Mars/Olympus_Mons")
        assert result.valid is False
        assert result.errors == ["Unknown timezone: Mars/Olympus_Mons"]

    def test_accepts_timezone(self, validator):
        result = validator.validate("RRULE:FREQ=DAILY", datetime(2026, 1, 1), "Europe/London")
        assert result.valid is True

    def test_count_and_until_conflict(self, validator):
        result = validator.validate("RRULE:FREQ=DAILY;COUNT=5;UNTIL=20261231T000000Z", JAN_2026)
        assert result.valid is False
        assert any("COUNT" in e and "UNTIL" in e for e in result.errors)

    def test_dtstart_after_until(self, validator):
        result = validator.validate(
            "RRULE:FREQ=DAILY;UNTIL=20260101T000000Z", datetime(2026, 12, 31, tzinfo=UTC)
        )
        assert result.valid is False
        assert any("after UNTIL" in e for e in result.errors)

    @pytest.mark.parametrize(
        ("rule", "name"),
        [
            ("RRULE:FREQ=DAILY;COUNT=-1", "COUNT"),
            ("RRULE:FREQ=DAILY;COUNT=0", "COUNT"),
            ("RRULE:FREQ=DAILY;INTERVAL=-1", "INTERVAL"),
            ("RRULE:FREQ=DAILY;INTERVAL=two", "INTERVAL"),
        ],
    )
    def test_non_positive_numbers(self, validator, rule, name):
        result = validator.validate(rule, JAN_2026)
        assert result.valid is False
        assert any(name in e for e in result.errors)

    def test_bymonth_out_of_range(self, validator):
        result = validator.validate("FREQ=YEARLY;BYMONTH=13", JAN_2026)
        assert result.valid is False

    def test_warns_on_impossible_month_day(self, validator):
        result = validator.validate("RRULE:FREQ=MONTHLY;BYMONTHDAY=31;BYMONTH=2", JAN_2026)
        assert result.valid is True
        assert any("February" in w for w in result.warnings)
        assert not any("no occurrences" in w for w in result.warnings)

    def test_warns_on_impossible_negative_month_day(self, validator):
        result = validator.validate("FREQ=SECONDLY;BYMONTH=2;BYMONTHDAY=-30", JAN_2026)
        assert result.valid is True
        assert "Day -30 does not exist in February" in result.warnings
        assert not any("no occurrences" in w for w in result.warnings)

    def test_negative_month_day_that_fits_is_quiet(self, validator):
        result = validator.validate("FREQ=MONTHLY;BYMONTH=2;BYMONTHDAY=-1", JAN_2026)
        assert result.warnings == []

    def test_no_month_day_warning_when_some_month_fits(self, validator):
        result = validator.validate("FREQ=YEARLY;BYMONTHDAY=31;BYMONTH=2,3", JAN_2026)
        assert result.warnings == []

    def test_past_until_after_dtstart_is_valid(self, validator):
        result = validator.validate(
            "RRULE:FREQ=DAILY;UNTIL=20200131T000000Z", datetime(2020, 1, 1, tzinfo=UTC)
        )
        assert result.valid is True

    def test_warns_on_sub_hour_frequency(self, validator):
        result = validator.validate("RRULE:FREQ=MINUTELY", JAN_2026)
        assert any("performance" in w for w in result.warnings)

    def test_warns_on_high_count(self, validator):
        result = validator.validate("RRULE:FREQ=DAILY;COUNT=5000", JAN_2026)
        assert result.valid is True
        assert any("performance" in w for w in result.warnings)

    def test_warns_on_monthly_byday_without_setpos(self, validator):
        result = validator.validate("FREQ=MONTHLY;BYDAY=MO", JAN_2026)
        assert any("BYSETPOS" in w for w in result.warnings)

    @pytest.mark.parametrize("rule", ["FREQ=MONTHLY;BYDAY=1MO", "FREQ=MONTHLY;BYDAY=MO;BYSETPOS=1"])
    def test_ordinal_or_setpos_is_unambiguous(self, validator, rule):
        result = validator.validate(rule, JAN_2026)
        assert result.warnings == []


# -- validate_syntax -----------------------------------------------------------


class TestValidateSyntax:
    @pytest.mark.parametrize("rule", ["RRULE:FREQ=DAILY;INTERVAL=1", "FREQ=DAILY;INTERVAL=1"])
    def test_valid(self, validator, rule):
        assert validator.validate_syntax(rule) is True

    @pytest.mark.parametrize("rule", ["INVALID", "", None, "FREQ=DAILY;FREQ=WEEKLY"])
    def test_invalid(self, validator, rule):
        assert validator.validate_syntax(rule) is False


# -- is_expired ----------------------------------------------------------------


class TestIsExpired:
    def test_until_in_past(self, validator):
        assert validator.is_expired(
            "RRULE:FREQ=DAILY;UNTIL=20200101T000000Z",
            datetime(2020, 1, 1, tzinfo=UTC),
            JAN_2026,
        )

    def test_until_in_future(self, validator):
        assert not validator.is_expired(
            "RRULE:FREQ=DAILY;UNTIL=20301231T000000Z", JAN_2026, JAN_2026
        )

    def test_count_exhausted(self, validator):
        assert validator.is_expired(
            "RRULE:FREQ=DAILY;COUNT=1", JAN_2026, datetime(2026, 1, 10, tzinfo=UTC)
        )

    def test_count_remaining(self, validator):
        assert not validator.is_expired(
            "RRULE:FREQ=DAILY;COUNT=30", JAN_2026, datetime(2026, 1, 10, tzinfo=UTC)
        )

    def test_unbounded_never_expires(self, validator):
        assert not validator.is_expired(
            "RRULE:FREQ=DAILY", JAN_2026, datetime(2026, 1, 10, tzinfo=UTC)
        )

    def test_invalid_rule_raises(self, validator):
        with pytest.raises(ValueError):
            validator.is_expired("INVALID", JAN_2026, JAN_2026)


# -- parse_rule_parts ----------------------------------------------------------


def test_parse_rule_parts_normalises_names() -> None:
    assert parse_rule_parts("rrule:freq=WEEKLY;byday=MO,WE;") == {
        "FREQ": "WEEKLY",
        "BYDAY": "MO,WE",
    }


def test_parse_rule_parts_requires_freq() -> None:
    with pytest.raises(ValueError, match="FREQ is required"):
        parse_rule_parts("INTERVAL=2")
