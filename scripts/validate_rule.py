#!/usr/bin/env python3
"""Check an RRULE before saving it on a task.

Usage examples:
    # Validate against today's date
    uv run python scripts/validate_rule.py "FREQ=WEEKLY;BYDAY=MO,WE"

    # Anchor at a specific DTSTART in a timezone
    uv run python scripts/validate_rule.py "FREQ=YEARLY;BYMONTH=2;BYMONTHDAY=30" \
        --dtstart 2025-01-01T09:00:00 --timezone America/Chicago

    # Show the next few occurrences as well
    uv run python scripts/validate_rule.py "FREQ=MONTHLY;BYDAY=-1FR" --preview 5
"""

import argparse
import sys
from datetime import UTC, datetime
from itertools import islice
from pathlib import Path

# Allow running from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from cadence.scheduler.rule_cache import compile_rule
from cadence.scheduler.validator import RecurrenceValidator


def _parse_dtstart(value: str | None) -> datetime:
    if not value:
        return datetime.now(UTC).replace(microsecond=0)
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        print(f"ERROR: invalid --dtstart {value!r}", file=sys.stderr)
        sys.exit(2)


def main() -> None:
    parser = argparse.ArgumentParser(description="Validate an RRULE string")
    parser.add_argument("rule", help="RRULE text, e.g. FREQ=DAILY;INTERVAL=2")
    parser.add_argument("--dtstart", help="Rule start (ISO 8601, default: now)")
    parser.add_argument("--timezone", help="IANA timezone for a naive DTSTART")
    parser.add_argument(
        "--preview", type=int, default=0, help="Print this many upcoming occurrences"
    )
    args = parser.parse_args()

    dtstart = _parse_dtstart(args.dtstart)
    result = RecurrenceValidator().validate(args.rule, dtstart, args.timezone)

    for error in result.errors:
        print(f"ERROR: {error}")
    for warning in result.warnings:
        print(f"WARNING: {warning}")

    if not result.valid:
        sys.exit(1)

    print("OK")
    if args.preview > 0:
        rule = compile_rule(args.rule, dtstart, args.timezone)
        for occurrence in islice(rule, args.preview):
            print(f"  {occurrence.isoformat()}")


if __name__ == "__main__":
    main()
