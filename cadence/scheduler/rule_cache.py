"""RuleCache — LRU cache of compiled RRULE objects."""

from __future__ import annotations

import logging
import time
import zoneinfo
from collections import OrderedDict
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from dateutil.rrule import rrulestr

from cadence.config import settings

if TYPE_CHECKING:
    from collections.abc import Callable

    from dateutil.rrule import rrule

logger = logging.getLogger(__name__)


@dataclass
class RuleCacheEntry:
    """A compiled rule plus its access bookkeeping."""

    key: str
    rule: rrule
    created_at: float
    last_access: float
    hits: int = 0


@dataclass(frozen=True)
class CacheStats:
    size: int
    max_size: int
    total_hits: int
    total_misses: int
    hit_rate: float


def compile_rule(rule_text: str, dtstart: datetime, timezone: str | None = None) -> rrule:
    """Parse *rule_text* into a ``dateutil`` rule anchored at *dtstart*.

    A naive *dtstart* is interpreted in *timezone* (UTC when omitted); an aware
    one is converted into it. Raises ValueError on unparsable rule text.
    """
    tz = zoneinfo.ZoneInfo(timezone) if timezone else UTC
    start = dtstart.replace(tzinfo=tz) if dtstart.tzinfo is None else dtstart.astimezone(tz)
    try:
        return rrulestr(rule_text.strip(), dtstart=start)
    except TypeError as exc:
        # rrule() without FREQ fails on its missing positional argument
        msg = f"Invalid RRULE {rule_text!r}: {exc}"
        raise ValueError(msg) from exc


class RuleCache:
    """Memoizes compiled recurrence rules behind a least-recently-used policy.

    Keys are opaque to the cache; callers conventionally use
    ``"<owner>:<rule hash>"`` so that :meth:`invalidate_for_owner` can drop
    every rule belonging to one task.

    Args:
        max_size: Maximum number of compiled rules kept (default from settings).
        clock: Monotonic clock returning seconds, injectable for tests.
    """

    def __init__(
        self,
        max_size: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        max_size = settings.rule_cache_size if max_size is None else max_size
        if max_size <= 0:
            msg = f"RuleCache max_size must be positive, got {max_size}"
            raise ValueError(msg)
        self._max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, RuleCacheEntry] = OrderedDict()
        self._total_hits = 0
        self._total_misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def max_size(self) -> int:
        return self._max_size

    # -- Lookup ----------------------------------------------------------------

    def get_or_parse(
        self,
        key: str,
        rule_text: str,
        dtstart: datetime,
        timezone: str | None = None,
    ) -> rrule:
        """Return the cached rule for *key*, compiling and inserting it on a miss."""
        entry = self._entries.get(key)
        if entry is not None:
            entry.hits += 1
            entry.last_access = self._clock()
            self._total_hits += 1
            self._entries.move_to_end(key)
            return entry.rule

        self._total_misses += 1
        compiled = compile_rule(rule_text, dtstart, timezone)
        now = self._clock()
        self._entries[key] = RuleCacheEntry(
            key=key, rule=compiled, created_at=now, last_access=now
        )
        while len(self._entries) > self._max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted rule cache entry: %s", evicted)
        return compiled

    def has(self, key: str) -> bool:
        return key in self._entries

    def get_entry(self, key: str) -> RuleCacheEntry | None:
        """Return the entry for *key* without touching its access time."""
        return self._entries.get(key)

    def keys(self) -> list[str]:
        return list(self._entries)

    # -- Invalidation ----------------------------------------------------------

    def invalidate(self, key: str) -> bool:
        """Remove one entry. Returns True if it existed."""
        return self._entries.pop(key, None) is not None

    def invalidate_for_owner(self, owner: str) -> int:
        """Remove every entry whose key starts with ``"<owner>:"``."""
        prefix = owner if owner.endswith(":") else f"{owner}:"
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug("Invalidated %d rule(s) for %s", len(doomed), owner)
        return len(doomed)

    def clear(self) -> None:
        """Drop all entries and reset hit/miss counters."""
        self._entries.clear()
        self._total_hits = 0
        self._total_misses = 0

    def prune_old(self, max_age_seconds: float) -> int:
        """Remove entries created more than *max_age_seconds* ago."""
        cutoff = self._clock() - max_age_seconds
        doomed = [key for key, entry in self._entries.items() if entry.created_at < cutoff]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    # -- Stats -----------------------------------------------------------------

    def get_stats(self) -> CacheStats:
        requests = self._total_hits + self._total_misses
        return CacheStats(
            size=len(self._entries),
            max_size=self._max_size,
            total_hits=self._total_hits,
            total_misses=self._total_misses,
            hit_rate=self._total_hits / requests if requests else 0.0,
        )
