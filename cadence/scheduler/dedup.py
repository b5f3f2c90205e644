"""Occurrence keys and the bounded logs that remember which were already emitted."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

KeyPrecision = Literal["hour", "exact"]


def occurrence_key(task_id: str, due_at: datetime, precision: KeyPrecision = "hour") -> str:
    """Identify one occurrence of a task.

    ``hour`` truncates the instant to the UTC hour so routine polling tolerates
    clock jitter; ``exact`` keeps the full instant so recovery can tell distinct
    missed occurrences apart.
    """
    instant = due_at.astimezone(UTC)
    if precision == "hour":
        stamp = instant.strftime("%Y-%m-%dT%H")
    elif precision == "exact":
        stamp = instant.isoformat()
    else:
        msg = f"Unknown key precision: {precision!r}"
        raise ValueError(msg)
    return f"{task_id}:{stamp}"


class OccurrenceLog:
    """Insertion-ordered set of occurrence keys with a size cap.

    Trimming is explicit (see :meth:`trim`) and keeps the most recent half, so
    a very old occurrence could in theory be reported twice.
    """

    def __init__(self, max_keys: int = 1000, keys: Iterable[str] = ()) -> None:
        if max_keys < 2:
            msg = f"max_keys must be at least 2, got {max_keys}"
            raise ValueError(msg)
        self._max_keys = max_keys
        self._keys: dict[str, None] = dict.fromkeys(keys)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self) -> Iterator[str]:
        return iter(self._keys)

    @property
    def max_keys(self) -> int:
        return self._max_keys

    def add(self, key: str) -> None:
        self._keys.pop(key, None)
        self._keys[key] = None

    def update(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.add(key)

    def clear(self) -> None:
        self._keys.clear()

    def trim(self) -> int:
        """Keep only the newest half once over the cap. Returns keys dropped."""
        if len(self._keys) <= self._max_keys:
            return 0
        keep = list(self._keys)[-(len(self._keys) // 2):]
        dropped = len(self._keys) - len(keep)
        self._keys = dict.fromkeys(keep)
        return dropped
