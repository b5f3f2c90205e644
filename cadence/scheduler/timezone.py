"""TimezoneHandler — wall-clock date arithmetic in a fixed IANA timezone."""

from __future__ import annotations

import zoneinfo
from datetime import datetime, timedelta, tzinfo

from cadence.config import settings


class TimezoneHandler:
    """Resolves local days and clock times for the scheduler.

    Args:
        timezone: IANA timezone string (default from settings).
    """

    def __init__(self, timezone: str | None = None) -> None:
        self._name = timezone or settings.scheduler_timezone
        self._tz = zoneinfo.ZoneInfo(self._name)

    @property
    def name(self) -> str:
        return self._name

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def zone(self, timezone: str | None = None) -> tzinfo:
        """Return *timezone* as a tzinfo, falling back to the handler's zone."""
        if not timezone or timezone == self._name:
            return self._tz
        return zoneinfo.ZoneInfo(timezone)

    def now(self) -> datetime:
        return datetime.now(self._tz)

    def localize(self, dt: datetime, timezone: str | None = None) -> datetime:
        """Attach the zone to a naive datetime, or convert an aware one."""
        tz = self.zone(timezone)
        if dt.tzinfo is None:
            return dt.replace(tzinfo=tz)
        return dt.astimezone(tz)

    def start_of_day(self, dt: datetime) -> datetime:
        local = self.localize(dt)
        return local.replace(hour=0, minute=0, second=0, microsecond=0)

    def at_time(self, dt: datetime, hour: int, minute: int) -> datetime:
        """Force a local clock time onto *dt*, keeping its date."""
        return dt.replace(hour=hour, minute=minute, second=0, microsecond=0)

    def tomorrow(self, now: datetime | None = None) -> datetime:
        """Midnight at the start of the next local day."""
        today = self.start_of_day(now or self.now())
        return today + timedelta(days=1)

    def tomorrow_at(self, reference: datetime, now: datetime | None = None) -> datetime:
        """Tomorrow (relative to *now*) at *reference*'s local clock time."""
        local_ref = self.localize(reference)
        return self.at_time(self.tomorrow(now), local_ref.hour, local_ref.minute)

    def is_same_day(self, a: datetime, b: datetime) -> bool:
        return self.localize(a).date() == self.localize(b).date()
