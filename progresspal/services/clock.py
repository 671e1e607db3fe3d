"""
TimeSource — where "now" and the user's local zone come from.

Services never call datetime.now() directly; they ask a clock. Tests pass
a FixedClock and move it forward by hand.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional, Protocol

from progresspal.data.models import to_utc


class Clock(Protocol):
    tz: tzinfo

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC plus the zone used for calendar days."""

    def __init__(self, tz: Optional[tzinfo] = None) -> None:
        self.tz = tz or datetime.now().astimezone().tzinfo

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock frozen at a given instant until advanced."""

    def __init__(self, instant: datetime, tz: Optional[tzinfo] = None) -> None:
        self._now = to_utc(instant)
        self.tz = tz or timezone.utc

    def now(self) -> datetime:
        return self._now

    def set(self, instant: datetime) -> None:
        self._now = to_utc(instant)

    def advance(self, **kwargs: float) -> datetime:
        self._now += timedelta(**kwargs)
        return self._now
