"""
Notifier interface — what the scheduler needs from a device notification API.

Triggers are a small closed set of frozen dataclasses instead of
platform-specific trigger objects. `next_fire_time` turns any of them into
a concrete UTC instant; desktop notifiers use it to arm their timers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, tzinfo
from enum import Enum
from typing import Protocol, Union

from progresspal.data.models import to_utc


class NotificationKind:
    """Kinds of notification the engine sends."""
    DAILY_REMINDER = "daily_reminder"
    GRACE_REMINDER = "grace_reminder"
    WEEKLY_PROGRESS = "weekly_progress"
    STREAK_CELEBRATION = "streak_celebration"
    TEST = "test"

    # Kinds with at most one live scheduled handle
    TRACKED = (DAILY_REMINDER, GRACE_REMINDER, WEEKLY_PROGRESS)


class ScheduleStatus(Enum):
    SCHEDULED = "scheduled"
    SENT = "sent"
    NOTHING_TO_DO = "nothing_to_do"
    PERMISSION_DENIED = "permission_denied"
    FAILED = "failed"


@dataclass(frozen=True)
class Daily:
    hour: int
    minute: int


@dataclass(frozen=True)
class Weekly:
    weekday: int  # 0 = Sunday ... 6 = Saturday
    hour: int
    minute: int


@dataclass(frozen=True)
class OneShotAfter:
    delay: timedelta


@dataclass(frozen=True)
class OneShotAt:
    instant: datetime


Trigger = Union[Daily, Weekly, OneShotAfter, OneShotAt]


@dataclass(frozen=True)
class NotificationPayload:
    title: str
    body: str
    data: dict = field(default_factory=dict, hash=False, compare=True)


class Notifier(Protocol):
    async def request_permission(self) -> bool:
        """Ask (or re-check) permission. True when notifications may be shown."""
        ...

    async def schedule(self, kind: str, trigger: Trigger, payload: NotificationPayload) -> str:
        """Schedule a notification and return its handle."""
        ...

    async def cancel(self, handle: str) -> None:
        ...

    async def cancel_all(self) -> None:
        ...

    async def send_immediate(self, payload: NotificationPayload) -> None:
        ...


def is_repeating(trigger: Trigger) -> bool:
    return isinstance(trigger, (Daily, Weekly))


def next_fire_time(trigger: Trigger, now: datetime, tz: tzinfo) -> datetime:
    """The first instant strictly after `now` at which `trigger` fires (UTC)."""
    now = to_utc(now)
    if isinstance(trigger, OneShotAfter):
        return now + trigger.delay
    if isinstance(trigger, OneShotAt):
        return to_utc(trigger.instant)

    local_now = now.astimezone(tz)
    at = time(trigger.hour, trigger.minute)
    if isinstance(trigger, Daily):
        day = local_now.date()
        step = timedelta(days=1)
    else:
        # datetime.weekday(): Monday == 0; ours: Sunday == 0
        target = (trigger.weekday - 1) % 7
        day = local_now.date() + timedelta(days=(target - local_now.weekday()) % 7)
        step = timedelta(days=7)

    candidate = datetime.combine(day, at, tzinfo=tz)
    if candidate <= local_now:
        candidate = datetime.combine(day + step, at, tzinfo=tz)
    return to_utc(candidate)
