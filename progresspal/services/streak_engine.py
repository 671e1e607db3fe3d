"""
Streak Engine — day numbers and streak transitions. Pure functions, no I/O.

Two different clocks are in play:

  * day numbers count elapsed 24-hour periods since the anchor start date
    (UTC instants, immune to timezone changes);
  * streaks compare *calendar* days in the user's local zone, midnight to
    midnight.

Stored progress is never incremented in place; `fold` rebuilds it from the
full photo history, and `advance` is the single transition step both use.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable, Optional

from progresspal.data.models import PhotoRecord, ProgressState, to_utc
from progresspal.errors import ClockAnomalyError

DAY = timedelta(hours=24)
_DAY_US = DAY // timedelta(microseconds=1)


def day_number(captured_at: datetime, start_date: datetime) -> int:
    """ceil((captured_at - start_date) / 24h), never below 1."""
    elapsed_us = (to_utc(captured_at) - to_utc(start_date)) // timedelta(microseconds=1)
    return max(1, -(-elapsed_us // _DAY_US))


def calendar_date(instant: datetime, tz: tzinfo) -> date:
    return to_utc(instant).astimezone(tz).date()


def calendar_days_between(earlier: datetime, later: datetime, tz: tzinfo) -> int:
    """Whole local calendar days from `earlier` to `later` (negative if backwards)."""
    return (calendar_date(later, tz) - calendar_date(earlier, tz)).days


def advance(state: ProgressState, captured_at: datetime, tz: tzinfo) -> ProgressState:
    """
    Next progress after one more photo at `captured_at`.

    Raises ClockAnomalyError when the photo lands on a calendar day before
    the last recorded one; the caller rejects the capture.
    """
    t = to_utc(captured_at)

    if state.total_photos == 0 or state.last_photo_at is None:
        return ProgressState(
            start_date=state.start_date or t,
            current_streak=1,
            longest_streak=max(state.longest_streak, 1),
            total_photos=state.total_photos + 1,
            last_photo_at=t,
        )

    days_since_last = calendar_days_between(state.last_photo_at, t, tz)
    if days_since_last < 0:
        raise ClockAnomalyError(t, state.last_photo_at)
    if days_since_last == 0:
        current = max(state.current_streak, 1)
    elif days_since_last == 1:
        current = state.current_streak + 1
    else:
        current = 1

    return ProgressState(
        start_date=state.start_date or t,
        current_streak=current,
        longest_streak=max(state.longest_streak, current),
        total_photos=state.total_photos + 1,
        last_photo_at=max(t, state.last_photo_at),
    )


def fold(
    records: Iterable[PhotoRecord],
    tz: tzinfo,
    start_date: Optional[datetime] = None,
) -> ProgressState:
    """Rebuild progress from the whole history, oldest capture first."""
    state = ProgressState(start_date=to_utc(start_date) if start_date else None)
    ordered = sorted(records, key=lambda r: (to_utc(r.captured_at), r.id))
    for record in ordered:
        state = advance(state, record.captured_at, tz)
    return state


# ── Queries against "now" ──────────────────────────────────────────────────

def effective_streak(state: ProgressState, now: datetime, tz: tzinfo) -> int:
    """The streak as the user should see it now: 0 once a day has been skipped."""
    if state.last_photo_at is None:
        return 0
    if calendar_days_between(state.last_photo_at, now, tz) > 1:
        return 0
    return state.current_streak


def has_photo_today(state: ProgressState, now: datetime, tz: tzinfo) -> bool:
    if state.last_photo_at is None:
        return False
    return calendar_date(state.last_photo_at, tz) == calendar_date(now, tz)


def current_day_number(state: ProgressState, now: datetime) -> int:
    if state.start_date is None:
        return 1
    return day_number(now, state.start_date)


def completion_rate(photo_days: int, day: int) -> int:
    """Share of days (so far) that have at least one photo, as a 0..100 int."""
    if day <= 0 or photo_days <= 0:
        return 0
    return min(100, round(photo_days / day * 100))


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   All the date math: which day number a photo belongs to, and how the
#   streak moves when a new photo arrives.
#
# Key functions:
#   - day_number(): epoch-anchored elapsed time, ceiling, floor of 1.
#   - advance(): one transition. Same local day → unchanged, next day → +1,
#     gap → reset to 1, earlier day → ClockAnomalyError.
#   - fold(): replays advance() over every record sorted by capture time.
#     Same history in, same ProgressState out.
#   - effective_streak(): read-only view for dashboards ("0 if you skipped").
#
# Data flow:
#   PhotoRecordStore.append → fold(all records) → ProgressState → repository
