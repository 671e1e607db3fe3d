"""
Data models for ProgressPal.

Plain dataclasses for everything the core persists or hands to the UI.
All timestamps are timezone-aware UTC instants; conversion to the user's
local calendar happens only inside the streak engine.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from progresspal.errors import InvalidSettings

PHOTO_ANGLES: Tuple[str, ...] = ("front", "side", "back")

_TIME_OF_DAY_RE = re.compile(r"([01]\d|2[0-3]):([0-5]\d)")


def to_utc(instant: datetime) -> datetime:
    """Normalize to an aware UTC datetime. Naive values are taken as UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def parse_time_of_day(value: str) -> Tuple[int, int]:
    """'18:05' → (18, 5). Raises InvalidSettings for anything else."""
    match = _TIME_OF_DAY_RE.fullmatch(value) if isinstance(value, str) else None
    if not match:
        raise InvalidSettings(f"Invalid time of day {value!r}; expected 24-hour HH:MM.")
    return int(match.group(1)), int(match.group(2))


@dataclass
class PhotoRecord:
    """One captured progress photo. day_number is fixed at creation."""
    id: str = ""
    day_number: int = 1
    angle: str = "front"
    storage_path: str = ""
    captured_at: Optional[datetime] = None

    @staticmethod
    def make_id(day_number: int, angle: str, captured_at: datetime) -> str:
        millis = int(to_utc(captured_at).timestamp() * 1000)
        return f"day{day_number}_{angle}_{millis}"


@dataclass
class ProgressState:
    """Derived aggregate over all photo records. Singleton per install."""
    start_date: Optional[datetime] = None
    current_streak: int = 0
    longest_streak: int = 0
    total_photos: int = 0
    last_photo_at: Optional[datetime] = None


@dataclass
class DailyReminder:
    enabled: bool = True
    time_of_day: str = "18:00"


@dataclass
class StreakCelebration:
    enabled: bool = True
    milestones: List[int] = field(
        default_factory=lambda: [3, 7, 14, 30, 60, 90, 180, 365]
    )


@dataclass
class WeeklyProgress:
    enabled: bool = True
    weekday: int = 0  # 0 = Sunday ... 6 = Saturday
    time_of_day: str = "10:00"


@dataclass
class GraceReminder:
    enabled: bool = True
    delay_hours: int = 12


@dataclass
class NotificationSettings:
    """User-configurable reminder preferences."""
    daily_reminder: DailyReminder = field(default_factory=DailyReminder)
    streak_celebration: StreakCelebration = field(default_factory=StreakCelebration)
    weekly_progress: WeeklyProgress = field(default_factory=WeeklyProgress)
    grace_reminder: GraceReminder = field(default_factory=GraceReminder)

    # Persisted as one JSON value per top-level key
    SECTIONS = ("daily_reminder", "streak_celebration", "weekly_progress", "grace_reminder")

    def validate(self) -> None:
        """Raise InvalidSettings if any field is out of range."""
        for name in self.SECTIONS:
            enabled = getattr(self, name).enabled
            if not isinstance(enabled, bool):
                raise InvalidSettings(f"{name}.enabled must be true or false, got {enabled!r}.")

        parse_time_of_day(self.daily_reminder.time_of_day)
        parse_time_of_day(self.weekly_progress.time_of_day)

        milestones = self.streak_celebration.milestones
        if not isinstance(milestones, list):
            raise InvalidSettings(f"Milestones must be a list, got {milestones!r}.")
        if any(not isinstance(m, int) or isinstance(m, bool) or m <= 0 for m in milestones):
            raise InvalidSettings(f"Milestones must be positive integers: {milestones}.")
        if len(set(milestones)) != len(milestones):
            raise InvalidSettings(f"Duplicate streak milestones in {milestones}.")

        weekday = self.weekly_progress.weekday
        if not isinstance(weekday, int) or isinstance(weekday, bool) or not 0 <= weekday <= 6:
            raise InvalidSettings(f"Weekday must be 0..6 (Sunday..Saturday), got {weekday!r}.")

        delay = self.grace_reminder.delay_hours
        if not isinstance(delay, int) or isinstance(delay, bool) or delay <= 0:
            raise InvalidSettings(f"Grace delay must be a positive number of hours, got {delay!r}.")

    def to_sections(self) -> Dict[str, dict]:
        sections = {name: asdict(getattr(self, name)) for name in self.SECTIONS}
        sections["streak_celebration"]["milestones"] = sorted(self.streak_celebration.milestones)
        return sections

    @classmethod
    def from_sections(cls, sections: Dict[str, dict]) -> "NotificationSettings":
        """Build settings from stored sections; missing sections use defaults."""
        settings = cls()
        builders = {
            "daily_reminder": DailyReminder,
            "streak_celebration": StreakCelebration,
            "weekly_progress": WeeklyProgress,
            "grace_reminder": GraceReminder,
        }
        for name, builder in builders.items():
            if name in sections:
                merged = {**asdict(builder()), **sections[name]}
                setattr(settings, name, builder(**merged))
        settings.streak_celebration.milestones = sorted(settings.streak_celebration.milestones)
        return settings


@dataclass
class AppState:
    initialized: bool = False
    onboarding_completed: bool = False
    initialized_at: Optional[datetime] = None
    profile: Optional[dict] = None


@dataclass
class ScheduledNotification:
    """A live handle the scheduler is tracking for one notification kind.

    scheduled_at comes from the scheduler's clock and must be set before saving.
    """
    kind: str = ""
    handle: Optional[str] = None
    dedup_key: Optional[str] = None
    fire_at: Optional[datetime] = None
    scheduled_at: Optional[datetime] = None


@dataclass
class Statistics:
    """Dashboard numbers, computed on demand for a given 'now'."""
    day_number: int = 1
    total_photos: int = 0
    photos_by_angle: Dict[str, int] = field(
        default_factory=lambda: {angle: 0 for angle in PHOTO_ANGLES}
    )
    completion_rate: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    has_photo_today: bool = False


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Defines the "shape" of every object the core stores or returns:
#   PhotoRecord, ProgressState, NotificationSettings (+ its four sections),
#   AppState, ScheduledNotification and Statistics.
#
# Key pieces:
#   - to_utc(): every instant entering the core goes through here, so the
#     database only ever sees UTC.
#   - NotificationSettings.validate(): the single gate for HH:MM values,
#     milestone uniqueness, weekday range and grace delay.
#   - to_sections()/from_sections(): settings are stored one JSON value per
#     section; sections missing from storage fall back to defaults.
#
# Data flow:
#   Service builds model → Repository maps it to a row → sqlite
#   sqlite row → Repository → model → Service / UI
