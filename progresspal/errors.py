"""
Exception taxonomy shared by the data and service layers.

Permission absence is not an exception here: it is
ScheduleStatus.PERMISSION_DENIED (see services/notifier.py).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional


class ProgressPalError(Exception):
    """Base class for all errors raised by progresspal."""


class StorageWriteError(ProgressPalError):
    """The persistence medium (database or photo directory) is unavailable."""


class ClockAnomalyError(ProgressPalError):
    """A capture is dated before the calendar day of the last recorded photo."""

    def __init__(self, captured_at: datetime, last_photo_at: Optional[datetime]) -> None:
        self.captured_at = captured_at
        self.last_photo_at = last_photo_at
        super().__init__(
            f"Capture at {captured_at.isoformat()} is earlier than the last "
            f"photo day ({last_photo_at.isoformat() if last_photo_at else '-'})."
        )


class InvalidSettings(ProgressPalError):
    """Notification settings failed validation (bad HH:MM, duplicate milestone...)."""


class NotifierError(ProgressPalError):
    """The device notification service rejected a schedule/cancel/send call."""
