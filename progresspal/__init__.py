"""ProgressPal — daily progress photos, streaks and reminders."""

__version__ = "0.1.0"
