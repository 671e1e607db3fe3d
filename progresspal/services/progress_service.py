"""
Progress Service — the one object the UI talks to.

Built once at startup (see `create`) and passed to whoever needs it. It
wires capture → photo store → progress → notifications, and owns the
app-state bits (initialization, profile, full reset).
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime
from typing import List, Optional

from progresspal.data.image_store import ImageStore
from progresspal.data.models import (
    PHOTO_ANGLES,
    AppState,
    NotificationSettings,
    PhotoRecord,
    ProgressState,
    Statistics,
    to_utc,
)
from progresspal.data.repository import Repository
from progresspal.errors import ProgressPalError, StorageWriteError
from progresspal.services import streak_engine
from progresspal.services.clock import Clock
from progresspal.services.notification_scheduler import NotificationScheduler
from progresspal.services.notifier import Notifier, ScheduleStatus
from progresspal.services.photo_store import PhotoRecordStore
from progresspal.services.settings_store import NotificationSettingsStore

logger = logging.getLogger(__name__)


class ProgressService:
    """Facade over photo store, settings store and notification scheduler."""

    def __init__(
        self,
        repo: Repository,
        photos: PhotoRecordStore,
        settings_store: NotificationSettingsStore,
        scheduler: NotificationScheduler,
        clock: Clock,
    ) -> None:
        self.repo = repo
        self.photos = photos
        self.settings_store = settings_store
        self.scheduler = scheduler
        self.clock = clock
        self._capture_lock = asyncio.Lock()

    @classmethod
    def create(
        cls,
        repo: Repository,
        image_store: ImageStore,
        notifier: Notifier,
        clock: Clock,
    ) -> "ProgressService":
        return cls(
            repo=repo,
            photos=PhotoRecordStore(repo, image_store, clock),
            settings_store=NotificationSettingsStore(repo),
            scheduler=NotificationScheduler(repo, notifier, clock),
            clock=clock,
        )

    # ── Lifecycle ───────────────────────────────────────────────────────────

    async def start(self) -> ScheduleStatus:
        """App launch: repair progress from history, then reconcile reminders."""
        progress = await self.photos.recompute()
        settings = await self.settings_store.get()
        return await self.scheduler.reconcile_all(settings, progress)

    async def on_foreground(self, now: Optional[datetime] = None) -> ScheduleStatus:
        """App came to the foreground (or the shell's periodic check fired)."""
        progress = await self.photos.progress()
        settings = await self.settings_store.get()
        return await self.scheduler.maybe_schedule_grace_reminder(settings, progress, now)

    # ── Capture ─────────────────────────────────────────────────────────────

    async def take_photo(
        self,
        angle: str,
        source_uri: str,
        captured_at: Optional[datetime] = None,
    ) -> PhotoRecord:
        """
        Record a capture. Raises StorageWriteError / ClockAnomalyError on
        rejection; notification trouble afterwards is logged, never raised.
        """
        async with self._capture_lock:
            before = await self.photos.progress()
            record = await self.photos.append(angle, source_uri, captured_at)
            after = await self.photos.progress()

        if after.total_photos == before.total_photos:
            return record  # replayed capture

        tz = self.clock.tz
        first_today = before.last_photo_at is None or (
            streak_engine.calendar_date(before.last_photo_at, tz)
            != streak_engine.calendar_date(record.captured_at, tz)
        )
        if first_today:
            await self.celebrate_if_milestone(after.current_streak)
        await self.scheduler.cancel_grace_reminder()
        return record

    # ── Queries ─────────────────────────────────────────────────────────────

    async def get_progress(self) -> ProgressState:
        return await self.photos.progress()

    async def get_all_photos(self) -> List[PhotoRecord]:
        return await self.photos.all()

    async def has_photo_today(self, now: Optional[datetime] = None) -> bool:
        progress = await self.photos.progress()
        return streak_engine.has_photo_today(progress, now or self.clock.now(), self.clock.tz)

    async def current_day_number(self, now: Optional[datetime] = None) -> int:
        progress = await self.photos.progress()
        return streak_engine.current_day_number(progress, now or self.clock.now())

    async def get_statistics(self, now: Optional[datetime] = None) -> Statistics:
        now = to_utc(now or self.clock.now())
        tz = self.clock.tz
        progress = await self.photos.progress()
        try:
            by_angle = self.repo.count_photos_by_angle()
            photo_days = self.repo.count_photo_days()
        except sqlite3.Error as exc:
            raise StorageWriteError(f"Photo storage unavailable: {exc}") from exc

        day = streak_engine.current_day_number(progress, now)
        return Statistics(
            day_number=day,
            total_photos=progress.total_photos,
            photos_by_angle={angle: by_angle.get(angle, 0) for angle in PHOTO_ANGLES},
            completion_rate=streak_engine.completion_rate(photo_days, day),
            current_streak=streak_engine.effective_streak(progress, now, tz),
            longest_streak=progress.longest_streak,
            has_photo_today=streak_engine.has_photo_today(progress, now, tz),
        )

    # ── Settings & notifications ────────────────────────────────────────────

    async def get_settings(self) -> NotificationSettings:
        return await self.settings_store.get()

    async def update_settings(self, settings: NotificationSettings) -> ScheduleStatus:
        """
        Validate, store and reconcile. Raises InvalidSettings for bad input;
        the previously stored settings stay in place.
        """
        settings.validate()
        if not await self.settings_store.set(settings):
            return ScheduleStatus.FAILED
        progress = await self.photos.progress()
        return await self.scheduler.reconcile_all(settings, progress)

    async def celebrate_if_milestone(self, streak: int) -> ScheduleStatus:
        settings = await self.settings_store.get()
        return await self.scheduler.notify_streak_milestone(streak, settings)

    async def send_test_notification(self) -> ScheduleStatus:
        return await self.scheduler.send_test_notification()

    def scheduled_notification_count(self) -> int:
        return self.scheduler.scheduled_count()

    # ── User / app state ────────────────────────────────────────────────────

    async def initialize_user(
        self, profile: dict, now: Optional[datetime] = None
    ) -> AppState:
        """
        Finish onboarding. The initialization instant becomes the day-number
        anchor unless photos (and therefore a start date) already exist.
        """
        now = to_utc(now or self.clock.now())
        progress = await self.photos.progress()
        state = self.repo.get_app_state()
        state.initialized = True
        state.onboarding_completed = True
        state.initialized_at = state.initialized_at or now
        state.profile = dict(profile)
        self.repo.save_app_state(state)

        if progress.start_date is None:
            progress.start_date = state.initialized_at
            self.repo.save_progress(progress)
        logger.info("User initialized at %s.", state.initialized_at.isoformat())

        await self.scheduler.reconcile_all(await self.settings_store.get(), progress)
        return state

    def is_user_initialized(self) -> bool:
        state = self.repo.get_app_state()
        return state.onboarding_completed and state.profile is not None

    def get_user_profile(self) -> Optional[dict]:
        return self.repo.get_app_state().profile

    def update_user_profile(self, updates: dict) -> dict:
        state = self.repo.get_app_state()
        if state.profile is None:
            raise ProgressPalError("No existing user profile found.")
        state.profile = {**state.profile, **updates}
        self.repo.save_app_state(state)
        return state.profile

    async def reset_all_data(self) -> None:
        """Full reset: blanket-cancel notifications and delete every table's rows."""
        await self.scheduler.cancel_all()
        self.repo.reset_all_data()


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   The entry point for every UI action: capture a photo, read progress and
#   statistics, change reminder settings, onboard, reset.
#
# Data flow (capture):
#   take_photo → PhotoRecordStore.append (lock, image copy, fold, commit)
#             → first photo of the day? → celebrate_if_milestone
#             → cancel any pending grace reminder
#
# Notes:
#   - create() is the composition root for the core; main.py calls it once.
#   - A replayed capture (same angle + instant) returns the stored record
#     and sends nothing.
