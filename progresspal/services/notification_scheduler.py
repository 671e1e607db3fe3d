"""
Notification Scheduler — keeps live reminders consistent with settings and progress.

Handles for the tracked kinds (daily reminder, grace reminder, weekly
progress) live in the scheduled_notifications table, at most one per kind.
Streak celebrations and test notifications are sent immediately and are
not tracked.

Per-kind state machine:
    unscheduled → scheduled        reconcile with enabled + permission
    scheduled   → unscheduled      disable, permission revoked, cancel
Grace reminder adds a "fired today" state: once today's reminder has been
armed, it is not armed again until the next local calendar day.

Scheduling operations never raise into the caller: they return a
ScheduleStatus and log what went wrong. Ledger reads that hit a sqlite
error surface as StorageWriteError, which those operations turn into
ScheduleStatus.FAILED.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import replace
from datetime import datetime, time, timedelta
from typing import Callable, Optional, Tuple, TypeVar

from progresspal.data.models import (
    NotificationSettings,
    ProgressState,
    ScheduledNotification,
    parse_time_of_day,
)
from progresspal.data.repository import Repository
from progresspal.errors import InvalidSettings, NotifierError, StorageWriteError
from progresspal.services import feedback, streak_engine
from progresspal.services.clock import Clock
from progresspal.services.notifier import (
    Daily,
    NotificationKind,
    NotificationPayload,
    Notifier,
    OneShotAfter,
    ScheduleStatus,
    Trigger,
    Weekly,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class NotificationScheduler:
    def __init__(self, repo: Repository, notifier: Notifier, clock: Clock) -> None:
        self.repo = repo
        self.notifier = notifier
        self.clock = clock

        # Reconcile coalescing: latest request wins while one is in flight
        self._pending: Optional[Tuple[NotificationSettings, ProgressState]] = None
        self._reconcile_task: Optional[asyncio.Future] = None

    # ── Reconcile ───────────────────────────────────────────────────────────

    async def reconcile_all(
        self, settings: NotificationSettings, progress: ProgressState
    ) -> ScheduleStatus:
        """
        Cancel every tracked handle, then re-schedule daily and weekly
        notifications from `settings`.

        Calls made while a reconcile is running are coalesced: only the most
        recent (settings, progress) is applied after the current pass.
        """
        self._pending = (settings, progress)
        if self._reconcile_task is None or self._reconcile_task.done():
            self._reconcile_task = asyncio.ensure_future(self._drain_reconciles())
        return await asyncio.shield(self._reconcile_task)

    async def _drain_reconciles(self) -> ScheduleStatus:
        status = ScheduleStatus.NOTHING_TO_DO
        while self._pending is not None:
            settings, progress = self._pending
            self._pending = None
            status = await self._reconcile_once(settings, progress)
        return status

    async def _reconcile_once(
        self, settings: NotificationSettings, progress: ProgressState
    ) -> ScheduleStatus:
        try:
            for kind in NotificationKind.TRACKED:
                await self.cancel_kind(kind)

            if not await self.notifier.request_permission():
                logger.warning("No notification permission; nothing scheduled.")
                return ScheduleStatus.PERMISSION_DENIED

            scheduled = 0
            daily = settings.daily_reminder
            if daily.enabled:
                hour, minute = parse_time_of_day(daily.time_of_day)
                await self._schedule_tracked(
                    NotificationKind.DAILY_REMINDER, Daily(hour, minute),
                    feedback.DAILY_REMINDER_PAYLOAD,
                )
                scheduled += 1

            weekly = settings.weekly_progress
            if weekly.enabled:
                hour, minute = parse_time_of_day(weekly.time_of_day)
                await self._schedule_tracked(
                    NotificationKind.WEEKLY_PROGRESS, Weekly(weekly.weekday, hour, minute),
                    feedback.weekly_progress_payload(progress.total_photos),
                )
                scheduled += 1
        except (NotifierError, StorageWriteError, InvalidSettings) as exc:
            logger.error("Reconcile failed: %s", exc)
            return ScheduleStatus.FAILED

        logger.info("Reconciled notifications: %d scheduled.", scheduled)
        return ScheduleStatus.SCHEDULED if scheduled else ScheduleStatus.NOTHING_TO_DO

    # ── Grace reminder ──────────────────────────────────────────────────────

    async def maybe_schedule_grace_reminder(
        self,
        settings: NotificationSettings,
        progress: ProgressState,
        now: Optional[datetime] = None,
    ) -> ScheduleStatus:
        """
        Arm a one-shot "don't lose your streak" reminder when today's photo is
        missing and the daily reminder time has passed. At most once per
        local calendar day.

        The daily reminder time is the cutoff even when the daily reminder
        itself is disabled.
        """
        now = now or self.clock.now()
        tz = self.clock.tz
        grace = settings.grace_reminder
        if not grace.enabled or streak_engine.has_photo_today(progress, now, tz):
            return ScheduleStatus.NOTHING_TO_DO

        try:
            hour, minute = parse_time_of_day(settings.daily_reminder.time_of_day)
        except InvalidSettings as exc:
            logger.error("Cannot evaluate grace reminder: %s", exc)
            return ScheduleStatus.FAILED
        local_now = now.astimezone(tz)
        reminder_at = datetime.combine(local_now.date(), time(hour, minute), tzinfo=tz)
        if local_now <= reminder_at:
            return ScheduleStatus.NOTHING_TO_DO

        today_key = local_now.date().isoformat()
        try:
            entry = self._read(
                lambda: self.repo.get_scheduled(NotificationKind.GRACE_REMINDER)
            )
            if entry is not None and entry.dedup_key == today_key:
                logger.debug("Grace reminder already handled for %s.", today_key)
                return ScheduleStatus.NOTHING_TO_DO
            if entry is not None and entry.handle:
                # Left over from an earlier day
                await self.notifier.cancel(entry.handle)

            if not await self.notifier.request_permission():
                return ScheduleStatus.PERMISSION_DENIED

            delay = timedelta(hours=grace.delay_hours)
            handle = await self.notifier.schedule(
                NotificationKind.GRACE_REMINDER, OneShotAfter(delay),
                feedback.GRACE_REMINDER_PAYLOAD,
            )
            self.repo.save_scheduled(ScheduledNotification(
                kind=NotificationKind.GRACE_REMINDER, handle=handle,
                dedup_key=today_key, fire_at=now + delay, scheduled_at=now,
            ))
        except (NotifierError, StorageWriteError) as exc:
            logger.error("Could not schedule grace reminder: %s", exc)
            return ScheduleStatus.FAILED

        logger.info("Grace reminder scheduled %d h from now.", grace.delay_hours)
        return ScheduleStatus.SCHEDULED

    async def cancel_grace_reminder(self) -> ScheduleStatus:
        """Drop a pending grace reminder (today's photo just arrived)."""
        try:
            await self.cancel_kind(NotificationKind.GRACE_REMINDER)
        except (NotifierError, StorageWriteError) as exc:
            logger.error("Could not cancel grace reminder: %s", exc)
            return ScheduleStatus.FAILED
        return ScheduleStatus.NOTHING_TO_DO

    # ── Immediate notifications ─────────────────────────────────────────────

    async def notify_streak_milestone(
        self, streak_value: int, settings: NotificationSettings
    ) -> ScheduleStatus:
        celebration = settings.streak_celebration
        if not celebration.enabled or streak_value not in celebration.milestones:
            return ScheduleStatus.NOTHING_TO_DO
        status = await self._send_now(feedback.milestone_payload(streak_value))
        if status == ScheduleStatus.SENT:
            logger.info("Streak celebration sent for %d days.", streak_value)
        return status

    async def send_test_notification(self) -> ScheduleStatus:
        return await self._send_now(feedback.TEST_PAYLOAD)

    async def _send_now(self, payload: NotificationPayload) -> ScheduleStatus:
        try:
            if not await self.notifier.request_permission():
                return ScheduleStatus.PERMISSION_DENIED
            await self.notifier.send_immediate(payload)
        except NotifierError as exc:
            logger.error("Could not send %r: %s", payload.title, exc)
            return ScheduleStatus.FAILED
        return ScheduleStatus.SENT

    # ── Cancellation ────────────────────────────────────────────────────────

    async def cancel_kind(self, kind: str) -> None:
        """
        Cancel the live handle for one kind. Raises NotifierError /
        StorageWriteError so reconcile can stop before scheduling duplicates.
        """
        entry = self._read(lambda: self.repo.get_scheduled(kind))
        if entry is None:
            return
        if entry.handle:
            await self.notifier.cancel(entry.handle)

        fired = entry.fire_at is not None and entry.fire_at <= self.clock.now()
        if kind == NotificationKind.GRACE_REMINDER and fired:
            # keep the dedup marker so today's reminder isn't re-armed
            self.repo.save_scheduled(replace(entry, handle=None))
        else:
            self.repo.delete_scheduled(kind)
        logger.debug("Cancelled %s notification.", kind)

    async def cancel_all(self) -> ScheduleStatus:
        """Blanket cancel. Only used by a full data reset."""
        try:
            await self.notifier.cancel_all()
            for entry in self._read(self.repo.list_scheduled):
                self.repo.delete_scheduled(entry.kind)
        except (NotifierError, StorageWriteError) as exc:
            logger.error("Could not cancel all notifications: %s", exc)
            return ScheduleStatus.FAILED
        logger.warning("All scheduled notifications cancelled.")
        return ScheduleStatus.NOTHING_TO_DO

    # ── Introspection ───────────────────────────────────────────────────────

    def live_handle(self, kind: str) -> Optional[str]:
        entry = self._read(lambda: self.repo.get_scheduled(kind))
        if entry is None or not entry.handle:
            return None
        if entry.fire_at is not None and entry.fire_at <= self.clock.now():
            return None
        return entry.handle

    def scheduled_count(self) -> int:
        return sum(1 for kind in NotificationKind.TRACKED if self.live_handle(kind))

    # ── Helpers ─────────────────────────────────────────────────────────────

    @staticmethod
    def _read(query: Callable[[], T]) -> T:
        try:
            return query()
        except sqlite3.Error as exc:
            raise StorageWriteError(f"Notification ledger unavailable: {exc}") from exc

    async def _schedule_tracked(
        self, kind: str, trigger: Trigger, payload: NotificationPayload
    ) -> str:
        handle = await self.notifier.schedule(kind, trigger, payload)
        self.repo.save_scheduled(ScheduledNotification(
            kind=kind, handle=handle, scheduled_at=self.clock.now(),
        ))
        logger.info("Scheduled %s (%s).", kind, trigger)
        return handle


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Decides which notifications should exist and talks to the Notifier to
#   make it so. It never touches photos or streak math beyond reading
#   ProgressState.
#
# Key methods:
#   - reconcile_all(): cancel-by-kind, permission check, re-schedule daily
#     and weekly. Concurrent calls collapse into "current pass + latest".
#   - maybe_schedule_grace_reminder(): one-shot, deduplicated by local date.
#   - notify_streak_milestone(): immediate, four-tier copy from feedback.py.
#   - cancel_all(): the only blanket cancel; full reset only.
#
# Data flow:
#   ProgressService → NotificationScheduler → Notifier (device / tray)
#                                          ↘ Repository (handle ledger)
