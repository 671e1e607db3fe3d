"""
Tray Notifier — desktop implementation of the Notifier interface.

Notifications are QSystemTrayIcon balloon messages. Scheduled ones are
single-shot QTimers armed for `next_fire_time`; repeating triggers re-arm
themselves after each fire. Timers only live as long as the process, so the
app reconciles on every launch.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Dict, Optional

from PySide6.QtCore import QObject, QTimer, Signal
from PySide6.QtWidgets import QSystemTrayIcon

from progresspal.errors import NotifierError
from progresspal.services.notifier import (
    NotificationPayload,
    Trigger,
    is_repeating,
    next_fire_time,
)

logger = logging.getLogger(__name__)

# QTimer intervals are signed 32-bit milliseconds (~24.8 days)
MAX_TIMER_MS = 2**31 - 1
MESSAGE_TIMEOUT_MS = 8000


@dataclass
class _Armed:
    kind: str
    trigger: Trigger
    payload: NotificationPayload
    timer: QTimer
    fire_at: datetime


class TrayNotifier(QObject):
    """Shows reminders as system tray messages."""

    notification_shown = Signal(str, str)  # kind, title

    def __init__(self, tray: QSystemTrayIcon, tz: tzinfo, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self.tray = tray
        self.tz = tz
        self._armed: Dict[str, _Armed] = {}

    # ── Notifier interface ──────────────────────────────────────────────────

    async def request_permission(self) -> bool:
        # No OS prompt on desktop: "granted" means a tray that can show messages.
        return QSystemTrayIcon.isSystemTrayAvailable() and QSystemTrayIcon.supportsMessages()

    async def schedule(self, kind: str, trigger: Trigger, payload: NotificationPayload) -> str:
        handle = uuid.uuid4().hex
        timer = QTimer(self)
        timer.setSingleShot(True)
        timer.timeout.connect(lambda h=handle: self._on_timer(h))
        armed = _Armed(kind=kind, trigger=trigger, payload=payload, timer=timer,
                       fire_at=self._now())
        self._armed[handle] = armed
        self._arm(armed)
        logger.info("Armed %s notification %s for %s", kind, handle[:8], armed.fire_at.isoformat())
        return handle

    async def cancel(self, handle: str) -> None:
        armed = self._armed.pop(handle, None)
        if armed is None:
            return
        armed.timer.stop()
        armed.timer.deleteLater()

    async def cancel_all(self) -> None:
        for handle in list(self._armed):
            await self.cancel(handle)

    async def send_immediate(self, payload: NotificationPayload) -> None:
        self._show("immediate", payload)

    # ── Internal ────────────────────────────────────────────────────────────

    def _arm(self, armed: _Armed) -> None:
        now = self._now()
        armed.fire_at = next_fire_time(armed.trigger, now, self.tz)
        delay_ms = int((armed.fire_at - now).total_seconds() * 1000)
        # Past one-shot instants fire right away; far-off ones hop in steps
        armed.timer.start(max(0, min(delay_ms, MAX_TIMER_MS)))

    def _on_timer(self, handle: str) -> None:
        armed = self._armed.get(handle)
        if armed is None:
            return
        if self._now() < armed.fire_at:
            # Woke early because the interval was clamped
            remaining = int((armed.fire_at - self._now()).total_seconds() * 1000)
            armed.timer.start(max(0, min(remaining, MAX_TIMER_MS)))
            return

        try:
            self._show(armed.kind, armed.payload)
        except NotifierError as exc:
            logger.error("Scheduled %s notification not shown: %s", armed.kind, exc)
        if is_repeating(armed.trigger):
            self._arm(armed)
        else:
            self._armed.pop(handle, None)
            armed.timer.deleteLater()

    def _show(self, kind: str, payload: NotificationPayload) -> None:
        if not QSystemTrayIcon.supportsMessages():
            raise NotifierError("System tray cannot show messages on this desktop.")
        self.tray.showMessage(
            payload.title, payload.body,
            QSystemTrayIcon.MessageIcon.Information, MESSAGE_TIMEOUT_MS,
        )
        logger.info("Notification shown (%s): %s", kind, payload.title)
        self.notification_shown.emit(kind, payload.title)

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Implements the Notifier protocol for a desktop: tray balloon messages
#   and QTimers for anything scheduled.
#
# Key pieces:
#   - schedule(): returns an opaque uuid handle; the scheduler stores it.
#   - _arm(): uses next_fire_time() from services/notifier.py, so all the
#     calendar math stays in tested, Qt-free code.
#   - Clamping: QTimer can't wait longer than ~24.8 days, so longer waits
#     re-arm on wake until fire_at is reached.
#
# Data flow:
#   NotificationScheduler → TrayNotifier.schedule() → QTimer → showMessage()
