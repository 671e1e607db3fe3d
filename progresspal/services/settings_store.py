"""
Notification Settings Store — durable reminder preferences.

get() never fails on a fresh install: unset sections come back as defaults.
set() validates, persists and reports success as a bool; invalid or
unwritable settings leave the stored ones untouched.
"""

from __future__ import annotations

import logging
import sqlite3

from progresspal.data.models import NotificationSettings
from progresspal.data.repository import Repository
from progresspal.errors import InvalidSettings, StorageWriteError

logger = logging.getLogger(__name__)


class NotificationSettingsStore:
    def __init__(self, repo: Repository) -> None:
        self.repo = repo

    async def get(self) -> NotificationSettings:
        try:
            sections = self.repo.get_setting_sections()
        except sqlite3.Error:
            logger.exception("Could not read notification settings; using defaults.")
            return NotificationSettings()
        try:
            return NotificationSettings.from_sections(sections)
        except TypeError:
            logger.warning("Stored notification settings are malformed; using defaults.")
            return NotificationSettings()

    async def set(self, settings: NotificationSettings) -> bool:
        try:
            settings.validate()
            self.repo.save_setting_sections(settings.to_sections())
        except InvalidSettings as exc:
            logger.warning("Rejected notification settings: %s", exc)
            return False
        except StorageWriteError:
            return False
        logger.info("Notification settings saved.")
        return True
