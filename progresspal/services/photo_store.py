"""
Photo Record Store — the append-mostly log of progress photos.

Every successful append rebuilds ProgressState from the full history and
commits record + progress in one transaction. Appends are serialized by an
asyncio.Lock so each fold sees every earlier commit.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime
from typing import Callable, List, Optional, TypeVar

from progresspal.data.image_store import ImageStore
from progresspal.data.models import PHOTO_ANGLES, PhotoRecord, ProgressState, to_utc
from progresspal.data.repository import Repository
from progresspal.errors import ClockAnomalyError, StorageWriteError
from progresspal.services import streak_engine
from progresspal.services.clock import Clock

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PhotoRecordStore:
    """Durable log of PhotoRecord keyed by id, plus the progress derived from it."""

    def __init__(self, repo: Repository, image_store: ImageStore, clock: Clock) -> None:
        self.repo = repo
        self.image_store = image_store
        self.clock = clock
        self._lock = asyncio.Lock()

    # ── Writes ──────────────────────────────────────────────────────────────

    async def append(
        self,
        angle: str,
        source_uri: str,
        captured_at: Optional[datetime] = None,
    ) -> PhotoRecord:
        """
        Persist the image, record it, and recompute progress.

        Replaying an append with the same (angle, capture instant) returns
        the existing record without touching progress.
        """
        if angle not in PHOTO_ANGLES:
            raise ValueError(f"Unknown angle {angle!r}; expected one of {PHOTO_ANGLES}.")

        async with self._lock:
            t = to_utc(captured_at or self.clock.now())
            previous = self._read(self.repo.get_progress)
            anchor = previous.start_date or self._anchor()

            day = streak_engine.day_number(t, anchor or t)
            record_id = PhotoRecord.make_id(day, angle, t)
            existing = self._read(lambda: self.repo.get_photo(record_id))
            if existing is not None:
                logger.info("Photo %s already recorded; skipping replay.", record_id)
                return existing

            try:
                streak_engine.advance(previous, t, self.clock.tz)
            except ClockAnomalyError:
                logger.warning(
                    "Rejected backdated capture at %s (last photo %s).",
                    t.isoformat(), previous.last_photo_at,
                )
                raise

            storage_path = await self.image_store.persist(source_uri)
            record = PhotoRecord(
                id=record_id, day_number=day, angle=angle,
                storage_path=storage_path, captured_at=t,
            )

            history = self._read(self.repo.list_photos)
            history.append(record)
            state = streak_engine.fold(history, self.clock.tz, start_date=anchor)
            self.repo.insert_photo_with_progress(record, state)

        logger.info(
            "Recorded %s (day %d). Streak %d, longest %d, total %d.",
            record.id, record.day_number, state.current_streak,
            state.longest_streak, state.total_photos,
        )
        return record

    async def recompute(self) -> ProgressState:
        """Rebuild and store progress from history (startup repair)."""
        async with self._lock:
            previous = self._read(self.repo.get_progress)
            history = self._read(self.repo.list_photos)
            anchor = previous.start_date or self._anchor()
            state = streak_engine.fold(history, self.clock.tz, start_date=anchor)
            self.repo.save_progress(state)
        if state != previous:
            logger.info("Progress rebuilt from %d records.", len(history))
        return state

    # ── Reads ───────────────────────────────────────────────────────────────

    async def all(self) -> List[PhotoRecord]:
        """Every record, oldest capture first."""
        return self._read(self.repo.list_photos)

    async def by_day(self, day_number: int) -> List[PhotoRecord]:
        return self._read(lambda: self.repo.list_photos_by_day(day_number))

    async def by_angle(self, angle: str) -> List[PhotoRecord]:
        return self._read(lambda: self.repo.list_photos_by_angle(angle))

    async def progress(self) -> ProgressState:
        return self._read(self.repo.get_progress)

    # ── Helpers ─────────────────────────────────────────────────────────────

    def _anchor(self) -> Optional[datetime]:
        """Explicit initialization instant, if the user was initialized first."""
        return self._read(self.repo.get_app_state).initialized_at

    @staticmethod
    def _read(query: Callable[[], T]) -> T:
        try:
            return query()
        except sqlite3.Error as exc:
            raise StorageWriteError(f"Photo storage unavailable: {exc}") from exc


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Owns the photo history. append() is the only way a photo gets in.
#
# Order of operations inside append():
#   1. angle check, then take the lock
#   2. compute day number + id; an existing id means a replay → return it
#   3. streak_engine.advance() as a guard for backdated captures
#   4. copy the image (ImageStore); failure here aborts before any DB write
#   5. fold the full history + new record, write both in one transaction
#
# Data flow:
#   ProgressService.take_photo → append → Repository → sqlite
