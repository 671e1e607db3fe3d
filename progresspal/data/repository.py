"""
Repository — the single place where SQL lives.

Every other module talks to Repository, never to raw SQL. Write methods
raise StorageWriteError when sqlite fails; nothing is half-committed
because each write runs inside one `with self.conn:` transaction.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from progresspal.errors import StorageWriteError

from .models import (
    AppState,
    PhotoRecord,
    ProgressState,
    ScheduledNotification,
    to_utc,
)

logger = logging.getLogger(__name__)

# helper: parse ISO datetime strings from SQLite
_parse_dt = lambda s: to_utc(datetime.fromisoformat(s)) if s else None
_fmt_dt = lambda d: to_utc(d).isoformat() if d else None


class Repository:
    """Data-access layer wrapping a sqlite3 connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    @contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        try:
            with self.conn:
                yield self.conn
        except sqlite3.Error as exc:
            logger.error("Storage write failed while trying to %s: %s", action, exc)
            raise StorageWriteError(f"Could not {action}: {exc}") from exc

    # ── Photo records ───────────────────────────────────────────────────────

    def insert_photo_with_progress(self, record: PhotoRecord, state: ProgressState) -> None:
        """Store a new record and the progress recomputed with it, atomically."""
        with self._transaction("save photo record") as conn:
            conn.execute(
                "INSERT INTO photo_records "
                "(id, day_number, angle, storage_path, captured_at, captured_ms) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.day_number,
                    record.angle,
                    record.storage_path,
                    _fmt_dt(record.captured_at),
                    int(to_utc(record.captured_at).timestamp() * 1000),
                ),
            )
            self._write_progress(conn, state)

    def get_photo(self, photo_id: str) -> Optional[PhotoRecord]:
        row = self.conn.execute(
            "SELECT * FROM photo_records WHERE id = ?", (photo_id,)
        ).fetchone()
        return self._row_to_photo(row) if row else None

    def list_photos(self) -> List[PhotoRecord]:
        rows = self.conn.execute(
            "SELECT * FROM photo_records ORDER BY captured_ms, id"
        ).fetchall()
        return [self._row_to_photo(r) for r in rows]

    def list_photos_by_day(self, day_number: int) -> List[PhotoRecord]:
        rows = self.conn.execute(
            "SELECT * FROM photo_records WHERE day_number = ? ORDER BY captured_ms, id",
            (day_number,),
        ).fetchall()
        return [self._row_to_photo(r) for r in rows]

    def list_photos_by_angle(self, angle: str) -> List[PhotoRecord]:
        rows = self.conn.execute(
            "SELECT * FROM photo_records WHERE angle = ? ORDER BY captured_ms, id",
            (angle,),
        ).fetchall()
        return [self._row_to_photo(r) for r in rows]

    def count_photos_by_angle(self) -> Dict[str, int]:
        rows = self.conn.execute(
            "SELECT angle, COUNT(*) AS n FROM photo_records GROUP BY angle"
        ).fetchall()
        return {r["angle"]: r["n"] for r in rows}

    def count_photo_days(self) -> int:
        row = self.conn.execute(
            "SELECT COUNT(DISTINCT day_number) FROM photo_records"
        ).fetchone()
        return row[0]

    # ── Progress ────────────────────────────────────────────────────────────

    def get_progress(self) -> ProgressState:
        row = self.conn.execute("SELECT * FROM user_progress WHERE id = 1").fetchone()
        if not row:
            return ProgressState()
        return ProgressState(
            start_date=_parse_dt(row["start_date"]),
            current_streak=row["current_streak"],
            longest_streak=row["longest_streak"],
            total_photos=row["total_photos"],
            last_photo_at=_parse_dt(row["last_photo_at"]),
        )

    def save_progress(self, state: ProgressState) -> None:
        with self._transaction("save progress") as conn:
            self._write_progress(conn, state)

    @staticmethod
    def _write_progress(conn: sqlite3.Connection, state: ProgressState) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO user_progress "
            "(id, start_date, current_streak, longest_streak, total_photos, last_photo_at) "
            "VALUES (1, ?, ?, ?, ?, ?)",
            (
                _fmt_dt(state.start_date),
                state.current_streak,
                state.longest_streak,
                state.total_photos,
                _fmt_dt(state.last_photo_at),
            ),
        )

    # ── Notification settings ───────────────────────────────────────────────

    def get_setting_sections(self) -> Dict[str, dict]:
        rows = self.conn.execute("SELECT key, value FROM notification_settings").fetchall()
        sections: Dict[str, dict] = {}
        for r in rows:
            try:
                sections[r["key"]] = json.loads(r["value"])
            except json.JSONDecodeError:
                logger.warning("Ignoring unreadable setting %r.", r["key"])
        return sections

    def save_setting_sections(self, sections: Dict[str, dict]) -> None:
        with self._transaction("save notification settings") as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO notification_settings (key, value) VALUES (?, ?)",
                [(key, json.dumps(value)) for key, value in sections.items()],
            )

    # ── App state ───────────────────────────────────────────────────────────

    def get_app_state(self) -> AppState:
        row = self.conn.execute("SELECT * FROM app_state WHERE id = 1").fetchone()
        if not row:
            return AppState()
        return AppState(
            initialized=bool(row["initialized"]),
            onboarding_completed=bool(row["onboarding_completed"]),
            initialized_at=_parse_dt(row["initialized_at"]),
            profile=json.loads(row["profile_json"]) if row["profile_json"] else None,
        )

    def save_app_state(self, state: AppState) -> None:
        with self._transaction("save app state") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO app_state "
                "(id, initialized, onboarding_completed, initialized_at, profile_json) "
                "VALUES (1, ?, ?, ?, ?)",
                (
                    int(state.initialized),
                    int(state.onboarding_completed),
                    _fmt_dt(state.initialized_at),
                    json.dumps(state.profile) if state.profile is not None else None,
                ),
            )

    # ── Scheduled notification handles ──────────────────────────────────────

    def get_scheduled(self, kind: str) -> Optional[ScheduledNotification]:
        row = self.conn.execute(
            "SELECT * FROM scheduled_notifications WHERE kind = ?", (kind,)
        ).fetchone()
        return self._row_to_scheduled(row) if row else None

    def list_scheduled(self) -> List[ScheduledNotification]:
        rows = self.conn.execute(
            "SELECT * FROM scheduled_notifications ORDER BY kind"
        ).fetchall()
        return [self._row_to_scheduled(r) for r in rows]

    def save_scheduled(self, entry: ScheduledNotification) -> None:
        with self._transaction(f"track {entry.kind} notification") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO scheduled_notifications "
                "(kind, handle, dedup_key, fire_at, scheduled_at) VALUES (?, ?, ?, ?, ?)",
                (
                    entry.kind,
                    entry.handle,
                    entry.dedup_key,
                    _fmt_dt(entry.fire_at),
                    _fmt_dt(entry.scheduled_at),
                ),
            )

    def delete_scheduled(self, kind: str) -> None:
        with self._transaction(f"forget {kind} notification") as conn:
            conn.execute("DELETE FROM scheduled_notifications WHERE kind = ?", (kind,))

    # ── Reset ───────────────────────────────────────────────────────────────

    def reset_all_data(self) -> None:
        """Delete all data. Requires explicit confirmation in the UI."""
        with self._transaction("reset all data") as conn:
            for table in ["photo_records", "user_progress", "notification_settings",
                          "app_state", "scheduled_notifications"]:
                conn.execute(f"DELETE FROM {table}")
        logger.warning("All data has been reset.")

    # ── Row mappers ─────────────────────────────────────────────────────────

    @staticmethod
    def _row_to_photo(row: sqlite3.Row) -> PhotoRecord:
        return PhotoRecord(
            id=row["id"], day_number=row["day_number"], angle=row["angle"],
            storage_path=row["storage_path"],
            captured_at=_parse_dt(row["captured_at"]),
        )

    @staticmethod
    def _row_to_scheduled(row: sqlite3.Row) -> ScheduledNotification:
        return ScheduledNotification(
            kind=row["kind"], handle=row["handle"], dedup_key=row["dedup_key"],
            fire_at=_parse_dt(row["fire_at"]),
            scheduled_at=_parse_dt(row["scheduled_at"]),
        )


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   The Repository is the ONLY place raw SQL queries live. Services call
#   methods like repo.insert_photo_with_progress() instead of writing SQL.
#
# Key methods:
#   - insert_photo_with_progress(): the record and the recomputed progress
#     row go in one transaction, so a crash can't leave them disagreeing.
#   - get/save_setting_sections(): key → JSON value storage for settings.
#   - get/save/delete_scheduled(): the scheduler's handle ledger.
#   - reset_all_data(): the only "delete everything" path.
#
# Data flow:
#   Service layer → Repository.method() → SQL → sqlite3.Row → dataclass model
