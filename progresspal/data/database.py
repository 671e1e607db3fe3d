"""
SQLite database initialization and connection management.

Single responsibility: own the connection, create tables.
All actual queries live in Repository.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Optional

from progresspal.errors import StorageWriteError

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent.parent / "progresspal.db"

SCHEMA_SQL = """
-- Photo records (source of truth) -------------------------------------------
CREATE TABLE IF NOT EXISTS photo_records (
    id              TEXT    PRIMARY KEY,
    day_number      INTEGER NOT NULL CHECK (day_number >= 1),
    angle           TEXT    NOT NULL CHECK (angle IN ('front', 'side', 'back')),
    storage_path    TEXT    NOT NULL,
    captured_at     TEXT    NOT NULL,
    captured_ms     INTEGER NOT NULL
);

-- Derived progress (singleton row, rebuilt from photo_records) --------------
CREATE TABLE IF NOT EXISTS user_progress (
    id              INTEGER PRIMARY KEY CHECK (id = 1),
    start_date      TEXT,
    current_streak  INTEGER NOT NULL DEFAULT 0,
    longest_streak  INTEGER NOT NULL DEFAULT 0,
    total_photos    INTEGER NOT NULL DEFAULT 0,
    last_photo_at   TEXT,
    CHECK (longest_streak >= current_streak)
);

-- Notification settings (one JSON value per section) -------------------------
CREATE TABLE IF NOT EXISTS notification_settings (
    key             TEXT    PRIMARY KEY,
    value           TEXT    NOT NULL
);

-- App state (singleton row) ---------------------------------------------------
CREATE TABLE IF NOT EXISTS app_state (
    id                      INTEGER PRIMARY KEY CHECK (id = 1),
    initialized             INTEGER NOT NULL DEFAULT 0,
    onboarding_completed    INTEGER NOT NULL DEFAULT 0,
    initialized_at          TEXT,
    profile_json            TEXT
);

-- Live scheduled notification handles, at most one per kind -----------------
CREATE TABLE IF NOT EXISTS scheduled_notifications (
    kind            TEXT    PRIMARY KEY,
    handle          TEXT,
    dedup_key       TEXT,
    fire_at         TEXT,
    scheduled_at    TEXT    NOT NULL
);

-- Indexes for common queries -------------------------------------------------
CREATE INDEX IF NOT EXISTS idx_photos_captured  ON photo_records(captured_ms);
CREATE INDEX IF NOT EXISTS idx_photos_day       ON photo_records(day_number);
CREATE INDEX IF NOT EXISTS idx_photos_angle     ON photo_records(angle);
"""


def connect_memory() -> sqlite3.Connection:
    """In-memory connection with the full schema (tests, dry runs)."""
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    conn.executescript(SCHEMA_SQL)
    conn.commit()
    return conn


class Database:
    """Thin wrapper around a SQLite connection."""

    def __init__(self, db_path: Optional[Path] = None) -> None:
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self.conn: Optional[sqlite3.Connection] = None

    # -- lifecycle -----------------------------------------------------------

    def connect(self) -> sqlite3.Connection:
        """Open (or return existing) connection and ensure schema exists."""
        if self.conn is not None:
            return self.conn
        logger.info("Connecting to SQLite at %s", self.db_path)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.execute("PRAGMA foreign_keys=ON")
            self._create_tables()
        except (sqlite3.Error, OSError) as exc:
            raise StorageWriteError(f"Cannot open database at {self.db_path}") from exc
        return self.conn

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Database connection closed.")

    # -- internal ------------------------------------------------------------

    def _create_tables(self) -> None:
        assert self.conn is not None
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()
        logger.info("Database schema ensured.")


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Manages the SQLite connection and makes sure all tables exist on startup.
#
# Key pieces:
#   - SCHEMA_SQL: the full DDL. CREATE IF NOT EXISTS makes it idempotent,
#     so it runs on every launch.
#   - photo_records is the history; user_progress is only ever a cached
#     fold of it and can be rebuilt at any time.
#   - scheduled_notifications keys on kind, so the "one live handle per
#     kind" rule is enforced by the primary key itself.
#
# Data flow:
#   App start → Database.connect() → tables created → Repository uses conn
