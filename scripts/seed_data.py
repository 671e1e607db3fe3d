"""
Seed Data Generator — fills the database with a realistic photo history.

Run: python scripts/seed_data.py [days]
"""

import asyncio
import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from progresspal.config import load_config, resolve_timezone
from progresspal.data.database import Database
from progresspal.data.models import PHOTO_ANGLES
from progresspal.data.repository import Repository
from progresspal.services.clock import FixedClock
from progresspal.services.photo_store import PhotoRecordStore


class PlaceholderImageStore:
    """Pretends to copy images; seeded records point at fake paths."""

    async def persist(self, source_uri: str) -> str:
        return source_uri


async def seed(num_days: int = 30) -> None:
    config = load_config()
    db = Database(Path(config["db_path"]))
    db.connect()
    repo = Repository(db.conn)

    start = datetime.now(timezone.utc) - timedelta(days=num_days)
    clock = FixedClock(start, tz=resolve_timezone(config["timezone"]))
    store = PhotoRecordStore(repo, PlaceholderImageStore(), clock)

    # ── Generate captures ───────────────────────────────────────────────
    for day in range(num_days):
        if random.random() < 0.15:
            continue  # skipped day, breaks the streak
        captured = start + timedelta(days=day, hours=random.randint(7, 21),
                                     minutes=random.randint(0, 59))
        angles = random.sample(PHOTO_ANGLES, k=random.randint(1, len(PHOTO_ANGLES)))
        for i, angle in enumerate(angles):
            await store.append(angle, f"seed://day{day + 1}/{angle}.jpg",
                               captured_at=captured + timedelta(seconds=i))

    progress = await store.progress()
    print(f"Seeded {progress.total_photos} photos; "
          f"streak {progress.current_streak}, longest {progress.longest_streak}.")
    db.close()


if __name__ == "__main__":
    asyncio.run(seed(int(sys.argv[1]) if len(sys.argv) > 1 else 30))
