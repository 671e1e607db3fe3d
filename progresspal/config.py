"""
App configuration — a JSON file merged over built-in defaults.

Missing file → defaults. Broken file → warning + defaults. The timezone
entry decides where "midnight" is for streak calendar days.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).resolve().parent.parent
CONFIG_PATH = ROOT_DIR / "config" / "progresspal.json"

DEFAULT_CONFIG = {
    "db_path": str(ROOT_DIR / "progresspal.db"),
    "photos_dir": str(ROOT_DIR / "photos"),
    "timezone": None,  # None → system local zone
    "log_file": "progresspal.log",
    "log_level": "INFO",
    "foreground_check_interval_min": 15,
}


def config_path() -> Path:
    override = os.environ.get("PROGRESSPAL_CONFIG")
    return Path(override) if override else CONFIG_PATH


def load_config(path: Optional[Path] = None) -> dict:
    """Read the JSON config, filling any missing keys from DEFAULT_CONFIG."""
    path = path or config_path()
    merged = DEFAULT_CONFIG.copy()
    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                merged.update(json.load(f))
        except (json.JSONDecodeError, OSError):
            logger.warning("Bad config at %s, using defaults.", path)
    return merged


def save_config(config: dict, path: Optional[Path] = None) -> None:
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2)


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """IANA name → tzinfo. Falls back to the system zone."""
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r, using system local zone.", name)
    return datetime.now().astimezone().tzinfo
