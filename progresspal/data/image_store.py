"""
ImageStore — copies a captured image into the app's photo directory.

The core only ever sees the returned storage path; what the camera layer
hands us (a temp file, a URI) is its business.
"""

from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path
from typing import Protocol
from urllib.parse import unquote, urlparse

from progresspal.errors import StorageWriteError

logger = logging.getLogger(__name__)


class ImageStore(Protocol):
    async def persist(self, source_uri: str) -> str:
        """Copy the image somewhere durable and return its storage path."""
        ...


class FileImageStore:
    """ImageStore backed by a plain directory on disk."""

    def __init__(self, photos_dir: Path) -> None:
        self.photos_dir = Path(photos_dir)

    async def persist(self, source_uri: str) -> str:
        source = self._to_path(source_uri)
        target = self.photos_dir / f"{uuid.uuid4().hex}{source.suffix.lower() or '.jpg'}"
        try:
            self.photos_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
        except OSError as exc:
            raise StorageWriteError(f"Could not copy {source} into {self.photos_dir}") from exc
        logger.info("Stored photo %s → %s", source.name, target.name)
        return str(target)

    @staticmethod
    def _to_path(source_uri: str) -> Path:
        parsed = urlparse(source_uri)
        if parsed.scheme == "file":
            return Path(unquote(parsed.path))
        return Path(source_uri)
