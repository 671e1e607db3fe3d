from .database import Database
from .image_store import FileImageStore, ImageStore
from .models import (
    AppState,
    NotificationSettings,
    PhotoRecord,
    ProgressState,
    ScheduledNotification,
    Statistics,
)
from .repository import Repository

__all__ = [
    "Database", "FileImageStore", "ImageStore", "AppState", "NotificationSettings",
    "PhotoRecord", "ProgressState", "ScheduledNotification", "Statistics", "Repository",
]
