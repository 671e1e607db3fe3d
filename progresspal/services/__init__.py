from .clock import FixedClock, SystemClock
from .notification_scheduler import NotificationScheduler
from .photo_store import PhotoRecordStore
from .progress_service import ProgressService
from .settings_store import NotificationSettingsStore

__all__ = [
    "FixedClock", "SystemClock", "NotificationScheduler", "PhotoRecordStore",
    "ProgressService", "NotificationSettingsStore",
]
