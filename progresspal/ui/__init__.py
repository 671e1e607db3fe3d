from .tray_notifier import TrayNotifier

__all__ = ["TrayNotifier"]
