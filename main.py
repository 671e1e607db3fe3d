"""
ProgressPal — daily progress photos with streaks and reminders.
Entry point for the desktop shell (system tray app).
"""

import asyncio
import faulthandler
import logging
import sys
from pathlib import Path

faulthandler.enable()

# Ensure the package is importable when run from a checkout
sys.path.insert(0, str(Path(__file__).resolve().parent))

from PySide6.QtCore import QTimer
from PySide6.QtWidgets import (
    QApplication, QFileDialog, QMenu, QMessageBox, QStyle, QSystemTrayIcon,
)

from progresspal.config import config_path, load_config, resolve_timezone, save_config
from progresspal.data.database import Database
from progresspal.data.image_store import FileImageStore
from progresspal.data.models import PHOTO_ANGLES
from progresspal.data.repository import Repository
from progresspal.errors import ClockAnomalyError, StorageWriteError
from progresspal.services import feedback
from progresspal.services.clock import SystemClock
from progresspal.services.progress_service import ProgressService
from progresspal.ui.tray_notifier import TrayNotifier


def setup_logging(config: dict) -> None:
    logging.basicConfig(
        level=getattr(logging, str(config["log_level"]).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(config["log_file"], encoding="utf-8"),
        ],
    )


class TrayApp:
    """Wires the core to a tray icon. Everything runs on the Qt main thread."""

    def __init__(self, app: QApplication, config: dict) -> None:
        self.app = app
        self.logger = logging.getLogger(__name__)

        self.db = Database(Path(config["db_path"]))
        self.db.connect()
        clock = SystemClock(resolve_timezone(config["timezone"]))

        self.tray = QSystemTrayIcon(app.style().standardIcon(QStyle.StandardPixmap.SP_DialogYesButton))
        self.tray.setToolTip("ProgressPal")
        self.notifier = TrayNotifier(self.tray, clock.tz)

        self.service = ProgressService.create(
            repo=Repository(self.db.conn),
            image_store=FileImageStore(Path(config["photos_dir"])),
            notifier=self.notifier,
            clock=clock,
        )

        self._build_menu()
        self.tray.show()

        # Periodic stand-in for "app came to the foreground"
        self._foreground_timer = QTimer()
        self._foreground_timer.timeout.connect(self._on_foreground)
        self._foreground_timer.start(int(config["foreground_check_interval_min"]) * 60 * 1000)

    def start(self) -> None:
        status = asyncio.run(self.service.start())
        self.logger.info("Startup reconcile: %s", status.value)
        self._on_foreground()
        self._refresh_tooltip()

    # ── Tray menu ───────────────────────────────────────────────────────

    def _build_menu(self) -> None:
        menu = QMenu()
        for angle in PHOTO_ANGLES:
            action = menu.addAction(f"Add {angle} photo…")
            action.triggered.connect(lambda _=False, a=angle: self._on_add_photo(a))
        menu.addSeparator()
        menu.addAction("Send test notification").triggered.connect(self._on_test_notification)
        menu.addAction("Quit").triggered.connect(self._quit_app)
        self.tray.setContextMenu(menu)
        self._menu = menu

    def _on_add_photo(self, angle: str) -> None:
        path, _ = QFileDialog.getOpenFileName(
            None, f"Choose {angle} photo", "", "Images (*.jpg *.jpeg *.png *.heic)"
        )
        if not path:
            return
        try:
            record = asyncio.run(self.service.take_photo(angle, path))
        except ClockAnomalyError:
            QMessageBox.warning(None, "ProgressPal",
                                "That photo is dated before your last one and was not saved.")
            return
        except StorageWriteError as exc:
            QMessageBox.critical(None, "ProgressPal", f"Could not save the photo:\n{exc}")
            return

        progress = asyncio.run(self.service.get_progress())
        self.tray.showMessage(
            f"Day {record.day_number} {angle} view captured!",
            f"{feedback.angle_feedback(angle)}\n{feedback.streak_message(progress.current_streak)}",
        )
        self._refresh_tooltip()

    def _on_test_notification(self) -> None:
        asyncio.run(self.service.send_test_notification())

    def _on_foreground(self) -> None:
        status = asyncio.run(self.service.on_foreground())
        self.logger.debug("Foreground check: %s", status.value)

    def _refresh_tooltip(self) -> None:
        stats = asyncio.run(self.service.get_statistics())
        self.tray.setToolTip(
            f"ProgressPal — Day {stats.day_number}, "
            f"{stats.current_streak}-day streak, {stats.total_photos} photos"
        )

    def _quit_app(self) -> None:
        self._foreground_timer.stop()
        self.db.close()
        QApplication.quit()


def main() -> None:
    config = load_config()
    setup_logging(config)
    logger = logging.getLogger(__name__)
    logger.info("Starting ProgressPal...")
    if not config_path().exists():
        save_config(config)
        logger.info("Wrote default config to %s", config_path())

    app = QApplication(sys.argv)
    app.setApplicationName("ProgressPal")
    app.setOrganizationName("ProgressPal")
    app.setQuitOnLastWindowClosed(False)

    tray_app = TrayApp(app, config)
    tray_app.start()

    logger.info("Application started.")
    sys.exit(app.exec())


if __name__ == "__main__":
    main()


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   The entry point. Loads config, sets up logging, builds the core services
#   once (ProgressService.create) and hangs them off a system tray icon.
#
# Key points:
#   - Each tray action runs one core coroutine to completion with
#     asyncio.run(); the Qt event loop owns everything in between.
#   - The foreground timer calls on_foreground() periodically, which is
#     where the grace reminder gets armed.
#   - Reminder timers live in TrayNotifier, so start() reconciles on every
#     launch.
