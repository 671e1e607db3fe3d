"""Unit tests for the service layer (photo store, settings, scheduler, facade)."""

import asyncio
import copy
import pytest
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from progresspal.data.database import connect_memory
from progresspal.data.models import NotificationSettings, ProgressState
from progresspal.data.repository import Repository
from progresspal.errors import ClockAnomalyError, InvalidSettings, NotifierError, StorageWriteError
from progresspal.services.clock import FixedClock
from progresspal.services import streak_engine
from progresspal.services.feedback import milestone_tier
from progresspal.services.notifier import (
    Daily, NotificationKind, OneShotAfter, OneShotAt, ScheduleStatus, Weekly,
    is_repeating, next_fire_time,
)
from progresspal.services.progress_service import ProgressService

UTC = timezone.utc
T0 = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)  # a Saturday

DAILY = NotificationKind.DAILY_REMINDER
GRACE = NotificationKind.GRACE_REMINDER
WEEKLY = NotificationKind.WEEKLY_PROGRESS

run = asyncio.run


class FakeNotifier:
    """Records every call; handles are h1, h2, ..."""

    def __init__(self, granted: bool = True) -> None:
        self.granted = granted
        self.live = {}
        self.sent = []
        self.cancelled = []
        self.schedule_calls = 0
        self.fail_schedule = False
        self.fail_send = False

    async def request_permission(self) -> bool:
        return self.granted

    async def schedule(self, kind, trigger, payload) -> str:
        await asyncio.sleep(0)
        if self.fail_schedule:
            raise NotifierError("device said no")
        self.schedule_calls += 1
        handle = f"h{self.schedule_calls}"
        self.live[handle] = (kind, trigger, payload)
        return handle

    async def cancel(self, handle) -> None:
        self.cancelled.append(handle)
        self.live.pop(handle, None)

    async def cancel_all(self) -> None:
        self.live.clear()

    async def send_immediate(self, payload) -> None:
        if self.fail_send:
            raise NotifierError("device said no")
        self.sent.append(payload)

    def of_kind(self, kind):
        return [(h, trigger) for h, (k, trigger, _) in self.live.items() if k == kind]


class FakeImageStore:
    def __init__(self) -> None:
        self.fail = False
        self.count = 0

    async def persist(self, source_uri: str) -> str:
        await asyncio.sleep(0)
        if self.fail:
            raise StorageWriteError("disk full")
        self.count += 1
        return f"/photos/{self.count}.jpg"


@pytest.fixture
def env():
    repo = Repository(connect_memory())
    clock = FixedClock(T0, tz=UTC)
    notifier = FakeNotifier()
    images = FakeImageStore()
    service = ProgressService.create(repo, images, notifier, clock)
    return SimpleNamespace(repo=repo, clock=clock, notifier=notifier, images=images,
                           service=service, scheduler=service.scheduler)


def capture(env, day: int, hour: int = 9, angle: str = "front"):
    env.clock.set(T0.replace(hour=hour) + timedelta(days=day - 1))
    return run(env.service.take_photo(angle, f"/tmp/cam/{day}-{hour}-{angle}.jpg"))


def milestones_sent(env):
    return [p for p in env.notifier.sent if p.data.get("type") == NotificationKind.STREAK_CELEBRATION]


# ── Photo store ──────────────────────────────────────────────────────────────

class TestPhotoRecordStore:
    def test_first_photo(self, env):
        # Scenario A
        record = capture(env, 1)
        progress = run(env.service.get_progress())
        assert record.day_number == 1
        assert progress.current_streak == 1
        assert progress.start_date == T0
        assert record.storage_path == "/photos/1.jpg"

    def test_day_numbers_follow_elapsed_time(self, env):
        capture(env, 1, hour=9)
        assert capture(env, 2, hour=8).day_number == 1   # 23h after start
        assert capture(env, 2, hour=10).day_number == 2
        assert capture(env, 5, hour=9).day_number == 4   # exactly 96h → day 4

    def test_queries(self, env):
        capture(env, 1, angle="front")
        capture(env, 1, hour=10, angle="side")
        capture(env, 3, hour=10, angle="side")
        photos = env.service.photos
        assert [r.angle for r in run(photos.all())] == ["front", "side", "side"]
        assert len(run(photos.by_day(1))) == 2
        assert len(run(photos.by_angle("side"))) == 2

    def test_replay_does_not_double_count(self, env):
        at = T0 + timedelta(hours=1)
        first = run(env.service.photos.append("front", "/tmp/a.jpg", captured_at=at))
        again = run(env.service.photos.append("front", "/tmp/a.jpg", captured_at=at))
        assert again == first
        assert run(env.service.get_progress()).total_photos == 1
        assert env.images.count == 1

    def test_backdated_capture_rejected(self, env):
        capture(env, 3)
        before = run(env.service.get_progress())
        with pytest.raises(ClockAnomalyError):
            capture(env, 2)
        assert run(env.service.get_progress()) == before
        assert env.images.count == 1

    def test_image_failure_leaves_state_untouched(self, env):
        capture(env, 1)
        before = run(env.service.get_progress())
        env.images.fail = True
        with pytest.raises(StorageWriteError):
            capture(env, 2)
        assert run(env.service.get_progress()) == before
        assert len(run(env.service.get_all_photos())) == 1

    def test_database_unavailable(self, env):
        env.repo.conn.close()
        with pytest.raises(StorageWriteError):
            capture(env, 1)

    def test_unknown_angle(self, env):
        with pytest.raises(ValueError):
            capture(env, 1, angle="top")

    def test_concurrent_captures_are_serialized(self, env):
        instants = [T0 + timedelta(days=d) for d in range(5)]

        async def burst():
            return await asyncio.gather(*(
                env.service.take_photo("front", f"/tmp/cam/{i}.jpg", captured_at=at)
                for i, at in enumerate(instants)
            ))

        records = run(burst())
        stored = run(env.service.get_all_photos())
        progress = run(env.service.get_progress())
        assert len({r.id for r in records}) == 5
        assert [r.captured_at for r in stored] == instants
        assert progress.total_photos == 5
        assert progress.current_streak == 5
        assert progress == streak_engine.fold(stored, UTC)

    def test_concurrent_appends_match_sequential_fold(self, env):
        instants = [T0, T0 + timedelta(hours=3), T0 + timedelta(days=1),
                    T0 + timedelta(days=2), T0 + timedelta(days=4)]

        async def burst():
            return await asyncio.gather(*(
                env.service.photos.append(angle, "/tmp/cam.jpg", captured_at=at)
                for angle, at in zip(["front", "side", "front", "back", "front"], instants)
            ))

        run(burst())
        stored = run(env.service.photos.all())
        progress = run(env.service.get_progress())
        assert len(stored) == 5
        assert env.images.count == 5
        assert (progress.total_photos, progress.current_streak, progress.longest_streak) == (5, 1, 3)
        assert progress == streak_engine.fold(stored, UTC)

    def test_recompute_keeps_day_numbers(self, env):
        capture(env, 1)
        capture(env, 2, hour=12)
        days = [r.day_number for r in run(env.service.get_all_photos())]
        env.repo.save_progress(ProgressState(start_date=T0 - timedelta(days=10)))
        run(env.service.photos.recompute())
        assert [r.day_number for r in run(env.service.get_all_photos())] == days

    def test_recompute_repairs_counters(self, env):
        capture(env, 1)
        capture(env, 2)
        good = run(env.service.get_progress())
        env.repo.save_progress(ProgressState(start_date=T0, current_streak=9,
                                             longest_streak=9, total_photos=50))
        assert run(env.service.photos.recompute()) == good


# ── Settings store ───────────────────────────────────────────────────────────

class TestSettingsStore:
    def test_defaults_when_unset(self, env):
        assert run(env.service.get_settings()) == NotificationSettings()

    def test_set_and_get(self, env):
        s = NotificationSettings()
        s.daily_reminder.time_of_day = "07:30"
        assert run(env.service.settings_store.set(s)) is True
        assert run(env.service.get_settings()).daily_reminder.time_of_day == "07:30"

    def test_invalid_keeps_previous(self, env):
        good = NotificationSettings()
        good.grace_reminder.delay_hours = 2
        run(env.service.settings_store.set(good))

        bad = copy.deepcopy(good)
        bad.weekly_progress.time_of_day = "25:00"
        assert run(env.service.settings_store.set(bad)) is False
        assert run(env.service.get_settings()) == good

    @pytest.mark.parametrize("value", [1800, None, "18:00\n"])
    def test_malformed_time_is_rejected_not_raised(self, env, value):
        s = NotificationSettings()
        s.daily_reminder.time_of_day = value
        assert run(env.service.settings_store.set(s)) is False
        assert run(env.service.get_settings()) == NotificationSettings()

    def test_non_bool_enabled_is_rejected(self, env):
        s = NotificationSettings()
        s.grace_reminder.enabled = 1
        assert run(env.service.settings_store.set(s)) is False

    def test_update_settings_raises_invalid(self, env):
        bad = NotificationSettings()
        bad.streak_celebration.milestones = [3, 3]
        with pytest.raises(InvalidSettings):
            run(env.service.update_settings(bad))
        assert run(env.service.get_settings()) == NotificationSettings()


# ── Scheduler ────────────────────────────────────────────────────────────────

class TestReconcile:
    def test_schedules_daily_and_weekly(self, env):
        status = run(env.scheduler.reconcile_all(NotificationSettings(), ProgressState()))
        assert status == ScheduleStatus.SCHEDULED
        assert [t for _, t in env.notifier.of_kind(DAILY)] == [Daily(18, 0)]
        assert [t for _, t in env.notifier.of_kind(WEEKLY)] == [Weekly(0, 10, 0)]
        assert env.scheduler.scheduled_count() == 2

    def test_repeated_reconcile_has_no_duplicates(self, env):
        for _ in range(3):
            run(env.scheduler.reconcile_all(NotificationSettings(), ProgressState()))
        assert len(env.notifier.of_kind(DAILY)) == 1
        assert len(env.notifier.of_kind(WEEKLY)) == 1
        assert env.scheduler.live_handle(DAILY) == env.notifier.of_kind(DAILY)[0][0]

    def test_disable_then_enable_daily(self, env):
        # Scenario F
        settings = NotificationSettings()
        run(env.service.update_settings(settings))
        settings.daily_reminder.enabled = False
        run(env.service.update_settings(settings))
        assert env.notifier.of_kind(DAILY) == []
        assert env.scheduler.live_handle(DAILY) is None

        settings.daily_reminder.enabled = True
        run(env.service.update_settings(settings))
        assert len(env.notifier.of_kind(DAILY)) == 1
        assert env.scheduler.live_handle(DAILY) == env.notifier.of_kind(DAILY)[0][0]

    def test_permission_denied_is_soft(self, env):
        run(env.scheduler.reconcile_all(NotificationSettings(), ProgressState()))
        env.notifier.granted = False
        status = run(env.scheduler.reconcile_all(NotificationSettings(), ProgressState()))
        assert status == ScheduleStatus.PERMISSION_DENIED
        assert env.notifier.live == {}
        assert env.scheduler.scheduled_count() == 0

    def test_notifier_failure_reports_failed(self, env):
        env.notifier.fail_schedule = True
        status = run(env.scheduler.reconcile_all(NotificationSettings(), ProgressState()))
        assert status == ScheduleStatus.FAILED

    def test_everything_disabled(self, env):
        s = NotificationSettings()
        s.daily_reminder.enabled = False
        s.weekly_progress.enabled = False
        status = run(env.scheduler.reconcile_all(s, ProgressState()))
        assert status == ScheduleStatus.NOTHING_TO_DO

    def test_ledger_timestamps_use_injected_clock(self, env):
        run(env.scheduler.reconcile_all(NotificationSettings(), ProgressState()))
        assert env.repo.get_scheduled(DAILY).scheduled_at == T0
        assert env.repo.get_scheduled(WEEKLY).scheduled_at == T0

    def test_concurrent_reconciles_coalesce_to_latest(self, env):
        requests = []
        for hhmm in ["07:00", "08:00", "09:00"]:
            s = NotificationSettings()
            s.daily_reminder.time_of_day = hhmm
            s.weekly_progress.enabled = False
            requests.append(s)

        async def burst():
            return await asyncio.gather(
                *(env.scheduler.reconcile_all(s, ProgressState()) for s in requests)
            )

        statuses = run(burst())
        assert statuses == [ScheduleStatus.SCHEDULED] * 3
        assert env.notifier.schedule_calls == 1
        assert [t for _, t in env.notifier.of_kind(DAILY)] == [Daily(9, 0)]


class TestGraceReminder:
    def _check(self, env, day: int, hour: int, settings=None):
        env.clock.set(T0.replace(hour=hour) + timedelta(days=day - 1))
        progress = run(env.service.get_progress())
        return run(env.scheduler.maybe_schedule_grace_reminder(
            settings or NotificationSettings(), progress))

    def test_scheduled_after_reminder_time_without_photo(self, env):
        capture(env, 1)
        assert self._check(env, 2, 19) == ScheduleStatus.SCHEDULED
        [(handle, trigger)] = env.notifier.of_kind(GRACE)
        assert trigger == OneShotAfter(timedelta(hours=12))
        assert env.scheduler.live_handle(GRACE) == handle

    def test_not_before_reminder_time(self, env):
        capture(env, 1)
        assert self._check(env, 2, 17) == ScheduleStatus.NOTHING_TO_DO
        assert env.notifier.of_kind(GRACE) == []

    def test_not_when_photo_taken_today(self, env):
        capture(env, 2, hour=8)
        assert self._check(env, 2, 19) == ScheduleStatus.NOTHING_TO_DO

    def test_not_when_disabled(self, env):
        s = NotificationSettings()
        s.grace_reminder.enabled = False
        assert self._check(env, 2, 19, s) == ScheduleStatus.NOTHING_TO_DO

    def test_once_per_day(self, env):
        assert self._check(env, 2, 19) == ScheduleStatus.SCHEDULED
        assert self._check(env, 2, 20) == ScheduleStatus.NOTHING_TO_DO
        assert self._check(env, 2, 23) == ScheduleStatus.NOTHING_TO_DO
        assert len(env.notifier.of_kind(GRACE)) == 1

    def test_next_day_arms_again(self, env):
        self._check(env, 2, 19)
        assert self._check(env, 3, 19) == ScheduleStatus.SCHEDULED
        assert len(env.notifier.of_kind(GRACE)) == 1
        assert env.notifier.cancelled == ["h1"]

    def test_fired_today_survives_reconcile(self, env):
        s = NotificationSettings()
        s.grace_reminder.delay_hours = 1
        assert self._check(env, 2, 19, s) == ScheduleStatus.SCHEDULED
        env.clock.set(T0.replace(hour=21) + timedelta(days=1))  # fired at 20:00
        run(env.scheduler.reconcile_all(s, ProgressState()))
        assert self._check(env, 2, 22, s) == ScheduleStatus.NOTHING_TO_DO

    def test_pending_cancelled_by_reconcile_can_rearm(self, env):
        assert self._check(env, 2, 19) == ScheduleStatus.SCHEDULED
        run(env.scheduler.reconcile_all(NotificationSettings(), ProgressState()))
        assert env.notifier.of_kind(GRACE) == []
        assert self._check(env, 2, 20) == ScheduleStatus.SCHEDULED

    def test_daily_reminder_time_is_cutoff_even_when_disabled(self, env):
        s = NotificationSettings()
        s.daily_reminder.enabled = False
        assert self._check(env, 2, 17, s) == ScheduleStatus.NOTHING_TO_DO
        assert self._check(env, 2, 19, s) == ScheduleStatus.SCHEDULED

    def test_photo_cancels_pending_grace(self, env):
        capture(env, 1)
        self._check(env, 2, 19)
        capture(env, 2, hour=20)
        assert env.notifier.of_kind(GRACE) == []
        assert env.scheduler.live_handle(GRACE) is None

    def test_on_foreground_runs_grace_check(self, env):
        capture(env, 1)
        env.clock.set(T0.replace(hour=19) + timedelta(days=1))
        assert run(env.service.on_foreground()) == ScheduleStatus.SCHEDULED


class TestLedgerUnavailable:
    @pytest.fixture
    def broken(self, env):
        env.repo.conn.execute("DROP TABLE scheduled_notifications")
        return env

    def test_capture_still_succeeds(self, broken):
        record = capture(broken, 1)
        assert record.day_number == 1
        assert run(broken.service.get_progress()).total_photos == 1
        assert len(run(broken.service.get_all_photos())) == 1

        capture(broken, 2)
        capture(broken, 3)
        assert run(broken.service.get_progress()).current_streak == 3
        assert [p.data["streakDays"] for p in milestones_sent(broken)] == [3]

    def test_scheduler_reports_failure(self, broken):
        capture(broken, 1)
        settings = NotificationSettings()
        progress = run(broken.service.get_progress())
        assert run(broken.scheduler.reconcile_all(settings, progress)) == ScheduleStatus.FAILED
        assert run(broken.scheduler.cancel_grace_reminder()) == ScheduleStatus.FAILED
        assert run(broken.scheduler.cancel_all()) == ScheduleStatus.FAILED

        broken.clock.set(T0.replace(hour=19) + timedelta(days=1))
        assert run(broken.service.on_foreground()) == ScheduleStatus.FAILED

    def test_live_handle_raises_storage_error(self, broken):
        with pytest.raises(StorageWriteError):
            broken.scheduler.live_handle(DAILY)


class TestMilestones:
    def test_reaching_seven_sends_exactly_one(self, env):
        # Scenario E
        for day in range(1, 7):
            capture(env, day)
        sent_before = len(milestones_sent(env))
        capture(env, 7)
        after_seven = milestones_sent(env)
        assert len(after_seven) == sent_before + 1
        assert after_seven[-1].data["streakDays"] == 7

        capture(env, 7, hour=15)  # second photo same day
        capture(env, 8)
        assert len(milestones_sent(env)) == sent_before + 1

    def test_disabled_celebrations(self, env):
        s = NotificationSettings()
        s.streak_celebration.enabled = False
        run(env.service.update_settings(s))
        for day in range(1, 4):
            capture(env, day)
        assert milestones_sent(env) == []

    def test_not_a_milestone(self, env):
        status = run(env.service.celebrate_if_milestone(5))
        assert status == ScheduleStatus.NOTHING_TO_DO

    def test_send_failure_never_blocks_capture(self, env):
        env.notifier.fail_send = True
        for day in range(1, 4):
            capture(env, day)
        assert len(run(env.service.get_all_photos())) == 3
        assert run(env.service.get_progress()).current_streak == 3

    @pytest.mark.parametrize("streak,tier", [
        (3, "encouragement"), (7, "encouragement"), (14, "consistency"),
        (30, "consistency"), (60, "achievement"), (90, "achievement"),
        (180, "legendary"), (365, "legendary"),
    ])
    def test_tiers(self, streak, tier):
        assert milestone_tier(streak).name == tier


# ── Facade ───────────────────────────────────────────────────────────────────

class TestProgressService:
    def test_statistics(self, env):
        capture(env, 1, angle="front")
        capture(env, 1, hour=10, angle="back")
        capture(env, 2, hour=10, angle="front")
        env.clock.set(T0 + timedelta(days=3, hours=1))

        stats = run(env.service.get_statistics())
        assert stats.day_number == 4
        assert stats.total_photos == 3
        assert stats.photos_by_angle == {"front": 2, "side": 0, "back": 1}
        assert stats.completion_rate == 50
        assert stats.current_streak == 0
        assert stats.longest_streak == 2
        assert stats.has_photo_today is False

    def test_initialize_user_anchors_start_date(self, env):
        anchor = T0 - timedelta(days=1)
        env.clock.set(anchor)
        run(env.service.initialize_user({"goal": "general_fitness"}))
        assert env.service.is_user_initialized()
        assert run(env.service.get_progress()).start_date == anchor

        record = capture(env, 1, hour=10)  # 25h after the anchor
        assert record.day_number == 2

    def test_initialize_user_keeps_existing_start(self, env):
        capture(env, 1)
        env.clock.set(T0 + timedelta(days=2))
        run(env.service.initialize_user({"goal": "weight_loss"}))
        assert run(env.service.get_progress()).start_date == T0

    def test_profile_updates(self, env):
        with pytest.raises(Exception, match="No existing user profile"):
            env.service.update_user_profile({"weight": 70})
        run(env.service.initialize_user({"weight": 80, "height": 180}))
        assert env.service.update_user_profile({"weight": 78}) == {"weight": 78, "height": 180}
        assert env.service.get_user_profile()["weight"] == 78

    def test_start_reconciles(self, env):
        capture(env, 1)
        assert run(env.service.start()) == ScheduleStatus.SCHEDULED
        assert env.service.scheduled_notification_count() == 2

    def test_test_notification(self, env):
        assert run(env.service.send_test_notification()) == ScheduleStatus.SENT
        env.notifier.granted = False
        assert run(env.service.send_test_notification()) == ScheduleStatus.PERMISSION_DENIED

    def test_reset_all_data(self, env):
        run(env.service.initialize_user({"goal": "muscle_gain"}))
        capture(env, 1)
        run(env.service.reset_all_data())
        assert env.notifier.live == {}
        assert run(env.service.get_progress()) == ProgressState()
        assert run(env.service.get_all_photos()) == []
        assert not env.service.is_user_initialized()


class TestNextFireTime:
    def test_daily_later_today(self):
        now = T0.replace(hour=17)
        assert next_fire_time(Daily(18, 0), now, UTC) == T0.replace(hour=18)

    def test_daily_rolls_to_tomorrow(self):
        now = T0.replace(hour=18)
        assert next_fire_time(Daily(18, 0), now, UTC) == T0.replace(hour=18) + timedelta(days=1)

    def test_daily_uses_local_zone(self):
        plus2 = timezone(timedelta(hours=2))
        fire = next_fire_time(Daily(18, 0), T0, plus2)
        assert fire == datetime(2025, 3, 1, 16, 0, tzinfo=UTC)

    def test_weekly_sunday(self):
        wednesday = datetime(2025, 3, 5, 12, 0, tzinfo=UTC)
        assert next_fire_time(Weekly(0, 10, 0), wednesday, UTC) == datetime(2025, 3, 9, 10, 0, tzinfo=UTC)

    def test_weekly_same_day_already_passed(self):
        sunday_late = datetime(2025, 3, 9, 11, 0, tzinfo=UTC)
        assert next_fire_time(Weekly(0, 10, 0), sunday_late, UTC) == datetime(2025, 3, 16, 10, 0, tzinfo=UTC)

    def test_one_shot_after(self):
        assert next_fire_time(OneShotAfter(timedelta(hours=12)), T0, UTC) == T0 + timedelta(hours=12)

    def test_one_shot_at_is_absolute(self):
        at = T0 + timedelta(days=2)
        assert next_fire_time(OneShotAt(at), T0, UTC) == at

    def test_repeating_kinds(self):
        assert is_repeating(Daily(8, 0)) and is_repeating(Weekly(1, 8, 0))
        assert not is_repeating(OneShotAfter(timedelta(hours=1)))
        assert not is_repeating(OneShotAt(T0))
