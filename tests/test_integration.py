"""
Integration tests.
End-to-end tests for the evaluation pass, from journal entry to delivery.
"""

import threading

import pytest
from unittest.mock import Mock, patch
from datetime import timedelta

from moodguard.config import AppConfig
from moodguard.database.connection import StorageUnavailable
from moodguard.database.models import (
    CrisisAlert,
    CrisisSeverity,
    NotificationType,
    Priority,
    RiskLevel,
    TEST_TRIGGER_ID,
    Trend,
)
from moodguard.database.repository import InvalidEntry
from moodguard.main import MoodGuardApp
from moodguard.notifiers.base import DeliveryResult, DeliverySink


@pytest.fixture
def sink():
    """Mock sink that accepts everything."""
    sink = Mock()
    sink.channel = "mock"
    sink.deliver.return_value = DeliveryResult(accepted=True, channel="mock")
    return sink


@pytest.fixture
def app(db, sink):
    return MoodGuardApp(db=db, sink=sink, config=AppConfig())


def log_series(app, scores, start, warning_signs_on_last=()):
    """Journal one entry per day; returns the last pass result."""
    result = None
    for day, score in enumerate(scores):
        is_last = day == len(scores) - 1
        _, result = app.add_mood_entry(
            score,
            warning_signs=warning_signs_on_last if is_last else (),
            now=start + timedelta(days=day),
        )
    return result


class TestMoodEntryFlow:
    """Test passes triggered by new journal entries."""

    def test_stable_mood_raises_no_alert(self, app, sink, base_time):
        """Should raise no alert and send no crisis notification for a stable mood."""
        result = log_series(app, [8, 7, 8, 7], base_time)

        assert result.trend.trend == Trend.STABLE
        assert result.trend.risk_level == RiskLevel.LOW
        assert app.alert_log.list_recent() == []
        sent_types = {call.args[0].type for call in sink.deliver.call_args_list}
        assert NotificationType.CRISIS_SUPPORT not in sent_types

    def test_declining_mood_raises_alert_and_crisis_notification(
        self, app, sink, base_time
    ):
        """Should escalate a declining series with a warning sign to a crisis alert."""
        result = log_series(app, [6, 4, 3, 2], base_time, ["hopelessness"])

        assert result.trend.trend == Trend.DECLINING
        assert result.trend.risk_level == RiskLevel.HIGH
        assert result.alert is not None
        assert result.alert.severity in (CrisisSeverity.MODERATE, CrisisSeverity.SEVERE)
        assert any("hopelessness" in reason for reason in result.alert.triggers)

        crisis = [n for n in result.delivered if n.type == NotificationType.CRISIS_SUPPORT]
        assert len(crisis) == 1
        assert crisis[0].priority == Priority.CRITICAL
        assert crisis[0].alert_id == result.alert.id

    def test_invalid_entry_is_rejected(self, app, base_time):
        """Should reject an out-of-range score without running a pass."""
        with pytest.raises(InvalidEntry):
            app.add_mood_entry(11, now=base_time)
        assert app.journal.count() == 0

    def test_repeated_pass_is_idempotent(self, app, sink, base_time):
        """Should not raise a second alert or notification for the same entry."""
        log_series(app, [6, 4, 3, 2], base_time, ["hopelessness"])
        alerts_before = len(app.alert_log.list_recent())
        notifications_before = len(app.notification_repo.list_all())

        now = base_time + timedelta(days=3, minutes=10)
        result = app.tick(now)

        assert result.alert is None
        assert result.scheduled == []
        assert len(app.alert_log.list_recent()) == alerts_before
        assert len(app.notification_repo.list_all()) == notifications_before

    def test_deleting_latest_entry_does_not_re_alert(self, app, sink, base_time):
        """Should not raise a second alert for an entry evaluated before a deletion."""
        log_series(app, [6, 4, 3, 2], base_time, ["hopelessness"])
        newer, _ = app.add_mood_entry(8, now=base_time + timedelta(days=4))
        alerts_before = len(app.alert_log.list_recent())
        state_before = app.state_repo.load()

        assert app.delete_mood_entry(newer.id) is True
        result = app.tick(base_time + timedelta(days=4, hours=1))

        assert result.alert is None
        assert len(app.alert_log.list_recent()) == alerts_before
        assert app.state_repo.load() == state_before

    def test_backdated_entry_does_not_count_as_latest(self, app, sink, base_time):
        """Should measure inactivity from the newest entry, not the last appended."""
        app.add_mood_entry(7, now=base_time)
        app.add_mood_entry(3, now=base_time - timedelta(days=10))

        result = app.tick(base_time + timedelta(hours=1))

        assert "inactivity-reminder" not in {n.trigger_id for n in result.scheduled}
        assert app.journal.latest().mood == 7


class TestTickFlow:
    """Test passes driven by timer ticks."""

    def test_daily_checkin_fires_once(self, app, sink, base_time):
        """Should fire the daily check-in near its time, once per day."""
        app.add_mood_entry(7, now=base_time)
        evening = base_time.replace(hour=19, minute=2)

        first = app.tick(evening)
        second = app.tick(evening + timedelta(minutes=2))

        assert [n.type for n in first.delivered] == [NotificationType.DAILY_CHECKIN]
        assert first.delivered[0].scheduled_time == base_time.replace(hour=19, minute=0)
        assert second.scheduled == []

    def test_inactivity_reminder(self, app, sink, base_time):
        """Should remind the user after two days without entries."""
        app.add_mood_entry(7, now=base_time)

        result = app.tick(base_time + timedelta(days=2))

        reminders = [n for n in result.delivered if n.trigger_id == "inactivity-reminder"]
        assert len(reminders) == 1
        assert "2 days" in reminders[0].body

    def test_inactivity_reminder_is_spaced(self, app, sink, base_time):
        """Should not repeat an unopened reminder within the daily spacing."""
        app.add_mood_entry(7, now=base_time)
        app.tick(base_time + timedelta(days=2))

        result = app.tick(base_time + timedelta(days=2, hours=2))

        assert result.scheduled == []

    def test_master_switch_off(self, app, sink, base_time):
        """Should produce nothing when notifications are disabled."""
        app.update_preferences({"enabled": False})

        result = app.tick(base_time)

        assert result.candidates == []
        sink.deliver.assert_not_called()

    def test_dry_run_persists_nothing(self, app, sink, base_time):
        """Should compute candidates without saving or sending them."""
        result = app.run_pass(now=base_time, dry_run=True)

        assert [n.trigger_id for n in result.scheduled] == ["inactivity-reminder"]
        assert app.notification_repo.list_all() == []
        sink.deliver.assert_not_called()


class TestDeliveryFailures:
    """Test retries and storage failures."""

    def test_rejected_notification_is_retried(self, app, sink, base_time):
        """Should keep a rejected notification and deliver it on the next pass."""
        sink.deliver.return_value = DeliveryResult(
            accepted=False, channel="mock", reason="offline"
        )
        first = app.tick(base_time)
        assert len(first.failed) == 1
        assert app.tracker.summary().total_sent == 0

        sink.deliver.return_value = DeliveryResult(accepted=True, channel="mock")
        second = app.tick(base_time + timedelta(minutes=30))

        # Retry of the stored notification; no new duplicate was scheduled
        assert second.scheduled == []
        assert [n.id for n in second.delivered] == [first.failed[0].id]
        assert app.notification_repo.list_unsent() == []
        assert app.tracker.summary().total_sent == 1

    def test_storage_failure_aborts_pass(self, app, sink, make_entry, base_time):
        """Should propagate storage failures, roll back the pass and deliver nothing."""
        # Journaled directly so no pass has evaluated it yet
        app.journal.append(make_entry(7, at=base_time - timedelta(days=3)))

        with patch.object(
            app.notification_repo, "create", side_effect=StorageUnavailable("disk I/O error")
        ):
            with pytest.raises(StorageUnavailable):
                app.tick(base_time)

        sink.deliver.assert_not_called()
        assert app.notification_repo.list_all() == []
        assert app.state_repo.load().last_evaluated_entry_id is None


class TestPreferencesAndAnalytics:
    """Test preference updates and the open-event flow."""

    def test_update_preferences(self, app):
        """Should merge and persist a partial update."""
        updated = app.update_preferences({"mood_reminders": {"frequency": "twice-daily"}})

        assert updated.mood_reminders.frequency.value == "twice-daily"
        assert app.preferences().mood_reminders.frequency.value == "twice-daily"
        assert app.preferences().daily_check_in.time == "19:00"

    def test_invalid_preferences_are_not_saved(self, app):
        """Should reject invalid values and keep the previous preferences."""
        with pytest.raises(ValueError):
            app.update_preferences({"daily_check_in": {"time": "7pm"}})
        assert app.preferences().daily_check_in.time == "19:00"

    def test_open_then_entry_counts_as_engaged(self, app, sink, base_time):
        """Should count an open followed by a journal entry as effective."""
        result = app.tick(base_time)
        notification = result.delivered[0]

        assert app.record_opened(notification.id, base_time + timedelta(minutes=5)) is True
        assert app.record_opened(notification.id, base_time + timedelta(minutes=6)) is False
        app.add_mood_entry(6, now=base_time + timedelta(minutes=20))

        summary = app.tracker.summary()
        assert summary.total_sent == 1
        assert summary.total_opened == 1
        assert summary.effectiveness_score == 1.0

    def test_send_test_notification(self, app, sink, base_time):
        """Should deliver a test notification without counting it in analytics."""
        result = app.send_test_notification(base_time)

        assert len(result.delivered) == 1
        assert result.delivered[0].title == "Test Notification"
        assert result.delivered[0].trigger_id == TEST_TRIGGER_ID
        assert app.notification_repo.list_unsent() == []
        assert app.tracker.summary().total_sent == 0


class TestCustomTriggers:
    """Test triggers loaded from configuration."""

    def test_configured_trigger_fires(self, db, sink, base_time):
        """Should evaluate configured triggers alongside the built-in ones."""
        config = AppConfig(triggers=[
            {
                "id": "afternoon-checkin",
                "kind": "time-based",
                "type": "daily-checkin",
                "conditions": {"time_of_day": "14:00"},
                "message": {"title": "Afternoon", "body": "Average so far: {average_mood}"},
            },
            {"id": "broken", "kind": "time-based", "type": "daily-checkin"},
        ])
        app = MoodGuardApp(db=db, sink=sink, config=config)
        app.add_mood_entry(7, now=base_time - timedelta(hours=1))

        result = app.tick(base_time)

        assert [n.trigger_id for n in result.delivered] == ["afternoon-checkin"]
        assert result.delivered[0].body == "Average so far: 7.0"
        assert [e.trigger_id for e in app.trigger_errors] == ["broken"]


class TestDismissals:
    """Test dismissing alerts and notifications."""

    def test_dismissed_alert_is_not_active(self, app, base_time):
        """Should drop a dismissed alert from the active list and keep it in the log."""
        result = log_series(app, [6, 4, 3, 2], base_time, ["hopelessness"])
        now = base_time + timedelta(days=3, hours=1)

        assert app.dismiss_alert(result.alert.id, now) is True
        assert app.dismiss_alert(result.alert.id, now) is False
        assert result.alert.id not in {a.id for a in app.active_alerts(now)}
        assert result.alert.id in {a.id for a in app.alert_log.list_recent()}

    def test_dismissed_alert_does_not_trigger_crisis_support(self, app, sink, base_time):
        """Should not send crisis support for an alert the user dismissed."""
        alert = app.alert_log.append(
            CrisisAlert(
                severity=CrisisSeverity.MODERATE,
                timestamp=base_time - timedelta(hours=1),
                triggers=("Risk level high with declining mood",),
                recommended_actions=("Review your coping strategies",),
            )
        )
        app.dismiss_alert(alert.id, base_time - timedelta(minutes=30))

        result = app.tick(base_time)

        assert NotificationType.CRISIS_SUPPORT not in {n.type for n in result.candidates}

    def test_undismissed_alert_triggers_crisis_support(self, app, sink, base_time):
        """Should send crisis support for an active alert nobody dismissed."""
        alert = app.alert_log.append(
            CrisisAlert(
                severity=CrisisSeverity.MODERATE,
                timestamp=base_time - timedelta(hours=1),
                triggers=("Risk level high with declining mood",),
                recommended_actions=("Review your coping strategies",),
            )
        )

        result = app.tick(base_time)

        crisis = [n for n in result.delivered if n.type == NotificationType.CRISIS_SUPPORT]
        assert [n.alert_id for n in crisis] == [alert.id]

    def test_dismissed_notification_does_not_block_reminder(self, app, sink, base_time):
        """Should treat a dismissed reminder like an opened one for spacing."""
        app.add_mood_entry(7, now=base_time)
        first = app.tick(base_time + timedelta(days=2))
        [reminder] = [n for n in first.delivered if n.trigger_id == "inactivity-reminder"]

        assert app.record_dismissed(reminder.id, base_time + timedelta(days=2, minutes=5))
        result = app.tick(base_time + timedelta(days=2, hours=2))

        assert "inactivity-reminder" in {n.trigger_id for n in result.scheduled}

    def test_dismissal_of_unknown_notification(self, app, base_time):
        """Should ignore dismissals for ids that were never delivered."""
        assert app.record_dismissed("missing", base_time) is False


class BlockingSink(DeliverySink):
    """Sink that holds every delivery until released."""

    channel = "blocking"

    def __init__(self):
        self.app = None
        self.entered = threading.Event()
        self.release = threading.Event()
        self.delivered_ids = []
        self.lock_held = []

    def deliver(self, notification):
        self.lock_held.append(self.app._lock.locked())
        self.delivered_ids.append(notification.id)
        self.entered.set()
        self.release.wait(timeout=5)
        return DeliveryResult(accepted=True, channel=self.channel)


class TestConcurrency:
    """Test serialized passes and delivery outside the lock."""

    @pytest.fixture
    def blocking_sink(self):
        sink = BlockingSink()
        yield sink
        sink.release.set()

    @pytest.fixture
    def blocking_app(self, db, blocking_sink):
        app = MoodGuardApp(db=db, sink=blocking_sink, config=AppConfig())
        blocking_sink.app = app
        return app

    def test_passes_are_serialized(self, blocking_app, blocking_sink, base_time):
        """Should hold a pass until the running one releases the lock."""
        blocking_sink.release.set()

        with blocking_app._lock:
            worker = threading.Thread(target=blocking_app.tick, args=(base_time,))
            worker.start()
            worker.join(timeout=0.2)
            assert worker.is_alive()
            assert blocking_app.notification_repo.list_all() == []

        worker.join(timeout=5)
        assert not worker.is_alive()
        assert len(blocking_app.notification_repo.list_all()) == 1

    def test_sink_is_called_without_the_lock(self, blocking_app, blocking_sink, base_time):
        """Should release the lock before handing notifications to the sink."""
        worker = threading.Thread(target=blocking_app.tick, args=(base_time,))
        worker.start()

        assert blocking_sink.entered.wait(timeout=5)
        assert blocking_sink.lock_held == [False]

        blocking_sink.release.set()
        worker.join(timeout=5)
        assert not worker.is_alive()

    def test_in_flight_notification_is_not_dispatched_twice(
        self, blocking_app, blocking_sink, base_time
    ):
        """Should let a second pass run during delivery without re-sending the record."""
        results = []
        worker = threading.Thread(
            target=lambda: results.append(blocking_app.tick(base_time))
        )
        worker.start()
        assert blocking_sink.entered.wait(timeout=5)

        second = blocking_app.tick(base_time + timedelta(minutes=10))

        assert second.scheduled == []
        assert second.delivered == []

        blocking_sink.release.set()
        worker.join(timeout=5)
        assert not worker.is_alive()

        assert len(blocking_sink.delivered_ids) == 1
        assert [n.id for n in results[0].delivered] == blocking_sink.delivered_ids
        assert blocking_app.notification_repo.list_unsent() == []
        assert blocking_app.tracker.summary().total_sent == 1
