"""
Scheduler and dispatcher tests.
Tests for de-duplication, the per-pass cap, ordering and delivery outcomes.
"""

import pytest
from datetime import datetime, timedelta
from unittest.mock import Mock

from moodguard.database.models import (
    Frequency,
    NotificationPreferences,
    NotificationType,
    Priority,
    SmartNotification,
    TEST_TRIGGER_ID,
    TriggerKind,
)
from moodguard.notifiers.base import DeliveryResult
from moodguard.scheduler.dispatcher import Dispatcher
from moodguard.scheduler.policy import NotificationScheduler, minimum_spacing


def candidate(
    created_at,
    notification_type=NotificationType.MOOD_REMINDER,
    priority=Priority.NORMAL,
    trigger_id="inactivity-reminder",
    **kwargs,
):
    return SmartNotification(
        type=notification_type,
        title="Title",
        body="Body",
        priority=priority,
        created_at=created_at,
        trigger_id=trigger_id,
        **kwargs,
    )


@pytest.fixture
def scheduler():
    return NotificationScheduler(max_per_pass=3)


@pytest.fixture
def prefs():
    return NotificationPreferences()


class TestMinimumSpacing:
    """Test per-category spacing."""

    def test_follows_category_frequency(self, prefs):
        """Should derive spacing from the category frequency."""
        prefs.mood_reminders.frequency = Frequency.TWICE_DAILY
        assert minimum_spacing(NotificationType.MOOD_REMINDER, prefs) == timedelta(hours=6)
        assert minimum_spacing(NotificationType.SAFETY_PLAN_REVIEW, prefs) == timedelta(days=7)

    def test_default_spacing(self, prefs):
        """Should use a daily spacing for categories without a frequency."""
        assert minimum_spacing(NotificationType.DAILY_CHECKIN, prefs) == timedelta(hours=24)


class TestDeduplication:
    """Test minimum spacing between notifications of a type."""

    def test_second_reminder_within_spacing_is_suppressed(self, scheduler, prefs, base_time):
        """Should suppress a daily reminder two hours after the previous one."""
        first = scheduler.schedule(
            [candidate(base_time)], history=[], opened_ids=set(), preferences=prefs, now=base_time
        )
        later = base_time + timedelta(hours=2)
        second = scheduler.schedule(
            [candidate(later)],
            history=first.scheduled,
            opened_ids=set(),
            preferences=prefs,
            now=later,
        )

        assert len(first.scheduled) == 1
        assert second.scheduled == []
        assert len(second.suppressed) == 1

    def test_allowed_after_spacing(self, scheduler, prefs, base_time):
        """Should allow the next reminder once the spacing has elapsed."""
        prior = candidate(base_time, scheduled_time=base_time)
        later = base_time + timedelta(hours=24)
        result = scheduler.schedule(
            [candidate(later)], history=[prior], opened_ids=set(), preferences=prefs, now=later
        )
        assert len(result.scheduled) == 1

    def test_opened_notifications_do_not_block(self, scheduler, prefs, base_time):
        """Should ignore notifications the user already opened."""
        prior = candidate(base_time, scheduled_time=base_time)
        later = base_time + timedelta(hours=2)
        result = scheduler.schedule(
            [candidate(later)],
            history=[prior],
            opened_ids={prior.id},
            preferences=prefs,
            now=later,
        )
        assert len(result.scheduled) == 1

    def test_dismissed_notifications_do_not_block(self, scheduler, prefs, base_time):
        """Should ignore notifications the user dismissed."""
        prior = candidate(base_time, scheduled_time=base_time)
        later = base_time + timedelta(hours=2)
        result = scheduler.schedule(
            [candidate(later)],
            history=[prior],
            opened_ids=set(),
            preferences=prefs,
            now=later,
            dismissed_ids={prior.id},
        )
        assert len(result.scheduled) == 1

    def test_test_notifications_do_not_block(self, scheduler, prefs, base_time):
        """Should leave user-requested test notifications out of de-duplication."""
        prior = candidate(
            base_time,
            NotificationType.ENCOURAGEMENT,
            trigger_id=TEST_TRIGGER_ID,
            scheduled_time=base_time,
        )
        later = base_time + timedelta(hours=1)
        result = scheduler.schedule(
            [candidate(later, NotificationType.ENCOURAGEMENT, trigger_id="improving-encouragement")],
            history=[prior],
            opened_ids=set(),
            preferences=prefs,
            now=later,
        )
        assert [n.trigger_id for n in result.scheduled] == ["improving-encouragement"]

    def test_other_types_do_not_block(self, scheduler, prefs, base_time):
        """Should only compare notifications of the same type."""
        prior = candidate(base_time, NotificationType.DAILY_CHECKIN, scheduled_time=base_time)
        result = scheduler.schedule(
            [candidate(base_time)], history=[prior], opened_ids=set(), preferences=prefs, now=base_time
        )
        assert len(result.scheduled) == 1

    def test_duplicates_within_one_pass(self, scheduler, prefs, base_time):
        """Should keep only the first of two same-type candidates in a pass."""
        result = scheduler.schedule(
            [candidate(base_time, trigger_id="a"), candidate(base_time, trigger_id="b")],
            history=[],
            opened_ids=set(),
            preferences=prefs,
            now=base_time,
        )
        assert [n.trigger_id for n in result.scheduled] == ["a"]

    def test_twice_daily_allows_both_reminders(self, scheduler, prefs):
        """Should let 10:00 and 18:00 reminders through with twice-daily frequency."""
        prefs.mood_reminders.frequency = Frequency.TWICE_DAILY
        morning = datetime(2024, 3, 4, 10, 0)
        evening = datetime(2024, 3, 4, 18, 0)
        prior = candidate(morning, scheduled_time=morning)
        result = scheduler.schedule(
            [candidate(evening)], history=[prior], opened_ids=set(), preferences=prefs, now=evening
        )
        assert len(result.scheduled) == 1


class TestPerPassCap:
    """Test the per-pass cap and critical bypass."""

    def _distinct_candidates(self, now, priority=Priority.NORMAL):
        types = [
            NotificationType.MOOD_REMINDER,
            NotificationType.DAILY_CHECKIN,
            NotificationType.ENCOURAGEMENT,
            NotificationType.SAFETY_PLAN_REVIEW,
        ]
        return [candidate(now, t, priority, trigger_id=t.value) for t in types]

    def test_cap_drops_extra_candidates(self, scheduler, prefs, base_time):
        """Should keep at most three non-critical notifications."""
        result = scheduler.schedule(
            self._distinct_candidates(base_time),
            history=[],
            opened_ids=set(),
            preferences=prefs,
            now=base_time,
        )
        assert len(result.scheduled) == 3
        assert len(result.dropped) == 1
        assert result.dropped[0].type == NotificationType.SAFETY_PLAN_REVIEW

    def test_critical_bypasses_cap(self, scheduler, prefs, base_time):
        """Should deliver a critical notification even when the cap is met."""
        crisis = candidate(
            base_time,
            NotificationType.CRISIS_SUPPORT,
            Priority.CRITICAL,
            trigger_id="crisis-support",
        )
        candidates = self._distinct_candidates(base_time) + [crisis]

        result = scheduler.schedule(
            candidates, history=[], opened_ids=set(), preferences=prefs, now=base_time
        )

        scheduled_ids = [n.id for n in result.scheduled]
        assert crisis.id in scheduled_ids
        assert len(result.scheduled) == 4
        assert len(result.dropped) == 1

    def test_critical_bypasses_spacing(self, scheduler, prefs, base_time):
        """Should not suppress a critical notification for spacing."""
        prior = candidate(
            base_time, NotificationType.CRISIS_SUPPORT, Priority.CRITICAL, scheduled_time=base_time
        )
        later = base_time + timedelta(hours=1)
        crisis = candidate(later, NotificationType.CRISIS_SUPPORT, Priority.CRITICAL)

        result = scheduler.schedule(
            [crisis], history=[prior], opened_ids=set(), preferences=prefs, now=later
        )
        assert [n.id for n in result.scheduled] == [crisis.id]

    def test_higher_priority_wins_the_cap(self, scheduler, prefs, base_time):
        """Should fill the cap in priority order, ties in catalog order."""
        low = candidate(base_time, NotificationType.ENCOURAGEMENT, Priority.LOW, trigger_id="low")
        normal = candidate(base_time, NotificationType.DAILY_CHECKIN, trigger_id="normal")
        high = candidate(base_time, NotificationType.PATTERN_ALERT, Priority.HIGH, trigger_id="high")
        normal2 = candidate(base_time, NotificationType.MOOD_REMINDER, trigger_id="normal2")

        result = scheduler.schedule(
            [low, normal, high, normal2],
            history=[],
            opened_ids=set(),
            preferences=prefs,
            now=base_time,
        )
        assert [n.trigger_id for n in result.scheduled] == ["high", "normal", "normal2"]
        assert [n.trigger_id for n in result.dropped] == ["low"]


class TestFireTime:
    """Test fire time assignment."""

    def test_immediate_notifications_fire_now(self, scheduler, prefs, base_time):
        """Should fire event-driven notifications at the evaluation time."""
        result = scheduler.schedule(
            [candidate(base_time)], history=[], opened_ids=set(), preferences=prefs, now=base_time
        )
        assert result.scheduled[0].scheduled_time == base_time

    def test_time_based_fire_at_matched_time(self, scheduler, prefs):
        """Should fire time-based notifications at their configured time."""
        now = datetime(2024, 3, 4, 19, 3)
        draft = candidate(
            now,
            NotificationType.DAILY_CHECKIN,
            trigger_id="daily-checkin",
            trigger_kind=TriggerKind.TIME_BASED,
            payload={"matched_time": "2024-03-04T19:00:00"},
        )
        result = scheduler.schedule(
            [draft], history=[], opened_ids=set(), preferences=prefs, now=now
        )
        assert result.scheduled[0].scheduled_time == datetime(2024, 3, 4, 19, 0)
        assert result.scheduled[0].id == draft.id

    def test_candidates_are_not_mutated(self, scheduler, prefs, base_time):
        """Should leave the engine's drafts untouched."""
        draft = candidate(base_time)
        scheduler.schedule([draft], history=[], opened_ids=set(), preferences=prefs, now=base_time)
        assert draft.scheduled_time is None


class TestDispatcher:
    """Test delivery outcomes."""

    def test_reports_sink_results(self, base_time):
        """Should report acceptance and rejection per notification."""
        sink = Mock()
        sink.channel = "mock"
        sink.deliver.side_effect = [
            DeliveryResult(accepted=True, channel="mock"),
            DeliveryResult(accepted=False, channel="mock", reason="quota"),
        ]
        first, second = candidate(base_time), candidate(base_time)

        outcomes = Dispatcher(sink).dispatch([first, second])

        assert [o.accepted for o in outcomes] == [True, False]
        assert outcomes[1].reason == "quota"
        assert sink.deliver.call_count == 2

    def test_sink_exception_is_a_rejection(self, base_time):
        """Should treat a raising sink as a rejection."""
        sink = Mock()
        sink.channel = "mock"
        sink.deliver.side_effect = RuntimeError("gateway down")

        outcomes = Dispatcher(sink).dispatch([candidate(base_time)])

        assert outcomes[0].accepted is False
        assert "gateway down" in outcomes[0].reason
