"""
Notification analytics.

Counters are updated incrementally as delivery, open and journal events
arrive. The effectiveness score is the share of opened notifications that
were followed by a new mood entry within the follow-up window; only opens
whose window is still open are kept as pending state, so the work per event
does not grow with history.
"""

import logging
from datetime import datetime, timedelta

from moodguard.database.models import (
    NotificationAnalytics,
    NotificationType,
    SmartNotification,
    TypeStats,
)
from moodguard.database.repository import (
    AnalyticsRepository,
    MoodJournalRepository,
    NotificationRepository,
)

logger = logging.getLogger(__name__)


def apply_delivery(analytics: NotificationAnalytics, notification_type: NotificationType) -> None:
    analytics.total_sent += 1
    stats = analytics.type_breakdown.setdefault(notification_type.value, TypeStats())
    stats.sent += 1


def apply_open(
    analytics: NotificationAnalytics,
    notification_type: NotificationType,
    opened_at: datetime,
    window: timedelta,
) -> None:
    analytics.total_opened += 1
    stats = analytics.type_breakdown.setdefault(notification_type.value, TypeStats())
    stats.opened += 1
    analytics.pending_followups = [
        t for t in analytics.pending_followups if opened_at - t <= window
    ]
    analytics.pending_followups.append(opened_at)


def apply_mood_entry(
    analytics: NotificationAnalytics,
    entry_time: datetime,
    window: timedelta,
) -> int:
    """Resolve pending follow-ups against a new entry. Returns how many engaged."""
    engaged = 0
    pending = []
    for opened_at in analytics.pending_followups:
        if opened_at > entry_time:
            pending.append(opened_at)
        elif entry_time - opened_at <= window:
            engaged += 1
        # otherwise the window closed without an entry
    analytics.engaged_opens += engaged
    analytics.pending_followups = pending
    return engaged


class AnalyticsTracker:
    """Records delivery and open events into NotificationAnalytics."""

    def __init__(
        self,
        analytics_repo: AnalyticsRepository,
        notification_repo: NotificationRepository,
        followup_hours: int = 24,
    ):
        self.analytics_repo = analytics_repo
        self.notification_repo = notification_repo
        self.window = timedelta(hours=followup_hours)

    def summary(self) -> NotificationAnalytics:
        return self.analytics_repo.load()

    def record_delivery(self, notification: SmartNotification) -> NotificationAnalytics:
        """Count a delivery confirmed by the sink. Test notifications are not counted."""
        analytics = self.analytics_repo.load()
        if notification.is_test:
            return analytics
        apply_delivery(analytics, notification.type)
        self.analytics_repo.save(analytics)
        return analytics

    def record_open(self, notification_id: str, opened_at: datetime) -> bool:
        """
        Count an open event.

        Only the first open of a delivered notification is counted. Test
        notifications are ignored.

        Returns:
            True if the event changed the counters
        """
        notification = self.notification_repo.get_by_id(notification_id)
        if notification is None:
            logger.debug(f"Ignoring open for unknown notification {notification_id}")
            return False
        if not notification.sent:
            logger.debug(f"Ignoring open for undelivered notification {notification_id}")
            return False
        if notification.is_test:
            return False

        with self.analytics_repo.db.transaction():
            if not self.notification_repo.record_open(notification_id, opened_at):
                return False
            analytics = self.analytics_repo.load()
            apply_open(analytics, notification.type, opened_at, self.window)
            self.analytics_repo.save(analytics)
        return True

    def record_mood_entry(self, entry_time: datetime) -> int:
        """Credit pending opens followed by this entry. Returns how many engaged."""
        analytics = self.analytics_repo.load()
        if not analytics.pending_followups:
            return 0
        engaged = apply_mood_entry(analytics, entry_time, self.window)
        self.analytics_repo.save(analytics)
        return engaged

    def repair(self, journal: MoodJournalRepository) -> NotificationAnalytics:
        """
        Rebuild all counters from the notification history, open log and journal.

        Used for integrity repair only; normal operation is incremental.
        """
        notifications = {
            n.id: n for n in self.notification_repo.list_all() if not n.is_test
        }
        entry_times = sorted(
            e.created_at for e in journal.list_since(datetime.min)
        )

        analytics = NotificationAnalytics()
        for notification in notifications.values():
            if notification.sent:
                apply_delivery(analytics, notification.type)

        for notification_id, opened_at in self.notification_repo.list_opens():
            notification = notifications.get(notification_id)
            if notification is None or not notification.sent:
                continue
            apply_open(analytics, notification.type, opened_at, self.window)
            followed = [t for t in entry_times if opened_at <= t <= opened_at + self.window]
            if followed:
                analytics.engaged_opens += 1
                analytics.pending_followups.remove(opened_at)

        latest_entry = entry_times[-1] if entry_times else None
        if latest_entry is not None:
            # Pending opens whose window already closed stay unengaged
            analytics.pending_followups = [
                t for t in analytics.pending_followups if t > latest_entry
            ]

        with self.analytics_repo.db.transaction():
            self.analytics_repo.save(analytics)
        logger.info(
            f"Analytics rebuilt: {analytics.total_sent} sent, "
            f"{analytics.total_opened} opened"
        )
        return analytics
