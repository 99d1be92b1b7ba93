"""
Main application entry point.
"""

import logging
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, Optional

from dotenv import load_dotenv

load_dotenv()

from moodguard.analysis.crisis import CrisisDetector, DetectionResult
from moodguard.analysis.trend import MoodTrend, TrendAnalyzer
from moodguard.analytics.tracker import AnalyticsTracker
from moodguard.config import AppConfig, load_config
from moodguard.database.connection import Database, StorageUnavailable
from moodguard.database.models import (
    CrisisAlert,
    MoodEntry,
    NotificationPreferences,
    NotificationTrigger,
    NotificationType,
    Priority,
    SmartNotification,
    TEST_TRIGGER_ID,
    merge_preferences,
)
from moodguard.database.repository import (
    AlertLogRepository,
    AnalyticsRepository,
    EvaluationStateRepository,
    MoodJournalRepository,
    NotificationRepository,
    PreferencesRepository,
)
from moodguard.notifiers.base import DeliverySink, SinkFactory
from moodguard.rules.catalog import default_catalog, load_catalog
from moodguard.rules.engine import EvaluationFacts, TriggerEngine
from moodguard.scheduler.dispatcher import Dispatcher
from moodguard.scheduler.policy import FREQUENCY_SPACING, NotificationScheduler

logger = logging.getLogger(__name__)

# How far back de-duplication needs to look
HISTORY_LOOKBACK = max(FREQUENCY_SPACING.values())


@dataclass
class PassResult:
    """What one evaluation pass computed and did."""

    trend: MoodTrend
    alert: Optional[CrisisAlert] = None
    candidates: list[SmartNotification] = field(default_factory=list)
    scheduled: list[SmartNotification] = field(default_factory=list)
    delivered: list[SmartNotification] = field(default_factory=list)
    failed: list[SmartNotification] = field(default_factory=list)


@dataclass
class _Plan:
    result: PassResult
    detection: DetectionResult
    preferences: NotificationPreferences


class MoodGuardApp:
    """
    Coordinator for one user profile.

    Owns the derived state of the profile and serializes evaluation passes.
    A pass reads a journal snapshot, computes trend, crisis alert and
    candidate notifications in memory, writes its results in one transaction,
    then releases the lock before handing notifications to the sink.
    """

    def __init__(
        self,
        db: Database,
        sink: DeliverySink,
        config: Optional[AppConfig] = None,
    ):
        """
        Initialize MoodGuard app.

        Args:
            db: Initialized database for this profile
            sink: Delivery sink for finalized notifications
            config: Application configuration (defaults if omitted)
        """
        self.db = db
        self.config = config or AppConfig()

        # Initialize repositories
        self.journal = MoodJournalRepository(db)
        self.alert_log = AlertLogRepository(db)
        self.notification_repo = NotificationRepository(db)
        self.preferences_repo = PreferencesRepository(db)
        self.analytics_repo = AnalyticsRepository(db)
        self.state_repo = EvaluationStateRepository(db)

        # Initialize services
        analysis = self.config.analysis
        self.analyzer = TrendAnalyzer.from_config(analysis)
        self.detector = CrisisDetector(sustained_high_cycles=analysis.sustained_high_cycles)
        self.engine = TriggerEngine(
            time_tolerance_minutes=self.config.scheduler.time_tolerance_minutes
        )
        self.scheduler = NotificationScheduler(max_per_pass=self.config.scheduler.max_per_pass)
        self.dispatcher = Dispatcher(sink)
        self.tracker = AnalyticsTracker(
            self.analytics_repo,
            self.notification_repo,
            followup_hours=self.config.analytics.followup_hours,
        )

        catalog = load_catalog(self.config.triggers)
        self.custom_triggers = catalog.triggers
        self.trigger_errors = catalog.errors

        self._lock = threading.Lock()
        self._in_flight: set[str] = set()

    @classmethod
    def from_config(cls, config: AppConfig) -> "MoodGuardApp":
        """Open the configured database and sink."""
        db = Database(config.database.path)
        db.initialize()
        return cls(db=db, sink=SinkFactory.create(config.delivery), config=config)

    def trigger_catalog(
        self, preferences: NotificationPreferences
    ) -> list[NotificationTrigger]:
        """Built-in triggers followed by the configured ones."""
        triggers = default_catalog(preferences)
        builtin_ids = {t.id for t in triggers}
        for trigger in self.custom_triggers:
            if trigger.id in builtin_ids:
                logger.warning(f"Trigger {trigger.id} shadows a built-in trigger; skipped")
                continue
            triggers.append(trigger)
        return triggers

    # Journal

    def add_mood_entry(
        self,
        mood: int,
        notes: Optional[str] = None,
        warning_signs: Iterable[str] = (),
        coping_strategies: Iterable[str] = (),
        now: Optional[datetime] = None,
    ) -> tuple[MoodEntry, PassResult]:
        """
        Journal a mood entry and run an evaluation pass for it.

        Raises:
            InvalidEntry: If the entry is rejected by the journal
            StorageUnavailable: If the store cannot be written
        """
        now = now or datetime.now()
        entry = MoodEntry(
            mood=mood,
            date=now.date(),
            created_at=now,
            notes=notes,
            warning_signs=tuple(dict.fromkeys(warning_signs)),
            coping_strategies=tuple(dict.fromkeys(coping_strategies)),
        )

        with self._lock:
            with self.db.transaction():
                self.journal.append(entry)
                self.tracker.record_mood_entry(now)
        logger.info(f"Mood entry {entry.id} recorded (score {entry.mood})")

        return entry, self.run_pass(now=now)

    def delete_mood_entry(self, entry_id: str) -> bool:
        with self._lock:
            return self.journal.delete(entry_id)

    # Evaluation passes

    def tick(self, now: Optional[datetime] = None) -> PassResult:
        """Periodic timer event."""
        return self.run_pass(now=now)

    def foreground(self, now: Optional[datetime] = None) -> PassResult:
        """App returned to the foreground."""
        return self.run_pass(now=now)

    def run_pass(self, now: Optional[datetime] = None, dry_run: bool = False) -> PassResult:
        """
        Run one evaluation pass.

        Args:
            now: Evaluation time (defaults to the current time)
            dry_run: Compute everything but persist and deliver nothing

        Raises:
            StorageUnavailable: If the store fails; nothing from the pass is applied
        """
        now = now or datetime.now()

        with self._lock:
            plan = self._plan(now)
            result = plan.result
            if dry_run:
                return result

            with self.db.transaction():
                if plan.detection.evaluated:
                    self.state_repo.save(plan.detection.state)
                if result.alert is not None:
                    self.alert_log.append(result.alert)
                for notification in result.scheduled:
                    self.notification_repo.create(notification)

            pending = self._claim_pending(plan.preferences)

        self._dispatch(pending, result)
        return result

    def _plan(self, now: datetime) -> _Plan:
        """Read a snapshot and compute the pass. No writes."""
        analysis = self.config.analysis
        window = self._analysis_window(now)

        trend = self.analyzer.analyze(window)
        detection = self.detector.evaluate(trend, window, self.state_repo.load(), now)

        latest_alert = detection.alert
        if latest_alert is None:
            active = self.alert_log.active(now, hours=analysis.active_alert_hours)
            latest_alert = active[0] if active else None

        latest_entry = self.journal.latest()
        days_since_last_entry = None
        if latest_entry is not None:
            days_since_last_entry = max((now - latest_entry.created_at).days, 0)

        preferences = self.preferences_repo.load()
        facts = EvaluationFacts(
            now=now,
            trend=trend,
            preferences=preferences,
            days_since_last_entry=days_since_last_entry,
            latest_alert=latest_alert,
            fired_days=frozenset(
                self.notification_repo.trigger_fire_days(now.date() - timedelta(days=1))
            ),
            notified_alert_keys=frozenset(self.notification_repo.notified_alert_keys()),
        )

        candidates = self.engine.evaluate_triggers(self.trigger_catalog(preferences), facts)
        schedule = self.scheduler.schedule(
            candidates,
            history=self.notification_repo.list_since(now - HISTORY_LOOKBACK),
            opened_ids=self.notification_repo.opened_ids(),
            preferences=preferences,
            now=now,
            dismissed_ids=self.notification_repo.dismissed_ids(),
        )

        result = PassResult(
            trend=trend,
            alert=detection.alert,
            candidates=candidates,
            scheduled=schedule.scheduled,
        )
        return _Plan(result=result, detection=detection, preferences=preferences)

    def _claim_pending(self, preferences: NotificationPreferences) -> list[SmartNotification]:
        """Unsent notifications not already being delivered by another pass. Caller holds the lock."""
        if not preferences.enabled:
            return []
        pending = [
            n for n in self.notification_repo.list_unsent() if n.id not in self._in_flight
        ]
        self._in_flight.update(n.id for n in pending)
        return pending

    def _dispatch(self, pending: list[SmartNotification], result: PassResult) -> None:
        """Deliver outside the lock, then apply confirmations under a new acquisition."""
        if not pending:
            return

        outcomes = []
        try:
            outcomes = self.dispatcher.dispatch(pending)
        finally:
            with self._lock:
                self._in_flight.difference_update(n.id for n in pending)
                for outcome in outcomes:
                    if not outcome.accepted:
                        result.failed.append(outcome.notification)
                        continue
                    with self.db.transaction():
                        if self.notification_repo.mark_sent(outcome.notification.id):
                            self.tracker.record_delivery(outcome.notification)
                    outcome.notification.sent = True
                    result.delivered.append(outcome.notification)

    # Notifications and analytics

    def record_opened(self, notification_id: str, opened_at: Optional[datetime] = None) -> bool:
        """Platform reported that the user opened a notification."""
        with self._lock:
            return self.tracker.record_open(notification_id, opened_at or datetime.now())

    def record_dismissed(
        self, notification_id: str, dismissed_at: Optional[datetime] = None
    ) -> bool:
        """Platform reported that the user dismissed a delivered notification."""
        with self._lock:
            notification = self.notification_repo.get_by_id(notification_id)
            if notification is None or not notification.sent:
                logger.debug(f"Ignoring dismissal of {notification_id}: not delivered")
                return False
            return self.notification_repo.record_dismissal(
                notification_id, dismissed_at or datetime.now()
            )

    def dismiss_alert(self, alert_id: str, dismissed_at: Optional[datetime] = None) -> bool:
        """
        Dismiss a crisis alert.

        A dismissed alert stays in the alert log but is no longer active, so
        crisis-level triggers stop considering it.

        Returns:
            False if the alert is unknown or already dismissed
        """
        with self._lock:
            dismissed = self.alert_log.dismiss(alert_id, dismissed_at or datetime.now())
        if dismissed:
            logger.info(f"Crisis alert {alert_id} dismissed")
        return dismissed

    def send_test_notification(self, now: Optional[datetime] = None) -> PassResult:
        """
        Send a notification straight through the delivery path.

        Test notifications are stored and retried like any other, but they are
        left out of de-duplication and analytics.
        """
        now = now or datetime.now()
        notification = SmartNotification(
            type=NotificationType.ENCOURAGEMENT,
            title="Test Notification",
            body="This is a test notification to verify the system is working.",
            priority=Priority.NORMAL,
            created_at=now,
            scheduled_time=now,
            trigger_id=TEST_TRIGGER_ID,
        )
        with self._lock:
            self.notification_repo.create(notification)
            self._in_flight.add(notification.id)
            result = PassResult(
                trend=self.current_trend(now),
                scheduled=[notification],
            )

        self._dispatch([notification], result)
        return result

    def update_preferences(self, changes: dict) -> NotificationPreferences:
        """
        Apply a partial preferences update.

        Raises:
            ValueError: If the merged preferences are invalid
        """
        with self._lock:
            current = self.preferences_repo.load()
            updated = NotificationPreferences.from_dict(
                merge_preferences(current.to_dict(), changes)
            )
            self.preferences_repo.save(updated)
        logger.info("Notification preferences updated")
        return updated

    def preferences(self) -> NotificationPreferences:
        return self.preferences_repo.load()

    def current_trend(self, now: Optional[datetime] = None) -> MoodTrend:
        """Trend of the current analysis window."""
        return self.analyzer.analyze(self._analysis_window(now or datetime.now()))

    def _analysis_window(self, now: datetime) -> list[MoodEntry]:
        """Most recent entries inside the analysis window, oldest first."""
        analysis = self.config.analysis
        entries = [
            entry
            for entry in self.journal.list_since(now - timedelta(days=analysis.window_days))
            if entry.created_at <= now
        ]
        return entries[-analysis.window_size:]

    def active_alerts(self, now: Optional[datetime] = None) -> list[CrisisAlert]:
        """Alerts raised within the active-alert window, newest first."""
        now = now or datetime.now()
        return self.alert_log.active(now, hours=self.config.analysis.active_alert_hours)


def main():
    """CLI entry point: run one evaluation pass."""
    import argparse

    parser = argparse.ArgumentParser(description="MoodGuard evaluation pass")
    parser.add_argument(
        "--config", default="config.yaml", help="Path to config file"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument(
        "--dry-run", action="store_true", help="Run without saving or sending notifications"
    )

    args = parser.parse_args()

    # Load config
    if Path(args.config).exists():
        config = load_config(args.config)
    else:
        config = AppConfig()

    # Setup logging
    log_level = logging.DEBUG if args.debug else getattr(
        logging, config.advanced.log_level.upper(), logging.INFO
    )
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if not Path(args.config).exists():
        logger.warning(f"Config file {args.config} not found, using defaults")

    try:
        app = MoodGuardApp.from_config(config)
        result = app.run_pass(dry_run=args.dry_run)
    except StorageUnavailable as e:
        logger.error(f"Storage unavailable, pass aborted: {e}")
        sys.exit(1)

    if args.dry_run:
        logger.info("Dry run mode - nothing was saved or sent")
    logger.info(
        f"Trend {result.trend.trend.value}, risk {result.trend.risk_level.value}; "
        f"{len(result.scheduled)} scheduled, {len(result.delivered)} delivered, "
        f"{len(result.failed)} failed"
    )
    app.db.close()


if __name__ == "__main__":
    main()
