"""
Scheduling policy: fire times, de-duplication and the per-pass cap.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Iterable

from moodguard.database.models import (
    Frequency,
    NotificationPreferences,
    NotificationType,
    Priority,
    SmartNotification,
    TriggerKind,
)

logger = logging.getLogger(__name__)


FREQUENCY_SPACING = {
    Frequency.DAILY: timedelta(hours=24),
    Frequency.TWICE_DAILY: timedelta(hours=6),
    Frequency.WEEKLY: timedelta(days=7),
    Frequency.MONTHLY: timedelta(days=30),
}

# Categories without a frequency preference
DEFAULT_SPACING = timedelta(hours=24)


def minimum_spacing(
    notification_type: NotificationType,
    preferences: NotificationPreferences,
) -> timedelta:
    """Minimum interval between two unopened notifications of a type."""
    if notification_type == NotificationType.MOOD_REMINDER:
        return FREQUENCY_SPACING[preferences.mood_reminders.frequency]
    if notification_type == NotificationType.SAFETY_PLAN_REVIEW:
        return FREQUENCY_SPACING[preferences.safety_plan_review.frequency]
    if notification_type == NotificationType.ENCOURAGEMENT:
        return FREQUENCY_SPACING[preferences.encouragement.frequency]
    return DEFAULT_SPACING


@dataclass
class ScheduleResult:
    """Outcome of applying the scheduling policy to one pass's candidates."""

    scheduled: list[SmartNotification] = field(default_factory=list)
    suppressed: list[SmartNotification] = field(default_factory=list)
    dropped: list[SmartNotification] = field(default_factory=list)


class NotificationScheduler:
    """Turns candidate drafts into the notifications to finalize for a pass."""

    def __init__(self, max_per_pass: int = 3):
        """
        Initialize scheduler.

        Args:
            max_per_pass: Cap on non-critical notifications per pass
        """
        self.max_per_pass = max_per_pass

    def schedule(
        self,
        candidates: list[SmartNotification],
        history: Iterable[SmartNotification],
        opened_ids: set[str],
        preferences: NotificationPreferences,
        now: datetime,
        dismissed_ids: Iterable[str] = (),
    ) -> ScheduleResult:
        """
        Apply scheduling policy.

        Candidates are ordered by priority, ties keeping their catalog order.
        Critical candidates are always kept. Other candidates are suppressed
        when a notification of the same type that the user has neither opened
        nor dismissed fires within the type's minimum spacing, and dropped once
        the per-pass cap is reached. Test notifications never count.

        Args:
            candidates: Drafts from the trigger engine, in catalog order
            history: Previously finalized notifications
            opened_ids: Ids of notifications the user has opened
            preferences: Current preferences (spacing comes from frequencies)
            now: Evaluation time
            dismissed_ids: Ids of notifications the user has dismissed

        Returns:
            ScheduleResult; scheduled notifications carry their fire time
        """
        result = ScheduleResult()
        acknowledged = set(opened_ids) | set(dismissed_ids)
        recent = [
            n for n in history if n.id not in acknowledged and not n.is_test
        ]
        ordered = sorted(
            (self.assign_fire_time(candidate, now) for candidate in candidates),
            key=lambda n: -n.priority.rank,
        )

        kept = 0
        for candidate in ordered:
            if candidate.priority == Priority.CRITICAL:
                result.scheduled.append(candidate)
                recent.append(candidate)
                continue

            if self._is_duplicate(candidate, recent, preferences):
                logger.debug(
                    f"Suppressed {candidate.type.value} from {candidate.trigger_id}: "
                    "within minimum spacing"
                )
                result.suppressed.append(candidate)
                continue

            if kept >= self.max_per_pass:
                logger.info(
                    f"Dropped {candidate.type.value} from {candidate.trigger_id}: "
                    f"per-pass cap of {self.max_per_pass} reached"
                )
                result.dropped.append(candidate)
                continue

            kept += 1
            result.scheduled.append(candidate)
            recent.append(candidate)

        return result

    def assign_fire_time(
        self, candidate: SmartNotification, now: datetime
    ) -> SmartNotification:
        """Time-based notifications fire at their matched time, others now."""
        if candidate.trigger_kind == TriggerKind.TIME_BASED and (
            "matched_time" in candidate.payload
        ):
            fire_time = datetime.fromisoformat(candidate.payload["matched_time"])
        else:
            fire_time = now
        return replace(candidate, scheduled_time=fire_time, payload=dict(candidate.payload))

    def _is_duplicate(
        self,
        candidate: SmartNotification,
        recent: list[SmartNotification],
        preferences: NotificationPreferences,
    ) -> bool:
        spacing = minimum_spacing(candidate.type, preferences)
        for prior in recent:
            if prior.type != candidate.type:
                continue
            if abs(candidate.fire_time - prior.fire_time) < spacing:
                return True
        return False
