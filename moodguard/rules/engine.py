"""
Trigger evaluation engine.
"""

import logging

from moodguard.database.models import (
    NotificationTrigger,
    SmartNotification,
    TriggerKind,
)
from .types import (
    CrisisLevelRule,
    EvaluationFacts,
    InactivityRule,
    MoodPatternRule,
    Rule,
    TimeBasedRule,
)

logger = logging.getLogger(__name__)

__all__ = ["TriggerEngine", "EvaluationFacts"]


class TriggerEngine:
    """Evaluates the trigger catalog against the current facts."""

    def __init__(self, time_tolerance_minutes: int = 5):
        """
        Initialize engine.

        Args:
            time_tolerance_minutes: How far from its time a time-based trigger may fire
        """
        self.time_tolerance_minutes = time_tolerance_minutes

    def evaluate_triggers(
        self,
        triggers: list[NotificationTrigger],
        facts: EvaluationFacts,
    ) -> list[SmartNotification]:
        """
        Evaluate every trigger independently.

        Args:
            triggers: Trigger catalog, in catalog order
            facts: Current derived state

        Returns:
            Draft notifications in catalog order
        """
        drafts = []

        for trigger in triggers:
            if not trigger.enabled:
                continue
            if not facts.preferences.category_enabled(trigger.notification_type):
                continue

            try:
                rule = self.create_rule(trigger)
            except ValueError as e:
                logger.warning(f"Skipping trigger {trigger.id}: {e}")
                continue

            draft = rule.evaluate(facts)
            if draft is not None:
                logger.debug(f"Trigger {trigger.id} fired ({draft.type.value})")
                drafts.append(draft)

        return drafts

    def create_rule(self, trigger: NotificationTrigger) -> Rule:
        """
        Create a Rule instance from a trigger definition.

        Args:
            trigger: Trigger definition

        Returns:
            Appropriate Rule instance

        Raises:
            ValueError: If the kind is unknown or a required condition is missing
        """
        kind = trigger.kind

        if kind == TriggerKind.TIME_BASED:
            return TimeBasedRule(trigger, tolerance_minutes=self.time_tolerance_minutes)

        elif kind == TriggerKind.MOOD_PATTERN:
            return MoodPatternRule(trigger)

        elif kind == TriggerKind.INACTIVITY:
            return InactivityRule(trigger)

        elif kind == TriggerKind.CRISIS_LEVEL:
            return CrisisLevelRule(trigger)

        else:
            raise ValueError(f"Unknown trigger kind: {kind}")
