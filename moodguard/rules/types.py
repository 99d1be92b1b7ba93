"""
Trigger rule types.

Each rule wraps one NotificationTrigger definition and turns it into a
candidate SmartNotification when its condition holds for the current facts.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Optional

from moodguard.analysis.trend import MoodTrend
from moodguard.database.models import (
    CrisisAlert,
    NotificationPreferences,
    NotificationTrigger,
    Priority,
    SmartNotification,
    parse_time_of_day,
)


@dataclass(frozen=True)
class EvaluationFacts:
    """Everything a trigger may look at during one evaluation pass."""

    now: datetime
    trend: MoodTrend
    preferences: NotificationPreferences
    days_since_last_entry: Optional[int] = None  # None: nothing journaled yet
    latest_alert: Optional[CrisisAlert] = None
    fired_days: frozenset[tuple[str, date]] = frozenset()
    notified_alert_keys: frozenset[tuple[str, str]] = frozenset()

    def template_values(self) -> dict[str, Any]:
        """Values available to message templates."""
        trend = self.trend
        alert = self.latest_alert
        return {
            "average_mood": (
                f"{trend.average_mood:.1f}" if trend.average_mood is not None else "n/a"
            ),
            "trend": trend.trend.value,
            "risk_level": trend.risk_level.value,
            "insight": trend.pattern_insights[0] if trend.pattern_insights else "",
            "days_since_last_entry": (
                self.days_since_last_entry
                if self.days_since_last_entry is not None
                else "several"
            ),
            "severity": alert.severity.value if alert else "",
            "first_action": alert.recommended_actions[0] if alert else "",
        }


class _TemplateValues(dict):
    """Leaves unknown placeholders untouched."""

    def __missing__(self, key):
        return "{" + key + "}"


def render_template(template: str, values: dict[str, Any]) -> str:
    """
    Substitute {placeholders} in a message template.

    Raises:
        ValueError: If the template itself is malformed
    """
    return template.format_map(_TemplateValues(values))


class Rule(ABC):
    """Base class for trigger rules."""

    def __init__(self, trigger: NotificationTrigger):
        self.trigger = trigger

    @abstractmethod
    def matches(self, facts: EvaluationFacts) -> bool:
        """Check whether the trigger condition holds."""
        pass

    def priority(self, facts: EvaluationFacts) -> Priority:
        return self.trigger.priority

    def evaluate(self, facts: EvaluationFacts) -> Optional[SmartNotification]:
        """
        Evaluate the rule.

        Args:
            facts: Current derived state

        Returns:
            Draft notification if the rule fired, None otherwise
        """
        if not self.matches(facts):
            return None
        return self._draft(facts)

    def _payload(self, facts: EvaluationFacts) -> dict[str, Any]:
        trend = facts.trend
        payload: dict[str, Any] = {
            "mood_trend": trend.trend.value,
            "risk_level": trend.risk_level.value,
            "average_mood": (
                round(trend.average_mood, 2) if trend.average_mood is not None else None
            ),
            "days_since_last_entry": facts.days_since_last_entry,
            "pattern_insights": list(trend.pattern_insights),
        }
        if self.trigger.action_text:
            payload["action_text"] = self.trigger.action_text
        return payload

    def _draft(self, facts: EvaluationFacts) -> SmartNotification:
        values = facts.template_values()
        return SmartNotification(
            type=self.trigger.notification_type,
            title=render_template(self.trigger.title, values),
            body=render_template(self.trigger.body, values),
            priority=self.priority(facts),
            created_at=facts.now,
            payload=self._payload(facts),
            sent=False,
            trigger_id=self.trigger.id,
            trigger_kind=self.trigger.kind,
        )


class TimeBasedRule(Rule):
    """Fires once a day when the clock is near the configured time."""

    def __init__(self, trigger: NotificationTrigger, tolerance_minutes: int = 5):
        super().__init__(trigger)
        if trigger.conditions.time_of_day is None:
            raise ValueError(f"Trigger {trigger.id} has no time_of_day")
        self.hour, self.minute = parse_time_of_day(trigger.conditions.time_of_day)
        self.tolerance = timedelta(minutes=tolerance_minutes)

    def matched_time(self, now: datetime) -> Optional[datetime]:
        """Nearest occurrence of the configured time within tolerance of now."""
        today = now.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        for candidate in (today, today - timedelta(days=1), today + timedelta(days=1)):
            if abs(now - candidate) <= self.tolerance:
                return candidate
        return None

    def matches(self, facts: EvaluationFacts) -> bool:
        matched = self.matched_time(facts.now)
        if matched is None:
            return False
        return (self.trigger.id, matched.date()) not in facts.fired_days

    def _payload(self, facts: EvaluationFacts) -> dict[str, Any]:
        payload = super()._payload(facts)
        payload["matched_time"] = self.matched_time(facts.now).isoformat()
        return payload


class MoodPatternRule(Rule):
    """Fires when the current trend matches a pattern."""

    def __init__(self, trigger: NotificationTrigger):
        super().__init__(trigger)
        if trigger.conditions.trend_pattern is None:
            raise ValueError(f"Trigger {trigger.id} has no trend_pattern")
        self.pattern = trigger.conditions.trend_pattern
        self.mood_threshold = trigger.conditions.mood_threshold

    def matches(self, facts: EvaluationFacts) -> bool:
        trend = facts.trend
        if trend.insufficient_data or trend.trend != self.pattern:
            return False
        if self.mood_threshold is not None:
            return trend.average_mood is not None and (
                trend.average_mood <= self.mood_threshold
            )
        return True

    def _payload(self, facts: EvaluationFacts) -> dict[str, Any]:
        payload = super()._payload(facts)
        payload["suggested_actions"] = [
            "Review your coping strategies",
            "Reach out to a support person",
            "Practice self-care",
        ]
        return payload


class InactivityRule(Rule):
    """Fires when no entry was journaled for a number of days."""

    def __init__(self, trigger: NotificationTrigger):
        super().__init__(trigger)
        threshold = trigger.conditions.days_since_last_entry
        if threshold is None or threshold < 0:
            raise ValueError(f"Trigger {trigger.id} needs days_since_last_entry >= 0")
        self.threshold = threshold

    def matches(self, facts: EvaluationFacts) -> bool:
        if facts.days_since_last_entry is None:
            return True
        return facts.days_since_last_entry >= self.threshold


class CrisisLevelRule(Rule):
    """Fires once per crisis alert at or above the threshold severity."""

    def __init__(self, trigger: NotificationTrigger):
        super().__init__(trigger)
        if trigger.conditions.crisis_level is None:
            raise ValueError(f"Trigger {trigger.id} has no crisis_level")
        self.threshold = trigger.conditions.crisis_level

    def matches(self, facts: EvaluationFacts) -> bool:
        alert = facts.latest_alert
        if alert is None or alert.severity < self.threshold:
            return False
        return (self.trigger.id, alert.id) not in facts.notified_alert_keys

    def priority(self, facts: EvaluationFacts) -> Priority:
        return Priority.CRITICAL

    def _payload(self, facts: EvaluationFacts) -> dict[str, Any]:
        payload = super()._payload(facts)
        alert = facts.latest_alert
        payload["crisis_severity"] = alert.severity.value
        payload["crisis_triggers"] = list(alert.triggers)
        payload["suggested_actions"] = list(alert.recommended_actions)
        payload["emergency_contacts_notified"] = alert.emergency_contacts_notified
        return payload

    def _draft(self, facts: EvaluationFacts) -> SmartNotification:
        draft = super()._draft(facts)
        draft.alert_id = facts.latest_alert.id
        return draft
