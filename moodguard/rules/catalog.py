"""
Trigger catalog: built-in defaults and user-defined definitions.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from moodguard.database.models import (
    CrisisSeverity,
    NotificationPreferences,
    NotificationTrigger,
    NotificationType,
    Priority,
    TEST_TRIGGER_ID,
    Trend,
    TriggerConditions,
    TriggerKind,
    parse_time_of_day,
)
from .types import render_template

logger = logging.getLogger(__name__)


class InvalidTriggerDefinition(Exception):
    """Raised when a trigger definition is malformed."""

    def __init__(self, trigger_id: Optional[str], reason: str):
        self.trigger_id = trigger_id
        self.reason = reason
        super().__init__(f"Invalid trigger {trigger_id or '<unnamed>'}: {reason}")


# Condition each kind cannot be evaluated without
REQUIRED_CONDITIONS = {
    TriggerKind.TIME_BASED: "time_of_day",
    TriggerKind.MOOD_PATTERN: "trend_pattern",
    TriggerKind.INACTIVITY: "days_since_last_entry",
    TriggerKind.CRISIS_LEVEL: "crisis_level",
}


@dataclass
class CatalogLoadResult:
    """Triggers that loaded plus diagnostics for the ones that did not."""

    triggers: list[NotificationTrigger] = field(default_factory=list)
    errors: list[InvalidTriggerDefinition] = field(default_factory=list)


def _parse_conditions(trigger_id: str, raw: Any) -> TriggerConditions:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise InvalidTriggerDefinition(trigger_id, "conditions must be a mapping")

    unknown = set(raw) - set(TriggerConditions.__dataclass_fields__)
    if unknown:
        raise InvalidTriggerDefinition(
            trigger_id, f"unknown conditions: {', '.join(sorted(unknown))}"
        )

    conditions = TriggerConditions()
    try:
        if raw.get("time_of_day") is not None:
            time_of_day = str(raw["time_of_day"])
            parse_time_of_day(time_of_day)
            conditions.time_of_day = time_of_day
        if raw.get("days_since_last_entry") is not None:
            days = raw["days_since_last_entry"]
            if isinstance(days, bool) or not isinstance(days, int) or days < 0:
                raise ValueError("days_since_last_entry must be a non-negative integer")
            conditions.days_since_last_entry = days
        if raw.get("mood_threshold") is not None:
            threshold = float(raw["mood_threshold"])
            if not 1 <= threshold <= 10:
                raise ValueError("mood_threshold must be between 1 and 10")
            conditions.mood_threshold = threshold
        if raw.get("crisis_level") is not None:
            conditions.crisis_level = CrisisSeverity(raw["crisis_level"])
        if raw.get("trend_pattern") is not None:
            conditions.trend_pattern = Trend(raw["trend_pattern"])
    except (TypeError, ValueError) as e:
        raise InvalidTriggerDefinition(trigger_id, str(e)) from e
    return conditions


def parse_trigger(definition: dict[str, Any]) -> NotificationTrigger:
    """
    Build a NotificationTrigger from a definition mapping.

    Args:
        definition: Mapping with id, kind, type, conditions, message, priority, enabled

    Returns:
        Parsed trigger

    Raises:
        InvalidTriggerDefinition: If required fields are missing or invalid
    """
    if not isinstance(definition, dict):
        raise InvalidTriggerDefinition(None, "definition must be a mapping")

    trigger_id = definition.get("id")
    if not trigger_id or not isinstance(trigger_id, str):
        raise InvalidTriggerDefinition(None, "missing id")
    if trigger_id == TEST_TRIGGER_ID:
        raise InvalidTriggerDefinition(trigger_id, "id is reserved for test notifications")

    try:
        kind = TriggerKind(definition.get("kind"))
    except ValueError:
        raise InvalidTriggerDefinition(
            trigger_id, f"unknown kind {definition.get('kind')!r}"
        )
    try:
        notification_type = NotificationType(definition.get("type"))
    except ValueError:
        raise InvalidTriggerDefinition(
            trigger_id, f"unknown notification type {definition.get('type')!r}"
        )
    try:
        priority = Priority(definition.get("priority", Priority.NORMAL.value))
    except ValueError:
        raise InvalidTriggerDefinition(
            trigger_id, f"unknown priority {definition.get('priority')!r}"
        )

    conditions = _parse_conditions(trigger_id, definition.get("conditions"))
    required = REQUIRED_CONDITIONS[kind]
    if getattr(conditions, required) is None:
        raise InvalidTriggerDefinition(
            trigger_id, f"{kind.value} trigger requires condition '{required}'"
        )

    message = definition.get("message") or {}
    title = message.get("title") if isinstance(message, dict) else None
    body = message.get("body") if isinstance(message, dict) else None
    if not title or not body:
        raise InvalidTriggerDefinition(trigger_id, "message needs a title and a body")
    try:
        render_template(str(title), {})
        render_template(str(body), {})
    except (AttributeError, IndexError, ValueError) as e:
        raise InvalidTriggerDefinition(trigger_id, f"malformed template: {e}") from e

    return NotificationTrigger(
        id=trigger_id,
        kind=kind,
        notification_type=notification_type,
        title=str(title),
        body=str(body),
        conditions=conditions,
        priority=priority,
        action_text=message.get("action_text"),
        enabled=bool(definition.get("enabled", True)),
    )


def load_catalog(definitions: list[dict[str, Any]]) -> CatalogLoadResult:
    """
    Parse a list of trigger definitions.

    A bad definition is reported and skipped; the rest still load.
    Duplicate ids keep the first definition.
    """
    result = CatalogLoadResult()
    seen: set[str] = set()

    for definition in definitions:
        try:
            trigger = parse_trigger(definition)
        except InvalidTriggerDefinition as e:
            logger.warning(str(e))
            result.errors.append(e)
            continue

        if trigger.id in seen:
            error = InvalidTriggerDefinition(trigger.id, "duplicate id")
            logger.warning(str(error))
            result.errors.append(error)
            continue

        seen.add(trigger.id)
        result.triggers.append(trigger)

    return result


def default_catalog(preferences: NotificationPreferences) -> list[NotificationTrigger]:
    """
    Built-in triggers, derived from the user's preferences.

    Order matters: it breaks priority ties when the per-pass cap applies.
    """
    triggers = [
        NotificationTrigger(
            id="crisis-support",
            kind=TriggerKind.CRISIS_LEVEL,
            notification_type=NotificationType.CRISIS_SUPPORT,
            title="You don't have to face this alone",
            body=(
                "Your recent entries show signs of a {severity} crisis. "
                "{first_action}."
            ),
            conditions=TriggerConditions(crisis_level=CrisisSeverity.MILD),
            priority=Priority.CRITICAL,
            action_text="Open crisis resources",
        ),
        NotificationTrigger(
            id="declining-pattern",
            kind=TriggerKind.MOOD_PATTERN,
            notification_type=NotificationType.PATTERN_ALERT,
            title="Gentle Reminder",
            body=(
                "Your mood has been declining lately. Remember, you have tools "
                "and people who care about you."
            ),
            conditions=TriggerConditions(
                trend_pattern=Trend.DECLINING, mood_threshold=6
            ),
            priority=Priority.HIGH,
            action_text="Review coping strategies",
        ),
        NotificationTrigger(
            id="inactivity-reminder",
            kind=TriggerKind.INACTIVITY,
            notification_type=NotificationType.MOOD_REMINDER,
            title="We miss you!",
            body=(
                "You haven't checked in for {days_since_last_entry} days. "
                "How are you feeling?"
            ),
            conditions=TriggerConditions(days_since_last_entry=2),
        ),
        NotificationTrigger(
            id="daily-checkin",
            kind=TriggerKind.TIME_BASED,
            notification_type=NotificationType.DAILY_CHECKIN,
            title="Daily Check-in",
            body="How are you feeling today? Take a moment to track your mood.",
            conditions=TriggerConditions(time_of_day=preferences.daily_check_in.time),
        ),
    ]

    for time in preferences.mood_reminders.times:
        triggers.append(
            NotificationTrigger(
                id=f"mood-reminder-{time}",
                kind=TriggerKind.TIME_BASED,
                notification_type=NotificationType.MOOD_REMINDER,
                title="Mood Check",
                body=(
                    "A quick mood check can help you stay aware of your "
                    "mental health."
                ),
                conditions=TriggerConditions(time_of_day=time),
            )
        )

    triggers.extend([
        NotificationTrigger(
            id="safety-plan-review",
            kind=TriggerKind.TIME_BASED,
            notification_type=NotificationType.SAFETY_PLAN_REVIEW,
            title="Safety Plan Review",
            body="Take a few minutes to review and update your safety plan.",
            conditions=TriggerConditions(time_of_day="10:00"),
        ),
        NotificationTrigger(
            id="improving-encouragement",
            kind=TriggerKind.MOOD_PATTERN,
            notification_type=NotificationType.ENCOURAGEMENT,
            title="Great Progress!",
            body=(
                "Your mood has been improving. Keep up the great work with "
                "your self-care!"
            ),
            conditions=TriggerConditions(trend_pattern=Trend.IMPROVING),
            priority=Priority.LOW,
        ),
    ])
    return triggers
