"""
Data models for MoodGuard.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional


class _Ordered(str, Enum):
    """String enum whose members are ordered by declaration."""

    @property
    def rank(self) -> int:
        return list(type(self)).index(self)

    def __lt__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank >= other.rank


class Trend(str, Enum):
    """Direction of recent mood entries."""

    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


class RiskLevel(_Ordered):
    """Heuristic risk classification."""

    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"

    def escalate(self) -> "RiskLevel":
        """Raise by one level, capped at HIGH."""
        members = list(RiskLevel)
        return members[min(self.rank + 1, len(members) - 1)]


class CrisisSeverity(_Ordered):
    """Severity of a crisis alert."""

    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"


class Priority(_Ordered):
    """Notification priority."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class TriggerKind(str, Enum):
    """Kinds of notification triggers."""

    TIME_BASED = "time-based"
    MOOD_PATTERN = "mood-pattern"
    INACTIVITY = "inactivity"
    CRISIS_LEVEL = "crisis-level"


class NotificationType(str, Enum):
    """Notification categories."""

    DAILY_CHECKIN = "daily-checkin"
    MOOD_REMINDER = "mood-reminder"
    CRISIS_SUPPORT = "crisis-support"
    SAFETY_PLAN_REVIEW = "safety-plan-review"
    ENCOURAGEMENT = "encouragement"
    PATTERN_ALERT = "pattern-alert"


class Frequency(str, Enum):
    """Reminder frequencies used by preference categories."""

    DAILY = "daily"
    TWICE_DAILY = "twice-daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class MoodEntry:
    """A single mood observation in the journal."""

    mood: int
    date: date
    created_at: datetime
    notes: Optional[str] = None
    warning_signs: tuple[str, ...] = ()
    coping_strategies: tuple[str, ...] = ()
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class CrisisAlert:
    """Crisis alert raised by the crisis detector."""

    severity: CrisisSeverity
    timestamp: datetime
    triggers: tuple[str, ...]
    recommended_actions: tuple[str, ...]
    emergency_contacts_notified: bool = False
    id: str = field(default_factory=new_id)


@dataclass
class DailyCheckInPreferences:
    enabled: bool = True
    time: str = "19:00"


@dataclass
class MoodReminderPreferences:
    enabled: bool = True
    frequency: Frequency = Frequency.DAILY
    times: list[str] = field(default_factory=lambda: ["10:00", "18:00"])


@dataclass
class CrisisSupportPreferences:
    enabled: bool = True
    proactive_reminders: bool = True


@dataclass
class SafetyPlanReviewPreferences:
    enabled: bool = True
    frequency: Frequency = Frequency.WEEKLY


@dataclass
class EncouragementPreferences:
    enabled: bool = True
    frequency: Frequency = Frequency.DAILY


_ALLOWED_FREQUENCIES = {
    "mood_reminders": {Frequency.DAILY, Frequency.TWICE_DAILY, Frequency.WEEKLY},
    "safety_plan_review": {Frequency.WEEKLY, Frequency.MONTHLY},
    "encouragement": {Frequency.DAILY, Frequency.WEEKLY},
}


def parse_time_of_day(value: str) -> tuple[int, int]:
    """
    Parse an "HH:MM" string.

    Raises:
        ValueError: If the value is not a valid 24h time
    """
    if not isinstance(value, str) or value.count(":") != 1:
        raise ValueError(f"Invalid time of day: {value!r}")
    hour_text, minute_text = value.split(":")
    if not (hour_text.isdigit() and minute_text.isdigit()):
        raise ValueError(f"Invalid time of day: {value!r}")
    hour, minute = int(hour_text), int(minute_text)
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"Invalid time of day: {value!r}")
    return hour, minute


@dataclass
class NotificationPreferences:
    """User notification preferences."""

    enabled: bool = True
    daily_check_in: DailyCheckInPreferences = field(
        default_factory=DailyCheckInPreferences
    )
    mood_reminders: MoodReminderPreferences = field(
        default_factory=MoodReminderPreferences
    )
    crisis_support: CrisisSupportPreferences = field(
        default_factory=CrisisSupportPreferences
    )
    safety_plan_review: SafetyPlanReviewPreferences = field(
        default_factory=SafetyPlanReviewPreferences
    )
    encouragement: EncouragementPreferences = field(
        default_factory=EncouragementPreferences
    )

    def category_enabled(self, notification_type: NotificationType) -> bool:
        """Check whether the preference category of a type is switched on."""
        if not self.enabled:
            return False
        if notification_type == NotificationType.DAILY_CHECKIN:
            return self.daily_check_in.enabled
        if notification_type == NotificationType.MOOD_REMINDER:
            return self.mood_reminders.enabled
        if notification_type == NotificationType.CRISIS_SUPPORT:
            return self.crisis_support.enabled
        if notification_type == NotificationType.PATTERN_ALERT:
            return (
                self.crisis_support.enabled
                and self.crisis_support.proactive_reminders
            )
        if notification_type == NotificationType.SAFETY_PLAN_REVIEW:
            return self.safety_plan_review.enabled
        if notification_type == NotificationType.ENCOURAGEMENT:
            return self.encouragement.enabled
        raise ValueError(f"Unknown notification type: {notification_type}")

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return {
            "enabled": self.enabled,
            "daily_check_in": {
                "enabled": self.daily_check_in.enabled,
                "time": self.daily_check_in.time,
            },
            "mood_reminders": {
                "enabled": self.mood_reminders.enabled,
                "frequency": self.mood_reminders.frequency.value,
                "times": list(self.mood_reminders.times),
            },
            "crisis_support": {
                "enabled": self.crisis_support.enabled,
                "proactive_reminders": self.crisis_support.proactive_reminders,
            },
            "safety_plan_review": {
                "enabled": self.safety_plan_review.enabled,
                "frequency": self.safety_plan_review.frequency.value,
            },
            "encouragement": {
                "enabled": self.encouragement.enabled,
                "frequency": self.encouragement.frequency.value,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NotificationPreferences":
        """
        Build preferences from a (possibly partial) dict.

        Missing keys fall back to defaults.

        Raises:
            ValueError: If a time or frequency value is invalid
        """
        merged = merge_preferences(cls().to_dict(), data or {})

        check_in = merged["daily_check_in"]
        parse_time_of_day(check_in["time"])
        for time in merged["mood_reminders"]["times"]:
            parse_time_of_day(time)

        frequencies = {}
        for section, allowed in _ALLOWED_FREQUENCIES.items():
            frequency = Frequency(merged[section]["frequency"])
            if frequency not in allowed:
                raise ValueError(
                    f"Frequency {frequency.value!r} not allowed for {section}"
                )
            frequencies[section] = frequency

        return cls(
            enabled=bool(merged["enabled"]),
            daily_check_in=DailyCheckInPreferences(
                enabled=bool(check_in["enabled"]),
                time=check_in["time"],
            ),
            mood_reminders=MoodReminderPreferences(
                enabled=bool(merged["mood_reminders"]["enabled"]),
                frequency=frequencies["mood_reminders"],
                times=list(merged["mood_reminders"]["times"]),
            ),
            crisis_support=CrisisSupportPreferences(
                enabled=bool(merged["crisis_support"]["enabled"]),
                proactive_reminders=bool(
                    merged["crisis_support"]["proactive_reminders"]
                ),
            ),
            safety_plan_review=SafetyPlanReviewPreferences(
                enabled=bool(merged["safety_plan_review"]["enabled"]),
                frequency=frequencies["safety_plan_review"],
            ),
            encouragement=EncouragementPreferences(
                enabled=bool(merged["encouragement"]["enabled"]),
                frequency=frequencies["encouragement"],
            ),
        )


def merge_preferences(base: dict[str, Any], changes: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge partial preference changes into a base dict."""
    merged = dict(base)
    for key, value in changes.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_preferences(merged[key], value)
        else:
            merged[key] = value
    return merged


@dataclass
class TriggerConditions:
    """Conditions of a notification trigger. Which are required depends on the kind."""

    time_of_day: Optional[str] = None
    days_since_last_entry: Optional[int] = None
    mood_threshold: Optional[float] = None
    crisis_level: Optional[CrisisSeverity] = None
    trend_pattern: Optional[Trend] = None


@dataclass
class NotificationTrigger:
    """Rule definition that proposes a notification when its condition holds."""

    id: str
    kind: TriggerKind
    notification_type: NotificationType
    title: str
    body: str
    conditions: TriggerConditions = field(default_factory=TriggerConditions)
    priority: Priority = Priority.NORMAL
    action_text: Optional[str] = None
    enabled: bool = True


# Trigger id carried by user-requested test notifications
TEST_TRIGGER_ID = "test"


@dataclass
class SmartNotification:
    """Notification produced by the trigger engine and finalized by the scheduler."""

    type: NotificationType
    title: str
    body: str
    priority: Priority
    created_at: datetime
    scheduled_time: Optional[datetime] = None
    payload: dict[str, Any] = field(default_factory=dict)
    sent: bool = False
    trigger_id: Optional[str] = None
    trigger_kind: Optional[TriggerKind] = None
    alert_id: Optional[str] = None
    id: str = field(default_factory=new_id)

    @property
    def fire_time(self) -> datetime:
        """Scheduled time, or creation time when fired immediately."""
        return self.scheduled_time or self.created_at

    @property
    def is_test(self) -> bool:
        return self.trigger_id == TEST_TRIGGER_ID


@dataclass
class TypeStats:
    sent: int = 0
    opened: int = 0


@dataclass
class NotificationAnalytics:
    """Aggregate notification counters."""

    total_sent: int = 0
    total_opened: int = 0
    type_breakdown: dict[str, TypeStats] = field(default_factory=dict)
    engaged_opens: int = 0
    pending_followups: list[datetime] = field(default_factory=list)

    @property
    def open_rate(self) -> float:
        if self.total_sent == 0:
            return 0.0
        return self.total_opened / self.total_sent

    @property
    def effectiveness_score(self) -> float:
        """Share of opens followed by a new mood entry within the follow-up window."""
        if self.total_opened == 0:
            return 0.0
        return self.engaged_opens / self.total_opened

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_sent": self.total_sent,
            "total_opened": self.total_opened,
            "open_rate": self.open_rate,
            "type_breakdown": {
                name: {"sent": stats.sent, "opened": stats.opened}
                for name, stats in self.type_breakdown.items()
            },
            "effectiveness_score": self.effectiveness_score,
            "engaged_opens": self.engaged_opens,
            "pending_followups": [t.isoformat() for t in self.pending_followups],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NotificationAnalytics":
        return cls(
            total_sent=data.get("total_sent", 0),
            total_opened=data.get("total_opened", 0),
            type_breakdown={
                name: TypeStats(sent=stats.get("sent", 0), opened=stats.get("opened", 0))
                for name, stats in data.get("type_breakdown", {}).items()
            },
            engaged_opens=data.get("engaged_opens", 0),
            pending_followups=[
                datetime.fromisoformat(t) for t in data.get("pending_followups", [])
            ],
        )


@dataclass
class EvaluationState:
    """Crisis detector bookkeeping carried between evaluation cycles."""

    last_evaluated_entry_id: Optional[str] = None
    risk_history: list[RiskLevel] = field(default_factory=list)
    last_evaluated_at: Optional[datetime] = None

    def is_newer(self, entry: MoodEntry) -> bool:
        """Whether an entry lies past the watermark, ordered by (created_at, id)."""
        if self.last_evaluated_at is None:
            return True
        return (entry.created_at, entry.id) > (
            self.last_evaluated_at,
            self.last_evaluated_entry_id or "",
        )
