"""
Repository classes for the journal, alert log, notification history and settings.
"""

import json
from datetime import date, datetime, timedelta
from typing import Any, Optional

from .connection import Database
from .models import (
    CrisisAlert,
    CrisisSeverity,
    EvaluationState,
    MoodEntry,
    NotificationAnalytics,
    NotificationPreferences,
    NotificationType,
    Priority,
    RiskLevel,
    SmartNotification,
    TriggerKind,
)


class InvalidEntry(ValueError):
    """Raised when a mood entry is rejected at the journal boundary."""

    pass


def validate_entry(entry: MoodEntry) -> None:
    """
    Check a mood entry before it is written.

    Raises:
        InvalidEntry: If the score, date or timestamp is malformed
    """
    if isinstance(entry.mood, bool) or not isinstance(entry.mood, int):
        raise InvalidEntry(f"Mood score must be an integer, got {entry.mood!r}")
    if not 1 <= entry.mood <= 10:
        raise InvalidEntry(f"Mood score must be between 1 and 10, got {entry.mood}")
    if isinstance(entry.date, datetime) or not isinstance(entry.date, date):
        raise InvalidEntry(f"Invalid entry date: {entry.date!r}")
    if not isinstance(entry.created_at, datetime):
        raise InvalidEntry(f"Invalid entry timestamp: {entry.created_at!r}")
    if not entry.id:
        raise InvalidEntry("Mood entry id is required")
    for label in (*entry.warning_signs, *entry.coping_strategies):
        if not isinstance(label, str) or not label.strip():
            raise InvalidEntry(f"Invalid label: {label!r}")


class MoodJournalRepository:
    """Append-only journal of mood entries, read back in entry-time order."""

    def __init__(self, db: Database):
        self.db = db

    def append(self, entry: MoodEntry) -> str:
        """Append a validated entry and return its id."""
        validate_entry(entry)
        self.db.execute(
            """
            INSERT INTO mood_entries
            (id, entry_date, mood, notes, warning_signs, coping_strategies, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                entry.date.isoformat(),
                entry.mood,
                entry.notes,
                json.dumps(list(entry.warning_signs)),
                json.dumps(list(entry.coping_strategies)),
                entry.created_at.isoformat(),
            ),
        )
        self.db.commit()
        return entry.id

    def get_by_id(self, entry_id: str) -> Optional[MoodEntry]:
        """Get entry by ID."""
        cursor = self.db.execute("SELECT * FROM mood_entries WHERE id = ?", (entry_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_entry(row)

    def list_since(self, since: datetime) -> list[MoodEntry]:
        """List entries created at or after a timestamp, oldest first."""
        cursor = self.db.execute(
            """
            SELECT * FROM mood_entries
            WHERE created_at >= ?
            ORDER BY created_at, seq
            """,
            (since.isoformat(),),
        )
        return [self._row_to_entry(row) for row in cursor.fetchall()]

    def list_recent(self, limit: int = 50) -> list[MoodEntry]:
        """List the most recent entries, oldest first."""
        cursor = self.db.execute(
            """
            SELECT * FROM (
                SELECT * FROM mood_entries ORDER BY created_at DESC, seq DESC LIMIT ?
            ) ORDER BY created_at, seq
            """,
            (limit,),
        )
        return [self._row_to_entry(row) for row in cursor.fetchall()]

    def latest(self) -> Optional[MoodEntry]:
        """Get the entry with the latest timestamp, backdated entries included."""
        recent = self.list_recent(limit=1)
        return recent[0] if recent else None

    def count(self) -> int:
        cursor = self.db.execute("SELECT COUNT(*) FROM mood_entries")
        return cursor.fetchone()[0]

    def delete(self, entry_id: str) -> bool:
        """Delete an entry at the user's request."""
        cursor = self.db.execute("DELETE FROM mood_entries WHERE id = ?", (entry_id,))
        self.db.commit()
        return cursor.rowcount > 0

    def _row_to_entry(self, row) -> MoodEntry:
        """Convert database row to MoodEntry."""
        return MoodEntry(
            id=row["id"],
            date=date.fromisoformat(row["entry_date"]),
            mood=row["mood"],
            notes=row["notes"],
            warning_signs=tuple(json.loads(row["warning_signs"])),
            coping_strategies=tuple(json.loads(row["coping_strategies"])),
            created_at=datetime.fromisoformat(row["created_at"]),
        )


class AlertLogRepository:
    """Append-only log of crisis alerts."""

    def __init__(self, db: Database):
        self.db = db

    def append(self, alert: CrisisAlert) -> CrisisAlert:
        self.db.execute(
            """
            INSERT INTO crisis_alerts
            (id, severity, timestamp, triggers, recommended_actions,
             emergency_contacts_notified)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                alert.id,
                alert.severity.value,
                alert.timestamp.isoformat(),
                json.dumps(list(alert.triggers)),
                json.dumps(list(alert.recommended_actions)),
                1 if alert.emergency_contacts_notified else 0,
            ),
        )
        self.db.commit()
        return alert

    def latest(self) -> Optional[CrisisAlert]:
        """Get the most recent alert, if any."""
        recent = self.list_recent(limit=1)
        return recent[0] if recent else None

    def list_recent(self, limit: int = 50) -> list[CrisisAlert]:
        """List alerts, newest first."""
        cursor = self.db.execute(
            "SELECT * FROM crisis_alerts ORDER BY seq DESC LIMIT ?",
            (limit,),
        )
        return [self._row_to_alert(row) for row in cursor.fetchall()]

    def active(self, now: datetime, hours: int = 24) -> list[CrisisAlert]:
        """List undismissed alerts raised within the last `hours`, newest first."""
        cutoff = now - timedelta(hours=hours)
        cursor = self.db.execute(
            """
            SELECT * FROM crisis_alerts
            WHERE timestamp > ?
              AND id NOT IN (SELECT alert_id FROM alert_dismissals)
            ORDER BY seq DESC
            """,
            (cutoff.isoformat(),),
        )
        return [self._row_to_alert(row) for row in cursor.fetchall()]

    def dismiss(self, alert_id: str, dismissed_at: datetime) -> bool:
        """
        Record that the user dismissed an alert. The alert record is not changed.

        Returns:
            False if the alert is unknown or was already dismissed
        """
        cursor = self.db.execute("SELECT 1 FROM crisis_alerts WHERE id = ?", (alert_id,))
        if cursor.fetchone() is None:
            return False
        cursor = self.db.execute(
            """
            INSERT OR IGNORE INTO alert_dismissals (alert_id, dismissed_at)
            VALUES (?, ?)
            """,
            (alert_id, dismissed_at.isoformat()),
        )
        self.db.commit()
        return cursor.rowcount > 0

    def dismissed_ids(self) -> set[str]:
        cursor = self.db.execute("SELECT alert_id FROM alert_dismissals")
        return {row["alert_id"] for row in cursor.fetchall()}

    def _row_to_alert(self, row) -> CrisisAlert:
        """Convert database row to CrisisAlert."""
        return CrisisAlert(
            id=row["id"],
            severity=CrisisSeverity(row["severity"]),
            timestamp=datetime.fromisoformat(row["timestamp"]),
            triggers=tuple(json.loads(row["triggers"])),
            recommended_actions=tuple(json.loads(row["recommended_actions"])),
            emergency_contacts_notified=bool(row["emergency_contacts_notified"]),
        )


class NotificationRepository:
    """History of finalized notifications and their open events."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, notification: SmartNotification) -> SmartNotification:
        """Create a new notification record."""
        self.db.execute(
            """
            INSERT INTO notifications
            (id, type, title, body, priority, scheduled_time, payload, sent,
             trigger_id, trigger_kind, alert_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                notification.id,
                notification.type.value,
                notification.title,
                notification.body,
                notification.priority.value,
                (
                    notification.scheduled_time.isoformat()
                    if notification.scheduled_time
                    else None
                ),
                json.dumps(notification.payload),
                1 if notification.sent else 0,
                notification.trigger_id,
                notification.trigger_kind.value if notification.trigger_kind else None,
                notification.alert_id,
                notification.created_at.isoformat(),
            ),
        )
        self.db.commit()
        return notification

    def get_by_id(self, notification_id: str) -> Optional[SmartNotification]:
        """Get notification by ID."""
        cursor = self.db.execute(
            "SELECT * FROM notifications WHERE id = ?", (notification_id,)
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_notification(row)

    def mark_sent(self, notification_id: str) -> bool:
        """Flip the sent flag. Returns False if it was already set."""
        cursor = self.db.execute(
            "UPDATE notifications SET sent = 1 WHERE id = ? AND sent = 0",
            (notification_id,),
        )
        self.db.commit()
        return cursor.rowcount > 0

    def list_unsent(self) -> list[SmartNotification]:
        """List notifications awaiting (re)delivery, oldest first."""
        cursor = self.db.execute(
            "SELECT * FROM notifications WHERE sent = 0 ORDER BY seq"
        )
        return [self._row_to_notification(row) for row in cursor.fetchall()]

    def list_since(self, since: datetime) -> list[SmartNotification]:
        """List notifications created or scheduled at or after a timestamp."""
        cursor = self.db.execute(
            """
            SELECT * FROM notifications
            WHERE created_at >= ? OR scheduled_time >= ?
            ORDER BY seq
            """,
            (since.isoformat(), since.isoformat()),
        )
        return [self._row_to_notification(row) for row in cursor.fetchall()]

    def list_all(self) -> list[SmartNotification]:
        cursor = self.db.execute("SELECT * FROM notifications ORDER BY seq")
        return [self._row_to_notification(row) for row in cursor.fetchall()]

    def list_recent(self, limit: int = 50) -> list[SmartNotification]:
        """List notifications, newest first."""
        cursor = self.db.execute(
            "SELECT * FROM notifications ORDER BY seq DESC LIMIT ?", (limit,)
        )
        return [self._row_to_notification(row) for row in cursor.fetchall()]

    def trigger_fire_days(self, since: date) -> set[tuple[str, date]]:
        """(trigger id, fire day) pairs for notifications firing on or after a day."""
        cursor = self.db.execute(
            """
            SELECT DISTINCT trigger_id,
                   substr(COALESCE(scheduled_time, created_at), 1, 10) AS fire_day
            FROM notifications
            WHERE trigger_id IS NOT NULL
              AND substr(COALESCE(scheduled_time, created_at), 1, 10) >= ?
            """,
            (since.isoformat(),),
        )
        return {
            (row["trigger_id"], date.fromisoformat(row["fire_day"]))
            for row in cursor.fetchall()
        }

    def notified_alert_keys(self) -> set[tuple[str, str]]:
        """(trigger id, alert id) pairs that already produced a notification."""
        cursor = self.db.execute(
            """
            SELECT DISTINCT trigger_id, alert_id FROM notifications
            WHERE trigger_id IS NOT NULL AND alert_id IS NOT NULL
            """
        )
        return {(row["trigger_id"], row["alert_id"]) for row in cursor.fetchall()}

    def record_open(self, notification_id: str, opened_at: datetime) -> bool:
        """Record an open event. Returns False if the id was already opened."""
        cursor = self.db.execute(
            """
            INSERT OR IGNORE INTO notification_opens (notification_id, opened_at)
            VALUES (?, ?)
            """,
            (notification_id, opened_at.isoformat()),
        )
        self.db.commit()
        return cursor.rowcount > 0

    def opened_ids(self) -> set[str]:
        cursor = self.db.execute("SELECT notification_id FROM notification_opens")
        return {row["notification_id"] for row in cursor.fetchall()}

    def record_dismissal(self, notification_id: str, dismissed_at: datetime) -> bool:
        """Record a dismiss event. Returns False if the id was already dismissed."""
        cursor = self.db.execute(
            """
            INSERT OR IGNORE INTO notification_dismissals (notification_id, dismissed_at)
            VALUES (?, ?)
            """,
            (notification_id, dismissed_at.isoformat()),
        )
        self.db.commit()
        return cursor.rowcount > 0

    def dismissed_ids(self) -> set[str]:
        cursor = self.db.execute("SELECT notification_id FROM notification_dismissals")
        return {row["notification_id"] for row in cursor.fetchall()}

    def list_opens(self) -> list[tuple[str, datetime]]:
        """All open events as (notification id, opened at), oldest first."""
        cursor = self.db.execute(
            "SELECT * FROM notification_opens ORDER BY opened_at"
        )
        return [
            (row["notification_id"], datetime.fromisoformat(row["opened_at"]))
            for row in cursor.fetchall()
        ]

    def _row_to_notification(self, row) -> SmartNotification:
        """Convert database row to SmartNotification."""
        return SmartNotification(
            id=row["id"],
            type=NotificationType(row["type"]),
            title=row["title"],
            body=row["body"],
            priority=Priority(row["priority"]),
            scheduled_time=(
                datetime.fromisoformat(row["scheduled_time"])
                if row["scheduled_time"]
                else None
            ),
            payload=json.loads(row["payload"]),
            sent=bool(row["sent"]),
            trigger_id=row["trigger_id"],
            trigger_kind=(
                TriggerKind(row["trigger_kind"]) if row["trigger_kind"] else None
            ),
            alert_id=row["alert_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )


class _SettingsDocument:
    """JSON document stored under a single key of the settings table."""

    key = ""

    def __init__(self, db: Database):
        self.db = db

    def _read(self) -> Optional[dict[str, Any]]:
        cursor = self.db.execute(
            "SELECT value FROM settings WHERE key = ?", (self.key,)
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return json.loads(row["value"])

    def _write(self, value: dict[str, Any]) -> None:
        self.db.execute(
            """
            INSERT INTO settings (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (self.key, json.dumps(value)),
        )
        self.db.commit()


class PreferencesRepository(_SettingsDocument):
    """Notification preferences store."""

    key = "notification_preferences"

    def load(self) -> NotificationPreferences:
        """Load preferences, or defaults if none were saved."""
        data = self._read()
        if data is None:
            return NotificationPreferences()
        return NotificationPreferences.from_dict(data)

    def save(self, preferences: NotificationPreferences) -> bool:
        self._write(preferences.to_dict())
        return True


class AnalyticsRepository(_SettingsDocument):
    """Notification analytics store."""

    key = "notification_analytics"

    def load(self) -> NotificationAnalytics:
        data = self._read()
        if data is None:
            return NotificationAnalytics()
        return NotificationAnalytics.from_dict(data)

    def save(self, analytics: NotificationAnalytics) -> None:
        self._write(analytics.to_dict())


class EvaluationStateRepository(_SettingsDocument):
    """Crisis detector watermark and risk history."""

    key = "evaluation_state"

    def load(self) -> EvaluationState:
        data = self._read()
        if data is None:
            return EvaluationState()
        last_evaluated_at = data.get("last_evaluated_at")
        return EvaluationState(
            last_evaluated_entry_id=data.get("last_evaluated_entry_id"),
            risk_history=[RiskLevel(r) for r in data.get("risk_history", [])],
            last_evaluated_at=(
                datetime.fromisoformat(last_evaluated_at) if last_evaluated_at else None
            ),
        )

    def save(self, state: EvaluationState) -> None:
        self._write({
            "last_evaluated_entry_id": state.last_evaluated_entry_id,
            "risk_history": [r.value for r in state.risk_history],
            "last_evaluated_at": (
                state.last_evaluated_at.isoformat() if state.last_evaluated_at else None
            ),
        })
