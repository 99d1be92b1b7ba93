"""
CLI commands for MoodGuard.
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

load_dotenv()

from moodguard.config import AppConfig, load_config
from moodguard.database.repository import InvalidEntry
from moodguard.main import MoodGuardApp
from moodguard.rules.catalog import CatalogLoadResult, load_catalog

# Preference fields holding HH:MM strings (YAML 1.1 would read 10:00 as an int)
TIME_FIELDS = {"time", "times"}


def preference_change(key: str, raw_value: str) -> dict[str, Any]:
    """
    Turn a dotted key and a command line value into a partial preferences dict.

    Example: ("mood_reminders.times", "09:00,21:00") becomes
    {"mood_reminders": {"times": ["09:00", "21:00"]}}.
    """
    parts = key.split(".")
    field_name = parts[-1]

    if field_name == "times":
        value: Any = [t.strip() for t in raw_value.split(",") if t.strip()]
    elif field_name in TIME_FIELDS:
        value = raw_value.strip()
    else:
        value = yaml.safe_load(raw_value)

    change: dict[str, Any] = {field_name: value}
    for part in reversed(parts[:-1]):
        change = {part: change}
    return change


def validate_triggers(path: str) -> CatalogLoadResult:
    """Load trigger definitions from a YAML file (a list, or a mapping with 'triggers')."""
    with open(path) as f:
        raw = yaml.safe_load(f) or []
    if isinstance(raw, dict):
        raw = raw.get("triggers") or []
    return load_catalog(raw)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="MoodGuard CLI")
    parser.add_argument("--config", default="config.yaml", help="Path to config file")
    parser.add_argument("--db", help="Database path (overrides config)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # Mood journal commands
    mood_parser = subparsers.add_parser("mood", help="Mood journal")
    mood_subparsers = mood_parser.add_subparsers(dest="action")

    add_mood_parser = mood_subparsers.add_parser("add", help="Record a mood entry")
    add_mood_parser.add_argument("score", type=int, help="Mood score 1-10")
    add_mood_parser.add_argument("--notes", help="Free-text notes")
    add_mood_parser.add_argument(
        "--warning-signs", default="", help="Comma-separated warning signs"
    )
    add_mood_parser.add_argument(
        "--coping", default="", help="Comma-separated coping strategies"
    )
    add_mood_parser.add_argument("--at", help="Entry time (ISO format)")

    list_mood_parser = mood_subparsers.add_parser("list", help="List recent entries")
    list_mood_parser.add_argument("--limit", type=int, default=20, help="Max entries")

    delete_mood_parser = mood_subparsers.add_parser("delete", help="Delete an entry")
    delete_mood_parser.add_argument("entry_id", help="Entry ID")

    # Analysis commands
    trend_parser = subparsers.add_parser("trend", help="Show current mood trend")
    trend_parser.add_argument("--at", help="Evaluation time (ISO format)")

    alerts_parser = subparsers.add_parser("alerts", help="Crisis alerts")
    alerts_subparsers = alerts_parser.add_subparsers(dest="action")
    list_alerts_parser = alerts_subparsers.add_parser("list", help="List recent alerts")
    list_alerts_parser.add_argument("--limit", type=int, default=20, help="Max alerts")
    dismiss_alert_parser = alerts_subparsers.add_parser("dismiss", help="Dismiss an alert")
    dismiss_alert_parser.add_argument("alert_id", help="Alert ID")
    dismiss_alert_parser.add_argument("--at", help="Dismissal time (ISO format)")

    # Preferences commands
    prefs_parser = subparsers.add_parser("prefs", help="Notification preferences")
    prefs_subparsers = prefs_parser.add_subparsers(dest="action")
    prefs_subparsers.add_parser("show", help="Show preferences")
    set_prefs_parser = prefs_subparsers.add_parser("set", help="Change a preference")
    set_prefs_parser.add_argument("key", help="Dotted key, e.g. daily_check_in.time")
    set_prefs_parser.add_argument("value", help="New value")

    # Trigger commands
    triggers_parser = subparsers.add_parser("triggers", help="Trigger catalog")
    triggers_subparsers = triggers_parser.add_subparsers(dest="action")
    triggers_subparsers.add_parser("list", help="List active triggers")
    validate_parser = triggers_subparsers.add_parser(
        "validate", help="Validate trigger definitions in a YAML file"
    )
    validate_parser.add_argument("path", help="YAML file with trigger definitions")

    # Notification commands
    notify_parser = subparsers.add_parser("notify", help="Notifications")
    notify_subparsers = notify_parser.add_subparsers(dest="action")
    tick_parser = notify_subparsers.add_parser("tick", help="Run an evaluation pass")
    tick_parser.add_argument("--at", help="Evaluation time (ISO format)")
    tick_parser.add_argument(
        "--dry-run", action="store_true", help="Compute without saving or sending"
    )
    notify_subparsers.add_parser("test", help="Send a test notification")
    opened_parser = notify_subparsers.add_parser("opened", help="Record an open event")
    opened_parser.add_argument("notification_id", help="Notification ID")
    opened_parser.add_argument("--at", help="Open time (ISO format)")
    dismissed_parser = notify_subparsers.add_parser(
        "dismissed", help="Record a dismissal event"
    )
    dismissed_parser.add_argument("notification_id", help="Notification ID")
    dismissed_parser.add_argument("--at", help="Dismissal time (ISO format)")

    # Analytics commands
    analytics_parser = subparsers.add_parser("analytics", help="Notification analytics")
    analytics_subparsers = analytics_parser.add_subparsers(dest="action")
    analytics_subparsers.add_parser("show", help="Show analytics")
    analytics_subparsers.add_parser("repair", help="Rebuild analytics from history")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # triggers validate needs no database
    if args.command == "triggers" and args.action == "validate":
        result = validate_triggers(args.path)
        for trigger in result.triggers:
            print(f"OK: {trigger.id} ({trigger.kind.value})")
        for error in result.errors:
            print(f"ERROR: {error}")
        sys.exit(1 if result.errors else 0)

    config = load_config(args.config) if Path(args.config).exists() else AppConfig()
    if args.db:
        config.database.path = args.db

    app = MoodGuardApp.from_config(config)

    # Handle commands
    if args.command == "mood":
        if args.action == "add":
            try:
                entry, result = app.add_mood_entry(
                    args.score,
                    notes=args.notes,
                    warning_signs=[s.strip() for s in args.warning_signs.split(",") if s.strip()],
                    coping_strategies=[s.strip() for s in args.coping.split(",") if s.strip()],
                    now=_parse_time(args.at),
                )
            except InvalidEntry as e:
                print(f"Rejected: {e}")
                sys.exit(1)
            print(f"Recorded entry {entry.id}")
            print(f"Trend: {result.trend.trend.value}, risk: {result.trend.risk_level.value}")
            if result.alert:
                print(f"Crisis alert: {result.alert.severity.value}")
        elif args.action == "list":
            for entry in app.journal.list_recent(args.limit):
                signs = f" [{', '.join(entry.warning_signs)}]" if entry.warning_signs else ""
                print(f"{entry.id}  {entry.created_at:%Y-%m-%d %H:%M}  {entry.mood}/10{signs}")
        elif args.action == "delete":
            if app.delete_mood_entry(args.entry_id):
                print(f"Deleted entry {args.entry_id}")
            else:
                print(f"Entry not found: {args.entry_id}")

    elif args.command == "trend":
        _print_json(app.current_trend(_parse_time(args.at)).to_dict())

    elif args.command == "alerts":
        if args.action == "list":
            dismissed = app.alert_log.dismissed_ids()
            for alert in app.alert_log.list_recent(args.limit):
                marker = " (dismissed)" if alert.id in dismissed else ""
                print(
                    f"{alert.id}  {alert.timestamp:%Y-%m-%d %H:%M}  "
                    f"{alert.severity.value}{marker}"
                )
                for trigger in alert.triggers:
                    print(f"    - {trigger}")
        elif args.action == "dismiss":
            if app.dismiss_alert(args.alert_id, _parse_time(args.at)):
                print(f"Dismissed alert {args.alert_id}")
            else:
                print(f"Alert not found or already dismissed: {args.alert_id}")

    elif args.command == "prefs":
        if args.action == "show":
            _print_json(app.preferences().to_dict())
        elif args.action == "set":
            try:
                updated = app.update_preferences(preference_change(args.key, args.value))
            except ValueError as e:
                print(f"Invalid preference: {e}")
                sys.exit(1)
            _print_json(updated.to_dict())

    elif args.command == "triggers":
        if args.action == "list":
            for trigger in app.trigger_catalog(app.preferences()):
                state = "enabled" if trigger.enabled else "disabled"
                print(
                    f"{trigger.id}: {trigger.kind.value} -> "
                    f"{trigger.notification_type.value} ({trigger.priority.value}, {state})"
                )
            for error in app.trigger_errors:
                print(f"Skipped: {error}")

    elif args.command == "notify":
        if args.action == "tick":
            result = app.run_pass(now=_parse_time(args.at), dry_run=args.dry_run)
            for notification in result.scheduled:
                print(
                    f"Scheduled {notification.type.value} at "
                    f"{notification.fire_time:%Y-%m-%d %H:%M}: {notification.title}"
                )
            print(f"Delivered {len(result.delivered)}, failed {len(result.failed)}")
        elif args.action == "test":
            result = app.send_test_notification()
            print("Test notification sent" if result.delivered else "Test notification failed")
        elif args.action == "opened":
            if app.record_opened(args.notification_id, _parse_time(args.at)):
                print("Open recorded")
            else:
                print("Open ignored")
        elif args.action == "dismissed":
            if app.record_dismissed(args.notification_id, _parse_time(args.at)):
                print("Dismissal recorded")
            else:
                print("Dismissal ignored")

    elif args.command == "analytics":
        if args.action == "show":
            _print_json(app.tracker.summary().to_dict())
        elif args.action == "repair":
            _print_json(app.tracker.repair(app.journal).to_dict())

    else:
        parser.print_help()

    app.db.close()


if __name__ == "__main__":
    main()
