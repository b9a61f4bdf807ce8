"""
Scheduling engine for alarms and spoken-time reminders

Everything in this package is a pure function over frozen snapshots:

- models: Alarm, ReminderSet and Reminder values plus their JSON boundary
- recurrence: Next occurrence of a time of day under an optional weekday filter
- expansion: ReminderSet to per-minute Reminder slots
- snooze: Idle/Snoozed alarm state with lazy expiry
- speech: Spoken phrases for an hour/minute in several formats
- coordinator: Full-rebuild scheduling against a notification delivery service
"""

from __future__ import annotations

__all__ = [
    "models",
    "recurrence",
    "expansion",
    "snooze",
    "speech",
    "coordinator",
]
