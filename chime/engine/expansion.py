"""Expansion of reminder sets into concrete per-minute reminders."""

from __future__ import annotations

from collections.abc import Iterable

from chime.time_of_day import TimeOfDay

from .models import Reminder, ReminderSet, reminder_id_for


def _slot(reminder_set: ReminderSet, hour: int, minute: int) -> Reminder:
    time = TimeOfDay(hour, minute)
    return Reminder(
        reminder_id=reminder_id_for(reminder_set.set_id, time),
        set_id=reminder_set.set_id,
        time=time,
        weekdays=reminder_set.weekdays,
        weekdays_check=reminder_set.weekdays_check,
    )


def expand(reminder_set: ReminderSet) -> list[Reminder]:
    """List every reminder slot a set describes, hour by hour.

    Each hour contributes :00, then :30 when half-hour reminders are on, then
    every multiple of the repeat interval below 60. Half-hour and interval
    slots can coincide; both are kept and share an id.
    """
    if not reminder_set.enabled:
        return []
    reminders: list[Reminder] = []
    for hour in sorted(reminder_set.hours):
        reminders.append(_slot(reminder_set, hour, 0))
        if reminder_set.show_30_minutes:
            reminders.append(_slot(reminder_set, hour, 30))
        if 0 < reminder_set.repeat_interval < 60:
            minute = reminder_set.repeat_interval
            while minute < 60:
                reminders.append(_slot(reminder_set, hour, minute))
                minute += reminder_set.repeat_interval
    return reminders


def expand_all(reminder_sets: Iterable[ReminderSet]) -> list[Reminder]:
    """Expand every enabled set, in collection order."""
    return [reminder for reminder_set in reminder_sets for reminder in expand(reminder_set)]


def index_reminder_sets(reminder_sets: Iterable[ReminderSet]) -> dict[str, ReminderSet]:
    """Lookup table for resolving :attr:`Reminder.set_id`."""
    return {reminder_set.set_id: reminder_set for reminder_set in reminder_sets}
