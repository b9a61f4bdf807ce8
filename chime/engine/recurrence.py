"""Next-occurrence resolution for daily and weekday-filtered times.

Candidates are rebuilt from a civil date plus wall time in the target zone for
every day examined, so "07:30" stays 07:30 local across DST transitions.
"""

from __future__ import annotations

from datetime import datetime, timedelta, tzinfo

from chime.datetime_utils import local_date, strictly_after, wall_clock
from chime.time_of_day import TimeOfDay
from chime.weekdays import Weekday, WeekdaySet

from .models import Alarm, Reminder

# Start day plus one full week.
SCAN_DAYS = 8


def next_occurrence(
    time: TimeOfDay,
    weekdays: WeekdaySet | None,
    after: datetime,
    zone: tzinfo,
) -> datetime | None:
    """Return the first instant strictly after ``after`` at which ``zone`` reads ``time``.

    ``weekdays=None`` means no filter (fires every day). An empty set never
    fires and yields None, as does a filter with no match inside the scan
    window.
    """
    start = local_date(after, zone)
    if weekdays is None:
        today = wall_clock(start, time.hour, time.minute, zone)
        if strictly_after(today, after):
            return today
        return wall_clock(start + timedelta(days=1), time.hour, time.minute, zone)

    if not weekdays:
        return None
    for offset in range(SCAN_DAYS):
        day = start + timedelta(days=offset)
        if Weekday.from_date(day) not in weekdays:
            continue
        candidate = wall_clock(day, time.hour, time.minute, zone)
        if strictly_after(candidate, after):
            return candidate
    return None


def resolve_alarm(alarm: Alarm, after: datetime, zone: tzinfo) -> datetime | None:
    """Calendar occurrence of ``alarm`` ignoring snooze state."""
    return next_occurrence(alarm.time, alarm.weekday_filter, after, zone)


def resolve_reminder(reminder: Reminder, after: datetime, zone: tzinfo) -> datetime | None:
    return next_occurrence(reminder.time, reminder.weekday_filter, after, zone)
