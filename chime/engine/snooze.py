"""Alarm snooze state.

An alarm is either idle or snoozed until a fixed instant. Expiry is applied
when the state is read; nothing in here runs a timer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, tzinfo

from chime.datetime_utils import strictly_after

from .models import Alarm
from .recurrence import resolve_alarm

LOGGER = logging.getLogger("chime.snooze")

DEFAULT_SNOOZE = timedelta(minutes=10)


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Snoozed:
    until: datetime


SnoozeState = Idle | Snoozed


def snooze_state(alarm: Alarm, now: datetime) -> SnoozeState:
    """Current state of ``alarm``; a snooze whose instant has passed reads as idle."""
    if alarm.snoozed_until is None or not strictly_after(alarm.snoozed_until, now):
        return Idle()
    return Snoozed(alarm.snoozed_until)


def snooze(
    alarm: Alarm,
    now: datetime,
    duration: timedelta | None = None,
    *,
    default: timedelta = DEFAULT_SNOOZE,
) -> Alarm:
    """Snooze ``alarm`` for ``duration`` from ``now``.

    A missing or non-positive duration means "use the default".
    """
    if duration is None or duration <= timedelta(0):
        if duration is not None:
            LOGGER.debug("Non-positive snooze %s replaced with default %s", duration, default)
        duration = default
    return replace(alarm, snoozed_until=now + duration)


def dismiss(alarm: Alarm) -> Alarm:
    return replace(alarm, snoozed_until=None)


def dismiss_fired(alarm: Alarm) -> Alarm:
    """Dismiss a ringing alarm; a one-time alarm is switched off as well."""
    dismissed = dismiss(alarm)
    if dismissed.is_one_time:
        dismissed = replace(dismissed, enabled=False)
    return dismissed


def clear_expired(alarm: Alarm, now: datetime) -> Alarm:
    """Drop a snooze that has already elapsed so it is not persisted again."""
    if alarm.snoozed_until is not None and isinstance(snooze_state(alarm, now), Idle):
        return dismiss(alarm)
    return alarm


def on_timezone_changed(state: SnoozeState) -> SnoozeState:
    """A zone change leaves snooze state alone; only recurrences are recomputed."""
    return state


def next_alarm_occurrence(alarm: Alarm, now: datetime, zone: tzinfo) -> datetime | None:
    """Next fire instant of ``alarm``: its pending snooze, else its recurrence."""
    if not alarm.enabled:
        return None
    state = snooze_state(alarm, now)
    if isinstance(state, Snoozed):
        return state.until
    return resolve_alarm(alarm, now, zone)
