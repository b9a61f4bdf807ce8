"""Alarm, reminder set and reminder snapshots.

Every model is a frozen dataclass; edits go through ``dataclasses.replace``.
``from_dict`` is the deserialization boundary and rejects out-of-range data
with ``ValueError`` so the engine only ever sees valid snapshots.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any
from uuid import uuid4

from chime.time_of_day import TimeOfDay
from chime.weekdays import EVERYDAY, Weekday, WeekdaySet, describe, to_ordinals, weekday_set

REPEAT_INTERVALS = (15, 30, 60)
DEFAULT_REMINDER_HOURS: frozenset[int] = frozenset(range(8, 13))


def _new_id() -> str:
    return uuid4().hex


def _serialize_dt(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.astimezone()
    return value.isoformat()


def _deserialize_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def _require_id(payload: dict[str, Any]) -> str:
    value = payload.get("id")
    if not isinstance(value, str) or not value:
        raise ValueError("Entry is missing an id")
    return value


def _weekdays_from(payload: dict[str, Any]) -> WeekdaySet:
    raw = payload.get("weekdays")
    if raw is None:
        return EVERYDAY
    if not isinstance(raw, list):
        raise ValueError("weekdays must be a list of ordinals")
    return weekday_set(raw)


def reminder_id_for(set_id: str, time: TimeOfDay) -> str:
    """Stable reminder identity so repeated expansions name the same slot."""
    return f"{set_id}_{time.key}"


@dataclass(frozen=True)
class Alarm:
    time: TimeOfDay = field(default_factory=lambda: TimeOfDay(9, 0))
    alarm_id: str = field(default_factory=_new_id)
    enabled: bool = True
    weekdays: WeekdaySet = EVERYDAY
    weekdays_check: bool = False
    ringtone: bool = True
    ringtone_id: str | None = None
    beep: bool = False
    snoozed_until: datetime | None = None

    @property
    def weekday_filter(self) -> WeekdaySet | None:
        return self.weekdays if self.weekdays_check else None

    @property
    def is_one_time(self) -> bool:
        return not self.weekdays_check

    def copy(self) -> Alarm:
        """Duplicate under a fresh id; a copy never inherits a snooze."""
        return replace(self, alarm_id=_new_id(), snoozed_until=None)

    def describe_weekdays(self) -> str:
        return describe(self.weekdays, self.weekdays_check, unfiltered="Once")

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "id": self.alarm_id,
            "hour": self.time.hour,
            "minute": self.time.minute,
            "enabled": self.enabled,
            "weekdays": to_ordinals(self.weekdays),
            "weekdays_check": self.weekdays_check,
            "ringtone": self.ringtone,
            "ringtone_id": self.ringtone_id,
            "beep": self.beep,
            "snoozed_until": _serialize_dt(self.snoozed_until) if self.snoozed_until else None,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Alarm:
        return cls(
            alarm_id=_require_id(payload),
            time=TimeOfDay(int(payload.get("hour", 9)), int(payload.get("minute", 0))),
            enabled=bool(payload.get("enabled", True)),
            weekdays=_weekdays_from(payload),
            weekdays_check=bool(payload.get("weekdays_check", False)),
            ringtone=bool(payload.get("ringtone", True)),
            ringtone_id=payload.get("ringtone_id") or None,
            beep=bool(payload.get("beep", False)),
            snoozed_until=_deserialize_dt(payload.get("snoozed_until")),
        )


@dataclass(frozen=True)
class ReminderSet:
    set_id: str = field(default_factory=_new_id)
    enabled: bool = True
    hours: frozenset[int] = DEFAULT_REMINDER_HOURS
    show_30_minutes: bool = False
    repeat_interval: int = 60
    weekdays: WeekdaySet = EVERYDAY
    weekdays_check: bool = False
    ringtone: bool = False
    ringtone_id: str | None = None
    beep: bool = True
    speech: bool = True

    @property
    def weekday_filter(self) -> WeekdaySet | None:
        return self.weekdays if self.weekdays_check else None

    def copy(self) -> ReminderSet:
        return replace(self, set_id=_new_id())

    def describe_interval(self) -> str:
        if self.repeat_interval == 15:
            return "Every 15 min"
        if self.repeat_interval == 30:
            return "Every 30 min"
        if self.repeat_interval == 60:
            return "Hourly"
        return f"{self.repeat_interval} min"

    def describe_weekdays(self) -> str:
        return describe(self.weekdays, self.weekdays_check)

    def describe_hours(self) -> str:
        if not self.hours:
            return "No hours selected"
        return ", ".join(str(hour) for hour in sorted(self.hours))

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "id": self.set_id,
            "enabled": self.enabled,
            "hours": sorted(self.hours),
            "show_30_minutes": self.show_30_minutes,
            "repeat_interval": self.repeat_interval,
            "weekdays": to_ordinals(self.weekdays),
            "weekdays_check": self.weekdays_check,
            "ringtone": self.ringtone,
            "ringtone_id": self.ringtone_id,
            "beep": self.beep,
            "speech": self.speech,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ReminderSet:
        raw_hours = payload.get("hours")
        if not isinstance(raw_hours, list) or not raw_hours:
            raise ValueError("Reminder set needs at least one hour")
        hours = frozenset(int(hour) for hour in raw_hours)
        if any(not 0 <= hour <= 23 for hour in hours):
            raise ValueError(f"Reminder hours out of range: {sorted(hours)}")
        interval = int(payload.get("repeat_interval", 60))
        if interval not in REPEAT_INTERVALS:
            raise ValueError(f"Unsupported repeat interval: {interval}")
        return cls(
            set_id=_require_id(payload),
            enabled=bool(payload.get("enabled", True)),
            hours=hours,
            show_30_minutes=bool(payload.get("show_30_minutes", False)),
            repeat_interval=interval,
            weekdays=_weekdays_from(payload),
            weekdays_check=bool(payload.get("weekdays_check", False)),
            ringtone=bool(payload.get("ringtone", False)),
            ringtone_id=payload.get("ringtone_id") or None,
            beep=bool(payload.get("beep", True)),
            speech=bool(payload.get("speech", True)),
        )


@dataclass(frozen=True)
class Reminder:
    """One concrete reminder slot derived from a :class:`ReminderSet`.

    ``set_id`` is a lookup key into the reminder-set collection, not a link.
    """

    reminder_id: str
    set_id: str
    time: TimeOfDay
    weekdays: WeekdaySet
    weekdays_check: bool

    @property
    def weekday_filter(self) -> WeekdaySet | None:
        return self.weekdays if self.weekdays_check else None

    def should_sound(self, moment: datetime) -> bool:
        """Whether this slot matches ``moment`` (read in ``moment``'s own zone)."""
        if (moment.hour, moment.minute) != (self.time.hour, self.time.minute):
            return False
        if not self.weekdays_check:
            return True
        return Weekday.from_date(moment.date()) in self.weekdays
