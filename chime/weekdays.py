"""Weekday enumeration and weekday-set helpers.

Weekdays use the ordinal convention 1=Sunday ... 7=Saturday. That ordinal is
what gets persisted and what defines canonical sort order. A weekday set is a
plain ``frozenset[Weekday]``; the filter-active flag that decides whether a set
restricts anything lives on the owning alarm or reminder set.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import date
from enum import IntEnum
from typing import Literal

WeekdaySetKind = Literal["empty", "everyday", "weekdays", "weekend", "custom"]


class Weekday(IntEnum):
    SUNDAY = 1
    MONDAY = 2
    TUESDAY = 3
    WEDNESDAY = 4
    THURSDAY = 5
    FRIDAY = 6
    SATURDAY = 7

    @property
    def short_name(self) -> str:
        return self.name[:3].title()

    @property
    def letter(self) -> str:
        return self.name[0]

    @property
    def full_name(self) -> str:
        return self.name.title()

    @property
    def is_weekday(self) -> bool:
        return self not in (Weekday.SATURDAY, Weekday.SUNDAY)

    @property
    def is_weekend(self) -> bool:
        return not self.is_weekday

    @classmethod
    def from_date(cls, value: date) -> Weekday:
        """Weekday of a calendar date (``isoweekday`` runs Mon=1 ... Sun=7)."""
        return cls(value.isoweekday() % 7 + 1)


WeekdaySet = frozenset[Weekday]

EVERYDAY: WeekdaySet = frozenset(Weekday)
WEEKDAYS: WeekdaySet = frozenset(
    {Weekday.MONDAY, Weekday.TUESDAY, Weekday.WEDNESDAY, Weekday.THURSDAY, Weekday.FRIDAY}
)
WEEKEND: WeekdaySet = frozenset({Weekday.SATURDAY, Weekday.SUNDAY})

DAY_NAME_MAP = {
    "sun": Weekday.SUNDAY,
    "sunday": Weekday.SUNDAY,
    "mon": Weekday.MONDAY,
    "monday": Weekday.MONDAY,
    "tue": Weekday.TUESDAY,
    "tues": Weekday.TUESDAY,
    "tuesday": Weekday.TUESDAY,
    "wed": Weekday.WEDNESDAY,
    "wednesday": Weekday.WEDNESDAY,
    "thu": Weekday.THURSDAY,
    "thur": Weekday.THURSDAY,
    "thurs": Weekday.THURSDAY,
    "thursday": Weekday.THURSDAY,
    "fri": Weekday.FRIDAY,
    "friday": Weekday.FRIDAY,
    "sat": Weekday.SATURDAY,
    "saturday": Weekday.SATURDAY,
}


def weekday_set(days: Iterable[Weekday | int]) -> WeekdaySet:
    """Build a weekday set from weekdays or stored ordinals.

    Raises ValueError for ordinals outside 1..7.
    """
    return frozenset(Weekday(int(day)) for day in days)


def to_ordinals(days: Iterable[Weekday]) -> list[int]:
    """Sorted integer ordinals, the persisted form of a weekday set."""
    return sorted(int(day) for day in days)


def sort_weekdays(days: Iterable[Weekday]) -> list[Weekday]:
    return sorted(days)


def ordered_from(start: Weekday) -> list[Weekday]:
    """All seven weekdays in calendar order beginning at ``start``."""
    everyday = sorted(Weekday)
    index = everyday.index(start)
    return everyday[index:] + everyday[:index]


def classify(days: WeekdaySet) -> WeekdaySetKind:
    if not days:
        return "empty"
    if days == EVERYDAY:
        return "everyday"
    if days == WEEKDAYS:
        return "weekdays"
    if days == WEEKEND:
        return "weekend"
    return "custom"


def describe(days: WeekdaySet, filter_active: bool, *, unfiltered: str = "Everyday") -> str:
    """Human readable summary such as ``"Weekdays"`` or ``"Mon, Wed, Fri"``.

    ``unfiltered`` is the label used when the set does not restrict firing;
    alarms call that case "Once", reminder sets call it "Everyday".
    """
    if not filter_active or not days:
        return unfiltered
    kind = classify(days)
    if kind == "everyday":
        return "Everyday"
    if kind == "weekdays":
        return "Weekdays"
    if kind == "weekend":
        return "Weekend"
    return ", ".join(day.short_name for day in sort_weekdays(days))


def parse_day_tokens(value: str | None) -> WeekdaySet | None:
    """Parse spoken or typed day lists like ``"weekdays"`` or ``"mon, wed"``.

    Returns None when the text names no recurring days (``"once"`` or nothing
    recognizable).
    """
    if not value:
        return None
    lowered = value.strip().lower()
    condensed = lowered.replace(" ", "")
    if lowered in {"single", "once", "next"}:
        return None
    if lowered in {"weekdays", "weekday"}:
        return WEEKDAYS
    if lowered in {"weekend", "weekends"}:
        return WEEKEND
    if condensed in {"everyday", "alldays"} or lowered in {"daily", "all"}:
        return EVERYDAY
    days: set[Weekday] = set()
    for chunk in re.split(r"[,\s]+", lowered):
        chunk = chunk.strip()
        if not chunk:
            continue
        day = DAY_NAME_MAP.get(chunk, DAY_NAME_MAP.get(chunk[:3]))
        if day is None:
            continue
        days.add(day)
    if not days:
        return None
    return frozenset(days)
