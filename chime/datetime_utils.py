"""Shared datetime parsing and zone-aware wall clock utilities."""

from __future__ import annotations

import logging
import re
from datetime import UTC, date, datetime, time, tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

LOGGER = logging.getLogger("chime.datetime_utils")

_LOCALTIME_PATH = Path("/etc/localtime")

_TIME_KEYWORDS = {
    "noon": (12, 0),
    "midday": (12, 0),
    "midnight": (0, 0),
}


def utc_now() -> datetime:
    """Get current datetime in UTC."""
    return datetime.now(UTC)


def local_now() -> datetime:
    """Get current datetime in local timezone."""
    return datetime.now().astimezone()


def ensure_utc(dt: datetime) -> datetime:
    """Ensure datetime is in UTC timezone."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def resolve_zone(name: str | None) -> tzinfo:
    """Resolve an IANA zone name, falling back to the host zone and then UTC.

    A fixed-offset zone (what ``datetime.now().astimezone()`` yields) cannot
    follow DST transitions, so the host zone is read from ``/etc/localtime``.
    """
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {name}") from exc
    try:
        with _LOCALTIME_PATH.open("rb") as handle:
            return ZoneInfo.from_file(handle, key="localtime")
    except (OSError, ValueError):
        LOGGER.warning("Host timezone unavailable; using UTC")
        return UTC


def wall_clock(day: date, hour: int, minute: int, zone: tzinfo) -> datetime:
    """Build the instant at which ``zone`` reads ``hour:minute`` on ``day``.

    The civil date and wall time are combined first and only then attached to
    the zone, so DST shifts between ``day`` and any reference instant never
    leak into the result. Wall times inside a spring-forward gap move forward
    by the gap; ambiguous fall-back times pick the earlier instant.
    """
    candidate = datetime.combine(day, time(hour, minute), tzinfo=zone)
    return candidate.astimezone(UTC).astimezone(zone)


def local_date(instant: datetime, zone: tzinfo) -> date:
    """Calendar date of ``instant`` as seen in ``zone``."""
    return ensure_utc(instant).astimezone(zone).date()


def strictly_after(candidate: datetime, reference: datetime) -> bool:
    """Compare two instants on the absolute timeline.

    Aware datetimes sharing a tzinfo compare by wall time and ignore ``fold``,
    which misorders instants inside a fall-back hour.
    """
    return ensure_utc(candidate) > ensure_utc(reference)


def parse_iso_duration(value: str) -> float:
    """Parse ISO8601 duration string (PT#H#M#S format) into seconds."""
    value = value.lstrip("pP")
    if not value.startswith("T") and "T" not in value:
        raise ValueError("Invalid ISO duration")
    value = value.lstrip("tT")
    hours = minutes = seconds = 0.0
    number = ""
    for char in value:
        if char.isdigit() or char == ".":
            number += char
            continue
        if not number:
            continue
        if char in ("h", "H"):
            hours = float(number)
        elif char in ("m", "M"):
            minutes = float(number)
        elif char in ("s", "S"):
            seconds = float(number)
        number = ""
    if number:
        seconds = float(number)
    return hours * 3600 + minutes * 60 + seconds


def parse_duration_seconds(value: str) -> float:
    """Parse duration string into seconds. Supports various formats like '5m', '10s', 'PT5M', etc."""
    text = value.strip().lower()
    if not text:
        return 0.0
    multipliers = {
        "ms": 0.001,
        "s": 1,
        "sec": 1,
        "secs": 1,
        "m": 60,
        "min": 60,
        "mins": 60,
        "h": 3600,
        "hr": 3600,
        "hrs": 3600,
    }
    # Longest suffix first so "mins" is not read as "s".
    for suffix in sorted(multipliers, key=len, reverse=True):
        if text.endswith(suffix):
            try:
                number = float(text[: -len(suffix)])
            except ValueError:
                continue
            return number * multipliers[suffix]
    if text.startswith("pt") or text.startswith("p"):
        try:
            return parse_iso_duration(text.upper())
        except ValueError:
            return 0.0
    try:
        return float(text)
    except ValueError:
        return 0.0


def parse_time_of_day(phrase: str | None) -> tuple[int, int] | None:
    """Parse time of day phrase into (hour, minute) tuple. Returns None if invalid."""
    if not phrase:
        return None
    cleaned = phrase.strip().lower()
    if not cleaned:
        return None
    keyword = _TIME_KEYWORDS.get(cleaned)
    if keyword:
        return keyword
    if cleaned.endswith(" o'clock"):
        cleaned = cleaned[: -len(" o'clock")].strip()
    match = re.match(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm)?$", cleaned)
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    suffix = match.group(3)
    if suffix:
        if hour == 0 or hour > 12:
            return None
        if hour == 12:
            hour = 0
        if suffix == "pm":
            hour += 12
    if hour >= 24 or minute >= 60:
        return None
    return hour, minute


def parse_time_string(value: str) -> tuple[int, int]:
    """Parse time string into (hour, minute) tuple. Raises ValueError if invalid."""
    result = parse_time_of_day(value)
    if result is None:
        raise ValueError("Invalid time format")
    return result
