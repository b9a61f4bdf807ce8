"""Spoken time phrases.

Four formats are supported:

- ``full``: "10 o'clock AM" on the hour, "10 oh 5 AM" / "10 30 AM" otherwise
- ``hour``: always "10 o'clock AM"
- ``minutes``: "zero minutes", "one minute", "30 minutes"
- ``custom``: a user template where ``%H`` is the 12-hour dial hour, ``%M`` the
  minute word and ``%A`` the AM/PM marker (empty when the marker is off)

Every function here is pure; the text is handed to a speech output service by
the caller.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from chime.time_of_day import TimeOfDay

DEFAULT_CUSTOM_TEMPLATE = "%M minutes"

_WHITESPACE_RE = re.compile(r"\s+")
_CUE_MINUTES = {0, 15, 30, 45}


class SpeechFormat(str, Enum):
    FULL = "full"
    HOUR_ONLY = "hour"
    MINUTES_ONLY = "minutes"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: str | None, default: SpeechFormat | None = None) -> SpeechFormat:
        """Lenient lookup by value or member name, e.g. ``"hour"`` or ``"HOUR_ONLY"``."""
        fallback = default or cls.FULL
        if not value:
            return fallback
        lowered = value.strip().lower()
        for member in cls:
            if lowered in (member.value, member.name.lower()):
                return member
        return fallback


@dataclass(frozen=True)
class SpeechPreferences:
    enabled: bool = True
    format: SpeechFormat = SpeechFormat.FULL
    speak_am_pm: bool = True
    custom_template: str = DEFAULT_CUSTOM_TEMPLATE


def minute_word(minute: int) -> str:
    """Minutes below ten are spoken with a leading "oh"."""
    if minute < 10:
        return f"oh {minute}"
    return str(minute)


def _with_marker(text: str, marker: str, speak_am_pm: bool) -> str:
    return f"{text} {marker}" if speak_am_pm else text


def render(
    hour: int,
    minute: int,
    format: SpeechFormat,
    speak_am_pm: bool,
    custom_template: str = DEFAULT_CUSTOM_TEMPLATE,
) -> str:
    time = TimeOfDay(hour, minute)
    display_hour = time.display_hour
    marker = time.meridiem

    if format is SpeechFormat.HOUR_ONLY:
        return _with_marker(f"{display_hour} o'clock", marker, speak_am_pm)
    if format is SpeechFormat.MINUTES_ONLY:
        if minute == 0:
            return "zero minutes"
        if minute == 1:
            return "one minute"
        return f"{minute_word(minute)} minutes"
    if format is SpeechFormat.CUSTOM:
        text = (
            custom_template.replace("%H", str(display_hour))
            .replace("%M", minute_word(minute))
            .replace("%A", marker if speak_am_pm else "")
        )
        text = _WHITESPACE_RE.sub(" ", text).strip()
        if text:
            return text
        # A template that renders to nothing falls back to the full phrase.
    if minute == 0:
        return _with_marker(f"{display_hour} o'clock", marker, speak_am_pm)
    return _with_marker(f"{display_hour} {minute_word(minute)}", marker, speak_am_pm)


def render_for(preferences: SpeechPreferences, moment: datetime) -> str:
    """Phrase for the wall time of ``moment`` under ``preferences``."""
    return render(
        moment.hour,
        moment.minute,
        preferences.format,
        preferences.speak_am_pm,
        preferences.custom_template,
    )


def notification_body(time: TimeOfDay, speak_am_pm: bool = True) -> str:
    """Visible notification text: ``"9 o'clock AM"`` or ``"9:05 AM"``."""
    if time.minute == 0:
        text = f"{time.display_hour} o'clock"
    else:
        text = time.format()
    return _with_marker(text, time.meridiem, speak_am_pm)


def sound_file_for_minute(minute: int) -> str:
    """Pre-recorded cue for a reminder slot; unrecorded minutes use the hour cue."""
    if minute not in _CUE_MINUTES:
        minute = 0
    return f"minute_{minute:02d}.wav"
