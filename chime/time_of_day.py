"""Hour/minute value type used by alarms and reminders."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from chime.datetime_utils import parse_time_string

Meridiem = Literal["AM", "PM"]


@dataclass(frozen=True, order=True)
class TimeOfDay:
    """A wall-clock time with minute resolution; never carries a date."""

    hour: int
    minute: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.hour <= 23:
            raise ValueError(f"hour must be in 0..23, got {self.hour}")
        if not 0 <= self.minute <= 59:
            raise ValueError(f"minute must be in 0..59, got {self.minute}")

    @classmethod
    def parse(cls, value: str) -> TimeOfDay:
        """Parse ``"7:30"``, ``"7:30 pm"``, ``"19:30"`` or ``"noon"``."""
        hour, minute = parse_time_string(value)
        return cls(hour, minute)

    @property
    def key(self) -> str:
        if self.minute == 0:
            return f"{self.hour:02d}"
        return f"{self.hour:02d}{self.minute:02d}"

    @property
    def display_hour(self) -> int:
        """Hour on a 12-hour dial (0 and 12 both show as 12)."""
        if self.hour == 0:
            return 12
        if self.hour > 12:
            return self.hour - 12
        return self.hour

    @property
    def meridiem(self) -> Meridiem:
        return "AM" if self.hour < 12 else "PM"

    @property
    def minutes_since_midnight(self) -> int:
        return self.hour * 60 + self.minute

    def format(self, use_24_hour: bool = False) -> str:
        if use_24_hour:
            return f"{self.hour:02d}:{self.minute:02d}"
        return f"{self.display_hour}:{self.minute:02d}"

    def __str__(self) -> str:
        return self.format(use_24_hour=True)
