"""JSON file persistence for alarms and reminder sets."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from chime.engine.models import Alarm, ReminderSet

LOGGER = logging.getLogger("chime.storage")


@dataclass
class ScheduleSnapshot:
    alarms: list[Alarm] = field(default_factory=list)
    reminder_sets: list[ReminderSet] = field(default_factory=list)


class ScheduleStore:
    """Stores both collections in one JSON document.

    Writes go to a sibling ``.tmp`` file that then replaces the original, so a
    crash mid-write never leaves a truncated document behind.
    """

    def __init__(self, path: Path, logger: logging.Logger | None = None) -> None:
        self.path = path
        self._logger = logger or LOGGER

    def load(self) -> ScheduleSnapshot:
        snapshot = ScheduleSnapshot()
        if not self.path.exists():
            return snapshot
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            self._logger.warning("Failed to load schedules file %s: %s", self.path, exc)
            return snapshot
        if not isinstance(data, dict):
            self._logger.warning("Ignoring schedules file %s: unexpected layout", self.path)
            return snapshot

        for item in data.get("alarms") or []:
            try:
                snapshot.alarms.append(Alarm.from_dict(item))
            except Exception:
                self._logger.debug("Skipping invalid alarm entry: %s", item, exc_info=True)
        for item in data.get("reminder_sets") or []:
            try:
                snapshot.reminder_sets.append(ReminderSet.from_dict(item))
            except Exception:
                self._logger.debug("Skipping invalid reminder set entry: %s", item, exc_info=True)
        return snapshot

    def save(self, alarms: Iterable[Alarm], reminder_sets: Iterable[ReminderSet]) -> None:
        payload = {
            "alarms": [alarm.to_json_dict() for alarm in alarms],
            "reminder_sets": [reminder_set.to_json_dict() for reminder_set in reminder_sets],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        tmp_path.replace(self.path)
