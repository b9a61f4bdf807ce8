"""Full-rebuild scheduling of alarms and reminders.

Every rebuild cancels everything pending and submits a fresh request for each
entity that still has an occurrence. There is no incremental diffing: the
delivery service only ever holds the output of the latest rebuild.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Any, Literal, Protocol

from chime.datetime_utils import ensure_utc, local_now

from .expansion import expand_all, index_reminder_sets
from .models import Alarm, Reminder, ReminderSet
from .recurrence import resolve_reminder
from .snooze import next_alarm_occurrence
from .speech import notification_body, sound_file_for_minute

LOGGER = logging.getLogger("chime.coordinator")

ALARM_CATEGORY = "ALARM_CATEGORY"
REMINDER_CATEGORY = "REMINDER_CATEGORY"
SNOOZE_ACTION = "SNOOZE_ACTION"
DISMISS_ACTION = "DISMISS_ACTION"

RequestKind = Literal["alarm", "reminder"]


class NotificationDeliveryService(Protocol):
    def submit(self, request_id: str, fire_at: datetime, payload: dict[str, Any]) -> None: ...

    def cancel(self, request_id: str) -> None: ...

    def cancel_all(self) -> None: ...


@dataclass(frozen=True)
class ScheduleRequest:
    request_id: str
    fire_at: datetime
    payload: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def kind(self) -> RequestKind:
        return "alarm" if self.request_id.startswith("alarm_") else "reminder"


@dataclass
class RebuildReport:
    cancelled: bool = True
    submitted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.cancelled and not self.failed


def alarm_request_id(alarm_id: str) -> str:
    return f"alarm_{alarm_id}"


def reminder_request_id(reminder_id: str) -> str:
    return f"reminder_{reminder_id}"


def _alarm_payload(alarm: Alarm) -> dict[str, Any]:
    return {
        "type": "alarm",
        "alarm_id": alarm.alarm_id,
        "title": "Alarm",
        "body": notification_body(alarm.time),
        "category": ALARM_CATEGORY,
        "actions": [SNOOZE_ACTION, DISMISS_ACTION],
        "sound": alarm.ringtone_id if alarm.ringtone else None,
        "beep": alarm.beep,
    }


def _reminder_payload(reminder: Reminder, reminder_set: ReminderSet) -> dict[str, Any]:
    return {
        "type": "reminder",
        "reminder_id": reminder.reminder_id,
        "reminder_set_id": reminder_set.set_id,
        "title": "Reminder",
        "body": notification_body(reminder.time),
        "category": REMINDER_CATEGORY,
        "actions": [DISMISS_ACTION],
        "sound": sound_file_for_minute(reminder.time.minute),
        "beep": reminder_set.beep,
        "speech": reminder_set.speech,
    }


def reschedule_all(
    alarms: Iterable[Alarm],
    reminder_sets: Iterable[ReminderSet],
    zone: tzinfo,
    after: datetime | None = None,
) -> list[ScheduleRequest]:
    """Derive the complete request set for the given snapshots.

    Disabled entities and entities without a resolvable occurrence are left
    out. Requests sharing an id are collapsed, keeping the first.
    """
    now = after or local_now()
    requests: dict[str, ScheduleRequest] = {}

    for alarm in alarms:
        if not alarm.enabled:
            continue
        fire_at = next_alarm_occurrence(alarm, now, zone)
        if fire_at is None:
            LOGGER.debug("Alarm %s has no upcoming occurrence", alarm.alarm_id)
            continue
        request_id = alarm_request_id(alarm.alarm_id)
        requests.setdefault(request_id, ScheduleRequest(request_id, fire_at, _alarm_payload(alarm)))

    sets = list(reminder_sets)
    owners = index_reminder_sets(sets)
    for reminder in expand_all(sets):
        request_id = reminder_request_id(reminder.reminder_id)
        if request_id in requests:
            continue
        fire_at = resolve_reminder(reminder, now, zone)
        if fire_at is None:
            LOGGER.debug("Reminder %s has no upcoming occurrence", reminder.reminder_id)
            continue
        payload = _reminder_payload(reminder, owners[reminder.set_id])
        requests[request_id] = ScheduleRequest(request_id, fire_at, payload)

    return sorted(requests.values(), key=lambda request: (ensure_utc(request.fire_at), request.request_id))


class RescheduleCoordinator:
    """Push full rebuilds to a notification delivery service."""

    def __init__(self, notifier: NotificationDeliveryService, logger: logging.Logger | None = None) -> None:
        self.notifier = notifier
        self._logger = logger or LOGGER

    def rebuild(
        self,
        alarms: Iterable[Alarm],
        reminder_sets: Iterable[ReminderSet],
        zone: tzinfo,
        after: datetime | None = None,
    ) -> RebuildReport:
        requests = reschedule_all(alarms, reminder_sets, zone, after)
        report = RebuildReport()
        try:
            self.notifier.cancel_all()
        except Exception as exc:
            report.cancelled = False
            self._logger.warning("Failed to cancel pending notifications: %s", exc)

        seen: set[str] = set()
        for request in requests:
            if request.request_id in seen:
                continue
            seen.add(request.request_id)
            try:
                self.notifier.submit(request.request_id, request.fire_at, request.payload)
            except Exception as exc:
                report.failed[request.request_id] = str(exc)
                self._logger.warning("Failed to schedule %s: %s", request.request_id, exc)
                continue
            report.submitted.append(request.request_id)

        self._logger.info(
            "Rescheduled %d notification(s)%s",
            len(report.submitted),
            f", {len(report.failed)} failed" if report.failed else "",
        )
        return report
