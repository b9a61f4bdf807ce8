"""Orchestrates user actions against the scheduling engine.

``ChimeService`` owns the in-memory alarm and reminder-set collections. Every
mutation persists the collections and then asks the coordinator for a full
rebuild, so the delivery service always reflects the stored state.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, tzinfo
from typing import Any

from chime.datetime_utils import parse_duration_seconds, utc_now
from chime.engine.coordinator import (
    DISMISS_ACTION,
    SNOOZE_ACTION,
    NotificationDeliveryService,
    RebuildReport,
    RescheduleCoordinator,
)
from chime.engine.expansion import expand
from chime.engine.models import Alarm, ReminderSet
from chime.engine.snooze import (
    DEFAULT_SNOOZE,
    Snoozed,
    clear_expired,
    dismiss_fired,
    next_alarm_occurrence,
    on_timezone_changed,
    snooze,
    snooze_state,
)
from chime.engine.speech import SpeechFormat, SpeechPreferences, render_for
from chime.settings_store import PREFERENCE_TO_SETTING, SettingsStore, persist_preference
from chime.time_of_day import TimeOfDay
from chime.utils import parse_bool
from chime.weekdays import DAY_NAME_MAP, EVERYDAY, Weekday, ordered_from, parse_day_tokens

from .storage import ScheduleStore
from .wyoming import SpeechOutputService

LOGGER = logging.getLogger("chime.service")

StateCallback = Callable[[dict[str, Any]], None]
EventCallback = Callable[[str, dict[str, Any]], None]


class ChimeError(Exception):
    """Base error for chime service operations."""


class UnknownEntityError(ChimeError):
    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"Unknown {kind} '{entity_id}'")
        self.kind = kind
        self.entity_id = entity_id


def _strip_request_prefix(value: str, prefix: str) -> str:
    return value[len(prefix) :] if value.startswith(prefix) else value


class ChimeService:
    """Manage alarms and reminder sets and keep their notifications scheduled."""

    def __init__(
        self,
        *,
        store: ScheduleStore,
        notifier: NotificationDeliveryService,
        zone: tzinfo,
        speech: SpeechOutputService | None = None,
        settings: SettingsStore | None = None,
        preferences: SpeechPreferences | None = None,
        snooze_delay: timedelta = DEFAULT_SNOOZE,
        use_24_hour: bool = False,
        week_start: Weekday = Weekday.SUNDAY,
        on_state_changed: StateCallback | None = None,
        on_event: EventCallback | None = None,
        clock: Callable[[], datetime] = utc_now,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._zone = zone
        self._speech = speech
        self._settings = settings
        self._preferences = preferences or SpeechPreferences()
        self._snooze_delay = snooze_delay
        self._use_24_hour = use_24_hour
        self._week_start = week_start
        self._state_cb = on_state_changed
        self._event_cb = on_event
        self._clock = clock
        self._logger = logger or LOGGER
        self._coordinator = RescheduleCoordinator(notifier, logger=self._logger)
        self._alarms: dict[str, Alarm] = {}
        self._reminder_sets: dict[str, ReminderSet] = {}
        self._lock = asyncio.Lock()
        self._started = False
        self.last_report: RebuildReport | None = None

    # ------------------------------------------------------------------
    # Read access

    @property
    def zone(self) -> tzinfo:
        return self._zone

    @property
    def preferences(self) -> SpeechPreferences:
        return self._preferences

    @property
    def snooze_delay(self) -> timedelta:
        return self._snooze_delay

    @property
    def alarms(self) -> list[Alarm]:
        return list(self._alarms.values())

    @property
    def reminder_sets(self) -> list[ReminderSet]:
        return list(self._reminder_sets.values())

    def get_alarm(self, alarm_id: str) -> Alarm:
        alarm = self._alarms.get(alarm_id)
        if alarm is None:
            raise UnknownEntityError("alarm", alarm_id)
        return alarm

    def get_reminder_set(self, set_id: str) -> ReminderSet:
        reminder_set = self._reminder_sets.get(set_id)
        if reminder_set is None:
            raise UnknownEntityError("reminder set", set_id)
        return reminder_set

    def get_next_alarm(self) -> tuple[Alarm, datetime] | None:
        now = self._clock()
        upcoming: list[tuple[datetime, Alarm]] = []
        for alarm in self._alarms.values():
            fire_at = next_alarm_occurrence(alarm, now, self._zone)
            if fire_at is not None:
                upcoming.append((fire_at, alarm))
        if not upcoming:
            return None
        fire_at, alarm = min(upcoming, key=lambda item: (item[0].timestamp(), item[1].alarm_id))
        return alarm, fire_at

    # ------------------------------------------------------------------
    # Lifecycle

    async def start(self) -> RebuildReport:
        async with self._lock:
            snapshot = self._store.load()
            now = self._clock()
            changed = False
            for alarm in snapshot.alarms:
                cleaned = clear_expired(alarm, now)
                changed = changed or cleaned is not alarm
                self._alarms.setdefault(cleaned.alarm_id, cleaned)
            for reminder_set in snapshot.reminder_sets:
                self._reminder_sets.setdefault(reminder_set.set_id, reminder_set)
            if changed:
                self._persist_locked()
            self._logger.info(
                "Loaded %d alarm(s) and %d reminder set(s)", len(self._alarms), len(self._reminder_sets)
            )
            self._started = True
            return self._rebuild_locked()

    async def stop(self) -> None:
        if self._settings is not None:
            self._settings.stop()
        self._started = False

    async def rebuild(self) -> RebuildReport:
        async with self._lock:
            return self._rebuild_locked()

    # ------------------------------------------------------------------
    # Alarms

    async def add_alarm(self, alarm: Alarm) -> Alarm:
        async with self._lock:
            if alarm.alarm_id in self._alarms:
                raise ChimeError(f"Alarm '{alarm.alarm_id}' already exists")
            self._alarms[alarm.alarm_id] = alarm
            self._commit_locked()
        return alarm

    async def update_alarm(self, alarm: Alarm) -> Alarm:
        async with self._lock:
            self.get_alarm(alarm.alarm_id)
            self._alarms[alarm.alarm_id] = alarm
            self._commit_locked()
        return alarm

    async def delete_alarm(self, alarm_id: str) -> None:
        async with self._lock:
            self.get_alarm(alarm_id)
            del self._alarms[alarm_id]
            self._commit_locked()

    async def set_alarm_enabled(self, alarm_id: str, enabled: bool) -> Alarm:
        async with self._lock:
            alarm = replace(self.get_alarm(alarm_id), enabled=enabled, snoozed_until=None)
            self._alarms[alarm_id] = alarm
            self._commit_locked()
        return alarm

    async def snooze_alarm(self, alarm_id: str, duration: timedelta | None = None) -> Alarm:
        async with self._lock:
            alarm = snooze(
                self.get_alarm(alarm_id),
                self._clock(),
                duration,
                default=self._snooze_delay,
            )
            self._alarms[alarm_id] = alarm
            self._commit_locked()
        self._logger.info("Alarm %s snoozed until %s", alarm_id, alarm.snoozed_until)
        return alarm

    async def dismiss_alarm(self, alarm_id: str) -> Alarm:
        async with self._lock:
            alarm = dismiss_fired(self.get_alarm(alarm_id))
            self._alarms[alarm_id] = alarm
            self._commit_locked()
        self._logger.info("Alarm %s dismissed", alarm_id)
        return alarm

    # ------------------------------------------------------------------
    # Reminder sets

    async def add_reminder_set(self, reminder_set: ReminderSet) -> ReminderSet:
        async with self._lock:
            if reminder_set.set_id in self._reminder_sets:
                raise ChimeError(f"Reminder set '{reminder_set.set_id}' already exists")
            self._reminder_sets[reminder_set.set_id] = reminder_set
            self._commit_locked()
        return reminder_set

    async def update_reminder_set(self, reminder_set: ReminderSet) -> ReminderSet:
        async with self._lock:
            self.get_reminder_set(reminder_set.set_id)
            self._reminder_sets[reminder_set.set_id] = reminder_set
            self._commit_locked()
        return reminder_set

    async def delete_reminder_set(self, set_id: str) -> None:
        async with self._lock:
            self.get_reminder_set(set_id)
            del self._reminder_sets[set_id]
            self._commit_locked()

    async def set_reminder_set_enabled(self, set_id: str, enabled: bool) -> ReminderSet:
        async with self._lock:
            reminder_set = replace(self.get_reminder_set(set_id), enabled=enabled)
            self._reminder_sets[set_id] = reminder_set
            self._commit_locked()
        return reminder_set

    # ------------------------------------------------------------------
    # Preferences and environment

    async def set_preference(self, key: str, value: str) -> bool:
        """Apply a preference now and queue it for the settings file.

        Returns False for unknown keys, which are logged and ignored.
        """
        if key not in PREFERENCE_TO_SETTING:
            self._logger.warning("Ignoring unknown preference '%s'", key)
            return False
        prefs = self._preferences
        if key == "speech_enabled":
            self._preferences = replace(prefs, enabled=parse_bool(value, prefs.enabled))
        elif key == "speak_am_pm":
            self._preferences = replace(prefs, speak_am_pm=parse_bool(value, prefs.speak_am_pm))
        elif key == "speech_format":
            self._preferences = replace(prefs, format=SpeechFormat.parse(value, prefs.format))
        elif key == "speech_template":
            self._preferences = replace(prefs, custom_template=value)
        elif key == "snooze_delay":
            seconds = parse_duration_seconds(value)
            self._snooze_delay = timedelta(seconds=seconds) if seconds > 0 else DEFAULT_SNOOZE
        elif key == "use_24_hour":
            self._use_24_hour = parse_bool(value, self._use_24_hour)
        elif key == "week_start":
            self._week_start = DAY_NAME_MAP.get(value.strip().lower()[:3], self._week_start)
        if self._settings is not None:
            persist_preference(self._settings, key, value, logger=self._logger)
        if key in {"use_24_hour", "week_start"}:
            self._publish_state(self.last_report)
        return True

    async def set_timezone(self, zone: tzinfo) -> RebuildReport:
        """Recompute every occurrence for a new zone; snoozes keep their instants."""
        async with self._lock:
            self._zone = zone
            self._logger.info("Time zone changed to %s", zone)
            now = self._clock()
            for alarm in self._alarms.values():
                state = on_timezone_changed(snooze_state(alarm, now))
                if isinstance(state, Snoozed):
                    self._logger.debug("Alarm %s stays snoozed until %s", alarm.alarm_id, state.until)
            return self._rebuild_locked()

    # ------------------------------------------------------------------
    # Delivery callbacks

    async def handle_fired(self, request_id: str, payload: dict[str, Any]) -> None:
        """React to a delivered notification, then schedule its next occurrence."""
        kind = payload.get("type")
        if kind == "reminder":
            self._announce(request_id, payload)
        elif kind == "alarm":
            alarm_id = str(payload.get("alarm_id") or "")
            self._logger.info("Alarm %s is ringing", alarm_id)
            async with self._lock:
                alarm = self._alarms.get(alarm_id)
                if alarm is not None:
                    cleaned = clear_expired(alarm, self._clock())
                    if cleaned is not alarm:
                        self._alarms[alarm_id] = cleaned
                        self._persist_locked()
        else:
            self._logger.debug("Fired notification %s has unknown type %r", request_id, kind)
        if self._event_cb:
            self._event_cb(request_id, payload)
        await self.rebuild()

    def _announce(self, request_id: str, payload: dict[str, Any]) -> None:
        """Speak the time for a reminder whose slot still exists and is due now."""
        if self._speech is None or not self._preferences.enabled:
            return
        reminder_set = self._reminder_sets.get(str(payload.get("reminder_set_id") or ""))
        if reminder_set is None or not reminder_set.speech:
            return
        reminder_id = payload.get("reminder_id")
        reminder = next((item for item in expand(reminder_set) if item.reminder_id == reminder_id), None)
        moment = self._clock().astimezone(self._zone)
        if reminder is None or not reminder.should_sound(moment):
            self._logger.debug("Not announcing stale reminder %s", request_id)
            return
        self._speech.speak(render_for(self._preferences, moment))

    async def handle_action(self, message: str) -> bool:
        """Apply an action received as JSON.

        Accepts ``{"action": "SNOOZE_ACTION"|"snooze"|..., "id": "alarm_<id>"}``
        with an optional ``"minutes"``, and ``{"action": "add_alarm", "time":
        "7:30 pm", "days": "weekdays"}`` with an optional ``"id"``. Returns
        False when the message is not understood.
        """
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            self._logger.debug("Ignoring malformed action message: %s", message)
            return False
        if not isinstance(data, dict):
            return False
        action = str(data.get("action") or "").strip().lower()
        if action == "add_alarm":
            return await self._add_alarm_from_message(data)
        raw_id = str(data.get("alarm_id") or data.get("id") or "")
        alarm_id = _strip_request_prefix(raw_id, "alarm_")
        if not alarm_id:
            return False
        try:
            if action in {SNOOZE_ACTION.lower(), "snooze"}:
                minutes = data.get("minutes")
                duration = timedelta(minutes=float(minutes)) if minutes is not None else None
                await self.snooze_alarm(alarm_id, duration)
            elif action in {DISMISS_ACTION.lower(), "dismiss"}:
                await self.dismiss_alarm(alarm_id)
            else:
                self._logger.debug("Ignoring unknown action '%s'", action)
                return False
        except UnknownEntityError as exc:
            self._logger.warning("Action %s failed: %s", action, exc)
            return False
        except (TypeError, ValueError, OverflowError) as exc:
            self._logger.warning("Action %s has invalid arguments: %s", action, exc)
            return False
        return True

    async def _add_alarm_from_message(self, data: dict[str, Any]) -> bool:
        try:
            time = TimeOfDay.parse(str(data.get("time") or ""))
        except ValueError as exc:
            self._logger.warning("add_alarm has an invalid time %r: %s", data.get("time"), exc)
            return False
        raw_days = data.get("days")
        days = parse_day_tokens(raw_days if isinstance(raw_days, str) else None)
        alarm = Alarm(time=time, weekdays=days or EVERYDAY, weekdays_check=days is not None)
        raw_id = data.get("id")
        if isinstance(raw_id, str) and raw_id.strip():
            alarm = replace(alarm, alarm_id=_strip_request_prefix(raw_id.strip(), "alarm_"))
        try:
            await self.add_alarm(alarm)
        except ChimeError as exc:
            self._logger.warning("add_alarm failed: %s", exc)
            return False
        self._logger.info("Added alarm %s at %s (%s)", alarm.alarm_id, alarm.time, alarm.describe_weekdays())
        return True

    # ------------------------------------------------------------------
    # Internals

    def _commit_locked(self) -> None:
        self._persist_locked()
        self._rebuild_locked()

    def _persist_locked(self) -> None:
        self._store.save(self._alarms.values(), self._reminder_sets.values())

    def _rebuild_locked(self) -> RebuildReport:
        report = self._coordinator.rebuild(
            list(self._alarms.values()),
            list(self._reminder_sets.values()),
            self._zone,
            after=self._clock(),
        )
        self.last_report = report
        self._publish_state(report)
        return report

    def _publish_state(self, report: RebuildReport | None) -> None:
        if not self._state_cb:
            return
        try:
            self._state_cb(self.state_snapshot(report))
        except Exception:
            self._logger.debug("State callback failed", exc_info=True)

    def state_snapshot(self, report: RebuildReport | None = None) -> dict[str, Any]:
        now = self._clock()
        day_order = ordered_from(self._week_start)
        alarms = []
        for alarm in self._alarms.values():
            fire_at = next_alarm_occurrence(alarm, now, self._zone)
            state = snooze_state(alarm, now)
            entry = alarm.to_json_dict()
            entry.update(
                {
                    "label": alarm.time.format(self._use_24_hour),
                    "days": [day.short_name for day in day_order if day in alarm.weekdays],
                    "repeat": alarm.describe_weekdays(),
                    "status": "snoozed" if isinstance(state, Snoozed) else ("enabled" if alarm.enabled else "disabled"),
                    "next_fire": fire_at.isoformat() if fire_at else None,
                }
            )
            alarms.append(entry)
        reminder_sets = []
        for reminder_set in self._reminder_sets.values():
            entry = reminder_set.to_json_dict()
            entry.update(
                {
                    "days": [day.short_name for day in day_order if day in reminder_set.weekdays],
                    "repeat": reminder_set.describe_weekdays(),
                    "interval": reminder_set.describe_interval(),
                    "hours_label": reminder_set.describe_hours(),
                }
            )
            reminder_sets.append(entry)
        next_alarm = self.get_next_alarm()
        return {
            "alarms": alarms,
            "reminder_sets": reminder_sets,
            "next_alarm": (
                {"id": next_alarm[0].alarm_id, "fire_at": next_alarm[1].isoformat()} if next_alarm else None
            ),
            "pending": len(report.submitted) if report else 0,
            "failed": sorted(report.failed) if report else [],
            "updated_at": now.isoformat(),
        }
