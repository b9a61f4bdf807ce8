"""Tests for ChimeService orchestration."""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta
from unittest.mock import Mock
from zoneinfo import ZoneInfo

import pytest

from chime.datetime_utils import utc_now
from chime.engine.models import Alarm, ReminderSet
from chime.engine.speech import SpeechFormat
from chime.service.app import ChimeError, ChimeService, UnknownEntityError
from chime.service.notifier import AsyncioNotificationService
from chime.service.storage import ScheduleStore
from chime.time_of_day import TimeOfDay
from chime.weekdays import Weekday

pytestmark = pytest.mark.anyio

# 06:00 in New York
NOW = datetime(2025, 1, 15, 11, 0, tzinfo=UTC)


@pytest.fixture
def store(tmp_path):
    return ScheduleStore(tmp_path / "schedules.json")


@pytest.fixture
def states():
    return []


@pytest.fixture
def speech():
    return Mock()


@pytest.fixture
def service(store, notifier, new_york, speech, states, mock_logger):
    return ChimeService(
        store=store,
        notifier=notifier,
        zone=new_york,
        speech=speech,
        on_state_changed=states.append,
        clock=lambda: NOW,
        logger=mock_logger,
    )


class TestLifecycle:
    async def test_start_loads_and_schedules(self, store, service, notifier):
        store.save([Alarm(time=TimeOfDay(7, 0), alarm_id="wake")], [ReminderSet(set_id="r", hours=frozenset({9}))])
        report = await service.start()
        assert report.submitted == ["alarm_wake", "reminder_r_09"]
        assert notifier.calls[0] == ("cancel_all", None)
        assert [alarm.alarm_id for alarm in service.alarms] == ["wake"]

    async def test_start_clears_expired_snooze(self, store, service):
        expired = NOW - timedelta(minutes=1)
        store.save([Alarm(alarm_id="wake", snoozed_until=expired)], [])
        await service.start()
        assert service.get_alarm("wake").snoozed_until is None
        assert store.load().alarms[0].snoozed_until is None

    async def test_stop_flushes_settings(self, store, notifier, new_york):
        settings = Mock()
        chime = ChimeService(store=store, notifier=notifier, zone=new_york, settings=settings)
        await chime.stop()
        settings.stop.assert_called_once()


class TestAlarms:
    async def test_add_persists_and_schedules(self, service, store, notifier, new_york):
        await service.add_alarm(Alarm(time=TimeOfDay(7, 30), alarm_id="wake"))
        assert store.load().alarms[0].alarm_id == "wake"
        fire_at, payload = notifier.pending["alarm_wake"]
        assert fire_at == datetime(2025, 1, 15, 7, 30, tzinfo=new_york)
        assert payload["type"] == "alarm"

    async def test_add_duplicate(self, service):
        await service.add_alarm(Alarm(alarm_id="wake"))
        with pytest.raises(ChimeError):
            await service.add_alarm(Alarm(alarm_id="wake"))

    async def test_update_and_delete(self, service, notifier):
        await service.add_alarm(Alarm(time=TimeOfDay(7, 0), alarm_id="wake"))
        await service.update_alarm(Alarm(time=TimeOfDay(8, 0), alarm_id="wake"))
        assert service.get_alarm("wake").time == TimeOfDay(8, 0)
        await service.delete_alarm("wake")
        assert "alarm_wake" not in notifier.pending
        with pytest.raises(UnknownEntityError):
            service.get_alarm("wake")

    async def test_unknown_alarm(self, service):
        with pytest.raises(UnknownEntityError) as excinfo:
            await service.delete_alarm("ghost")
        assert excinfo.value.kind == "alarm"
        assert excinfo.value.entity_id == "ghost"

    async def test_disable_removes_request(self, service, notifier):
        await service.add_alarm(Alarm(alarm_id="wake"))
        await service.set_alarm_enabled("wake", False)
        assert notifier.pending == {}
        await service.set_alarm_enabled("wake", True)
        assert "alarm_wake" in notifier.pending

    async def test_snooze_uses_configured_delay(self, service, notifier):
        await service.add_alarm(Alarm(time=TimeOfDay(6, 0), alarm_id="wake"))
        alarm = await service.snooze_alarm("wake")
        assert alarm.snoozed_until == NOW + timedelta(minutes=10)
        assert notifier.pending["alarm_wake"][0] == NOW + timedelta(minutes=10)

        alarm = await service.snooze_alarm("wake", timedelta(minutes=3))
        assert alarm.snoozed_until == NOW + timedelta(minutes=3)

    async def test_dismiss_one_time_alarm_disables_it(self, service, notifier):
        await service.add_alarm(Alarm(alarm_id="once"))
        await service.snooze_alarm("once")
        alarm = await service.dismiss_alarm("once")
        assert alarm.snoozed_until is None
        assert not alarm.enabled
        assert notifier.pending == {}

    async def test_next_alarm(self, service, new_york):
        assert service.get_next_alarm() is None
        await service.add_alarm(Alarm(time=TimeOfDay(9, 0), alarm_id="late"))
        await service.add_alarm(Alarm(time=TimeOfDay(6, 30), alarm_id="early"))
        alarm, fire_at = service.get_next_alarm()
        assert alarm.alarm_id == "early"
        assert fire_at == datetime(2025, 1, 15, 6, 30, tzinfo=new_york)


class TestReminderSets:
    async def test_crud(self, service, notifier, store):
        reminder_set = ReminderSet(set_id="r", hours=frozenset({8}), show_30_minutes=True)
        await service.add_reminder_set(reminder_set)
        assert {"reminder_r_08", "reminder_r_0830"} <= set(notifier.pending)
        with pytest.raises(ChimeError):
            await service.add_reminder_set(reminder_set)

        await service.update_reminder_set(ReminderSet(set_id="r", hours=frozenset({10})))
        assert set(notifier.pending) == {"reminder_r_10"}

        await service.set_reminder_set_enabled("r", False)
        assert notifier.pending == {}
        assert not store.load().reminder_sets[0].enabled

        await service.delete_reminder_set("r")
        assert service.reminder_sets == []
        with pytest.raises(UnknownEntityError):
            await service.set_reminder_set_enabled("r", True)


async def _add_six_oclock_sets(service):
    await service.add_reminder_set(ReminderSet(set_id="r", hours=frozenset({6})))
    await service.add_reminder_set(ReminderSet(set_id="quiet", hours=frozenset({6}), speech=False))


class TestFiring:
    @staticmethod
    def _payload(reminder_id, set_id="r"):
        return {"type": "reminder", "reminder_id": reminder_id, "reminder_set_id": set_id, "speech": True}

    async def test_reminder_speaks_current_time(self, service, speech):
        await _add_six_oclock_sets(service)
        await service.handle_fired("reminder_r_06", self._payload("r_06"))
        speech.speak.assert_called_once_with("6 o'clock AM")

    async def test_speech_disabled_for_set(self, service, speech):
        await _add_six_oclock_sets(service)
        await service.handle_fired("reminder_quiet_06", self._payload("quiet_06", "quiet"))
        speech.speak.assert_not_called()

    async def test_speech_disabled_globally(self, service, speech):
        await _add_six_oclock_sets(service)
        await service.set_preference("speech_enabled", "off")
        await service.handle_fired("reminder_r_06", self._payload("r_06"))
        speech.speak.assert_not_called()

    @pytest.mark.parametrize(
        ("reminder_id", "set_id"),
        [
            ("r_07", "r"),
            ("r_0630", "r"),
            ("gone_06", "gone"),
        ],
    )
    async def test_stale_reminder_stays_silent(self, service, speech, reminder_id, set_id):
        await _add_six_oclock_sets(service)
        await service.handle_fired(f"reminder_{reminder_id}", self._payload(reminder_id, set_id))
        speech.speak.assert_not_called()

    async def test_weekday_filter_applies_to_speech(self, service, speech):
        # NOW is a Wednesday
        weekend = ReminderSet(
            set_id="w",
            hours=frozenset({6}),
            weekdays=frozenset({Weekday.SATURDAY, Weekday.SUNDAY}),
            weekdays_check=True,
        )
        await service.add_reminder_set(weekend)
        await service.handle_fired("reminder_w_06", self._payload("w_06", "w"))
        speech.speak.assert_not_called()

    async def test_fired_event_and_rebuild(self, store, notifier, new_york):
        events = []
        chime = ChimeService(
            store=store, notifier=notifier, zone=new_york, on_event=lambda *args: events.append(args), clock=lambda: NOW
        )
        payload = {"type": "alarm", "alarm_id": "wake"}
        await chime.handle_fired("alarm_wake", payload)
        assert events == [("alarm_wake", payload)]
        assert notifier.calls == [("cancel_all", None)]

    async def test_fired_alarm_drops_elapsed_snooze(self, store, notifier, new_york):
        now = [NOW]
        chime = ChimeService(store=store, notifier=notifier, zone=new_york, clock=lambda: now[0])
        await chime.add_alarm(Alarm(time=TimeOfDay(6, 0), alarm_id="wake", weekdays_check=True))
        await chime.snooze_alarm("wake")
        assert store.load().alarms[0].snoozed_until is not None

        now[0] = NOW + timedelta(minutes=10, seconds=1)
        await chime.handle_fired("alarm_wake", {"type": "alarm", "alarm_id": "wake"})
        assert chime.get_alarm("wake").snoozed_until is None
        assert store.load().alarms[0].snoozed_until is None
        assert notifier.pending["alarm_wake"][0] == datetime(2025, 1, 16, 6, 0, tzinfo=new_york)


class TestSimultaneousFiring:
    async def test_requests_sharing_a_fire_time_all_fire(self, store, mock_logger):
        offset = datetime(2025, 1, 15, 8, 59, 59, 500000, tzinfo=UTC) - utc_now()

        def clock():
            return utc_now() + offset

        fired = []
        chime = None

        async def on_fire(request_id, payload):
            fired.append(request_id)
            await chime.handle_fired(request_id, payload)

        timers = AsyncioNotificationService(on_fire, mock_logger, clock=clock)
        chime = ChimeService(store=store, notifier=timers, zone=ZoneInfo("UTC"), clock=clock, logger=mock_logger)
        await chime.add_alarm(Alarm(time=TimeOfDay(9, 0), alarm_id="wake"))
        await chime.add_reminder_set(ReminderSet(set_id="r", hours=frozenset({9})))
        await chime.add_reminder_set(ReminderSet(set_id="s", hours=frozenset({9})))
        expected = {"alarm_wake", "reminder_r_09", "reminder_s_09"}
        assert set(timers.pending()) == expected
        try:
            await asyncio.sleep(1.0)
            assert sorted(fired) == sorted(expected)
            tomorrow = datetime(2025, 1, 16, 9, 0, tzinfo=UTC)
            assert timers.pending() == dict.fromkeys(expected, tomorrow)
        finally:
            timers.close()
        assert timers.pending() == {}


class TestActions:
    async def test_snooze_action(self, service):
        await service.add_alarm(Alarm(alarm_id="wake"))
        message = json.dumps({"action": "SNOOZE_ACTION", "id": "alarm_wake", "minutes": 5})
        assert await service.handle_action(message) is True
        assert service.get_alarm("wake").snoozed_until == NOW + timedelta(minutes=5)

    async def test_dismiss_action(self, service):
        await service.add_alarm(Alarm(alarm_id="wake", weekdays_check=True))
        await service.snooze_alarm("wake")
        assert await service.handle_action('{"action": "dismiss", "alarm_id": "wake"}') is True
        alarm = service.get_alarm("wake")
        assert alarm.snoozed_until is None
        assert alarm.enabled

    @pytest.mark.parametrize(
        "message",
        [
            "not json",
            "[]",
            '{"action": "snooze"}',
            '{"action": "explode", "id": "alarm_wake"}',
            '{"action": "snooze", "id": "alarm_ghost"}',
            '{"action": "snooze", "id": "alarm_wake", "minutes": "lots"}',
            '{"action": "snooze", "id": "alarm_wake", "minutes": 1e12}',
            '{"action": "snooze", "id": "alarm_wake", "minutes": Infinity}',
            '{"action": "snooze", "id": "alarm_wake", "minutes": NaN}',
        ],
    )
    async def test_rejected_messages(self, service, message):
        await service.add_alarm(Alarm(alarm_id="wake"))
        assert await service.handle_action(message) is False
        assert service.get_alarm("wake").snoozed_until is None

    async def test_add_alarm_action(self, service, notifier, new_york):
        message = json.dumps({"action": "add_alarm", "time": "7:30 pm", "days": "weekdays", "id": "alarm_dinner"})
        assert await service.handle_action(message) is True
        alarm = service.get_alarm("dinner")
        assert alarm.time == TimeOfDay(19, 30)
        assert alarm.weekdays_check
        assert alarm.describe_weekdays() == "Weekdays"
        assert notifier.pending["alarm_dinner"][0] == datetime(2025, 1, 15, 19, 30, tzinfo=new_york)

    async def test_add_alarm_action_without_days_is_one_time(self, service):
        assert await service.handle_action('{"action": "add_alarm", "time": "noon"}') is True
        (alarm,) = service.alarms
        assert alarm.time == TimeOfDay(12, 0)
        assert alarm.is_one_time

    @pytest.mark.parametrize(
        "message",
        [
            '{"action": "add_alarm"}',
            '{"action": "add_alarm", "time": "25:00"}',
            '{"action": "add_alarm", "time": "7:00", "id": "wake"}',
        ],
    )
    async def test_add_alarm_action_rejected(self, service, message):
        await service.add_alarm(Alarm(time=TimeOfDay(6, 0), alarm_id="wake"))
        assert await service.handle_action(message) is False
        assert service.get_alarm("wake").time == TimeOfDay(6, 0)
        assert len(service.alarms) == 1


class TestPreferences:
    async def test_unknown_preference(self, service, mock_logger):
        assert await service.set_preference("volume", "11") is False
        mock_logger.warning.assert_called_once()

    async def test_speech_preferences(self, service):
        await service.set_preference("speech_format", "hour")
        await service.set_preference("speak_am_pm", "false")
        await service.set_preference("speech_template", "%H and %M")
        prefs = service.preferences
        assert prefs.format is SpeechFormat.HOUR_ONLY
        assert not prefs.speak_am_pm
        assert prefs.custom_template == "%H and %M"

    async def test_snooze_delay(self, service):
        await service.set_preference("snooze_delay", "PT5M")
        assert service.snooze_delay == timedelta(minutes=5)
        await service.set_preference("snooze_delay", "0")
        assert service.snooze_delay == timedelta(minutes=10)

    async def test_persisted_to_settings(self, store, notifier, new_york):
        settings = Mock()
        chime = ChimeService(store=store, notifier=notifier, zone=new_york, settings=settings)
        await chime.set_preference("use_24_hour", "on")
        settings.update.assert_called_once_with("CHIME_USE_24_HOUR", "true")

    async def test_display_preferences_republish_state(self, service, states):
        await service.add_alarm(Alarm(time=TimeOfDay(19, 5), alarm_id="dinner", weekdays_check=True))
        await service.set_preference("use_24_hour", "true")
        assert states[-1]["alarms"][0]["label"] == "19:05"
        await service.set_preference("week_start", "monday")
        assert states[-1]["alarms"][0]["days"][0] == Weekday.MONDAY.short_name


class TestTimezone:
    async def test_recurrences_follow_new_zone(self, service, notifier):
        await service.add_alarm(Alarm(time=TimeOfDay(7, 0), alarm_id="wake"))
        tokyo = ZoneInfo("Asia/Tokyo")
        await service.set_timezone(tokyo)
        assert service.zone is tokyo
        assert notifier.pending["alarm_wake"][0] == datetime(2025, 1, 16, 7, 0, tzinfo=tokyo)

    async def test_snooze_keeps_its_instant(self, service, notifier, mock_logger):
        await service.add_alarm(Alarm(time=TimeOfDay(7, 0), alarm_id="wake"))
        await service.snooze_alarm("wake")
        await service.set_timezone(ZoneInfo("Asia/Tokyo"))
        assert notifier.pending["alarm_wake"][0] == NOW + timedelta(minutes=10)
        assert any("stays snoozed" in call.args[0] for call in mock_logger.debug.call_args_list)


class TestStateSnapshot:
    async def test_snapshot_contents(self, service, states):
        await service.add_alarm(Alarm(time=TimeOfDay(7, 0), alarm_id="wake"))
        await service.add_alarm(Alarm(alarm_id="off", enabled=False))
        await service.add_reminder_set(ReminderSet(set_id="r", hours=frozenset({9}), repeat_interval=30))
        await service.snooze_alarm("wake")

        snapshot = states[-1]
        statuses = {alarm["id"]: alarm["status"] for alarm in snapshot["alarms"]}
        assert statuses == {"wake": "snoozed", "off": "disabled"}
        assert snapshot["alarms"][0]["label"] == "7:00"
        assert snapshot["reminder_sets"][0]["interval"] == "Every 30 min"
        assert snapshot["next_alarm"]["id"] == "wake"
        assert snapshot["pending"] == 3
        assert snapshot["failed"] == []
        assert snapshot["updated_at"] == NOW.isoformat()

    async def test_state_callback_errors_are_swallowed(self, store, notifier, new_york, mock_logger):
        def broken(_state):
            raise RuntimeError("broker gone")

        chime = ChimeService(
            store=store, notifier=notifier, zone=new_york, on_state_changed=broken, logger=mock_logger, clock=lambda: NOW
        )
        await chime.add_alarm(Alarm(alarm_id="wake"))
        mock_logger.debug.assert_called()
