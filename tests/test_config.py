"""Tests for chime.service.config: environment parsing and defaults."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

from chime.engine.snooze import DEFAULT_SNOOZE
from chime.engine.speech import SpeechFormat
from chime.service.config import (
    DEFAULT_SETTINGS_PATH,
    DEFAULT_STORAGE_PATH,
    ChimeConfig,
    _normalize_choice,
    _parse_week_start,
    _strip_or_none,
)
from chime.weekdays import Weekday

_BASE_ENV: dict[str, str] = {"CHIME_HOSTNAME": "kitchen-clock"}


def _from_env(overrides: dict[str, str] | None = None) -> ChimeConfig:
    env = dict(_BASE_ENV)
    if overrides:
        env.update(overrides)
    return ChimeConfig.from_env(env)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_strip_or_none():
    assert _strip_or_none(None) is None
    assert _strip_or_none("   ") is None
    assert _strip_or_none(" host ") == "host"


def test_normalize_choice():
    assert _normalize_choice(" MQTT ", {"local", "mqtt"}, "local") == "mqtt"
    assert _normalize_choice("carrier-pigeon", {"local", "mqtt"}, "local") == "local"
    assert _normalize_choice(None, {"local", "mqtt"}, "mqtt") == "mqtt"


def test_parse_week_start():
    assert _parse_week_start(None) is Weekday.SUNDAY
    assert _parse_week_start("Monday") is Weekday.MONDAY
    assert _parse_week_start("nope") is Weekday.SUNDAY


# ---------------------------------------------------------------------------
# ChimeConfig.from_env
# ---------------------------------------------------------------------------


class TestDefaults:
    def test_identity_and_topics(self):
        config = _from_env()
        assert config.hostname == "kitchen-clock"
        assert config.device_name == "Kitchen Clock"
        assert config.mqtt.topic_base == "chime/kitchen-clock"
        assert config.state_topic == "chime/kitchen-clock/state"
        assert config.schedule_topic == "chime/kitchen-clock/schedule"
        assert config.event_topic == "chime/kitchen-clock/event"
        assert config.action_topic == "chime/kitchen-clock/action"

    def test_schedule_defaults(self):
        config = _from_env()
        assert config.schedule.storage_path == DEFAULT_STORAGE_PATH
        assert config.settings_path == DEFAULT_SETTINGS_PATH
        assert config.schedule.snooze == DEFAULT_SNOOZE
        assert config.schedule.delivery == "local"
        assert config.schedule.timezone is None
        assert not config.schedule.use_24_hour
        assert config.schedule.week_start is Weekday.SUNDAY

    def test_speech_defaults(self):
        config = _from_env()
        assert config.speech.tts_endpoint is None
        assert config.speech.timeout == 15.0
        prefs = config.speech.preferences
        assert prefs.enabled and prefs.speak_am_pm
        assert prefs.format is SpeechFormat.FULL
        assert prefs.custom_template == "%M minutes"

    def test_mqtt_defaults(self):
        config = _from_env()
        assert config.mqtt.host is None
        assert config.mqtt.port == 1883
        assert not config.mqtt.tls_enabled


class TestOverrides:
    def test_mqtt_host_switches_delivery(self):
        config = _from_env({"MQTT_HOST": "broker.local", "MQTT_PORT": "8883", "MQTT_USER": "u", "MQTT_PASS": "p"})
        assert config.mqtt.host == "broker.local"
        assert config.mqtt.port == 8883
        assert config.mqtt.username == "u"
        assert config.schedule.delivery == "mqtt"

    def test_out_of_range_ports_are_clamped(self):
        config = _from_env({"MQTT_HOST": "b", "MQTT_PORT": "0", "WYOMING_PIPER_HOST": "p", "WYOMING_PIPER_PORT": "99999"})
        assert config.mqtt.port == 1
        assert config.speech.tts_endpoint.port == 65535

    def test_explicit_local_delivery_wins(self):
        config = _from_env({"MQTT_HOST": "broker.local", "CHIME_DELIVERY": "local"})
        assert config.schedule.delivery == "local"

    def test_topic_base_trailing_slash(self):
        config = _from_env({"CHIME_TOPIC_BASE": "home/chime/"})
        assert config.state_topic == "home/chime/state"

    def test_tts_endpoint(self):
        config = _from_env(
            {"WYOMING_PIPER_HOST": "piper", "CHIME_TTS_VOICE": "en_US-amy", "CHIME_TTS_TIMEOUT_SECONDS": "0.2"}
        )
        assert config.speech.tts_endpoint.host == "piper"
        assert config.speech.tts_endpoint.port == 10200
        assert config.speech.voice == "en_US-amy"
        assert config.speech.timeout == 1.0

    def test_speech_preferences(self):
        config = _from_env(
            {
                "CHIME_TTS_ENABLED": "off",
                "CHIME_SPEECH_FORMAT": "custom",
                "CHIME_SPEAK_AMPM": "no",
                "CHIME_SPEECH_TEMPLATE": "%H and %M",
            }
        )
        prefs = config.speech.preferences
        assert not prefs.enabled
        assert prefs.format is SpeechFormat.CUSTOM
        assert not prefs.speak_am_pm
        assert prefs.custom_template == "%H and %M"

    def test_snooze_delay(self):
        assert _from_env({"CHIME_SNOOZE_DELAY": "5m"}).schedule.snooze == timedelta(minutes=5)
        assert _from_env({"CHIME_SNOOZE_DELAY": "0"}).schedule.snooze == DEFAULT_SNOOZE
        assert _from_env({"CHIME_SNOOZE_DELAY": "garbage"}).schedule.snooze == DEFAULT_SNOOZE

    def test_paths_and_zone(self):
        config = _from_env(
            {
                "CHIME_STORAGE_PATH": "/tmp/chime/schedules.json",
                "CHIME_SETTINGS_FILE": "/tmp/chime/chime.conf",
                "TZ": "Europe/Berlin",
            }
        )
        assert config.schedule.storage_path == Path("/tmp/chime/schedules.json")
        assert config.settings_path == Path("/tmp/chime/chime.conf")
        assert config.schedule.timezone == "Europe/Berlin"

    def test_chime_timezone_preferred_over_tz(self):
        config = _from_env({"TZ": "UTC", "CHIME_TIMEZONE": "Asia/Tokyo"})
        assert config.schedule.timezone == "Asia/Tokyo"

    def test_display_preferences(self):
        config = _from_env({"CHIME_USE_24_HOUR": "true", "CHIME_WEEK_START": "mon"})
        assert config.schedule.use_24_hour
        assert config.schedule.week_start is Weekday.MONDAY
