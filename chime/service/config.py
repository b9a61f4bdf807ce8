"""Configuration helpers for the chime service."""

from __future__ import annotations

import os
import socket
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Literal

from chime.datetime_utils import parse_duration_seconds
from chime.engine.snooze import DEFAULT_SNOOZE
from chime.engine.speech import DEFAULT_CUSTOM_TEMPLATE, SpeechFormat, SpeechPreferences
from chime.utils import env_bool, env_float, env_int
from chime.weekdays import DAY_NAME_MAP, Weekday

DeliveryMode = Literal["local", "mqtt"]

DEFAULT_STORAGE_PATH = Path("/var/lib/chime/schedules.json")
DEFAULT_SETTINGS_PATH = Path("/var/lib/chime/chime.conf")


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


@dataclass(frozen=True)
class WyomingEndpoint:
    host: str
    port: int
    model: str | None = None


@dataclass(frozen=True)
class MqttConfig:
    host: str | None
    port: int
    username: str | None
    password: str | None
    tls_enabled: bool
    cert: str | None
    key: str | None
    ca_cert: str | None
    topic_base: str


@dataclass(frozen=True)
class SpeechConfig:
    tts_endpoint: WyomingEndpoint | None
    voice: str | None
    timeout: float
    preferences: SpeechPreferences


@dataclass(frozen=True)
class ScheduleConfig:
    storage_path: Path
    timezone: str | None
    snooze: timedelta
    delivery: DeliveryMode
    use_24_hour: bool
    week_start: Weekday


@dataclass(frozen=True)
class ChimeConfig:
    hostname: str
    device_name: str
    settings_path: Path
    mqtt: MqttConfig
    speech: SpeechConfig
    schedule: ScheduleConfig
    state_topic: str
    schedule_topic: str
    event_topic: str
    action_topic: str

    @staticmethod
    def from_env(env: Mapping[str, str] | None = None) -> ChimeConfig:
        source = env if env is not None else os.environ
        hostname = source.get("CHIME_HOSTNAME") or socket.gethostname()
        device_name = source.get("CHIME_NAME") or hostname.replace("-", " ").title()

        topic_base = source.get("CHIME_TOPIC_BASE") or f"chime/{hostname}"
        mqtt = MqttConfig(
            host=_strip_or_none(source.get("MQTT_HOST")),
            port=env_int(source, "MQTT_PORT", 1883, minimum=1, maximum=65535),
            username=_strip_or_none(source.get("MQTT_USER") or source.get("MQTT_USERNAME")),
            password=_strip_or_none(source.get("MQTT_PASS") or source.get("MQTT_PASSWORD")),
            tls_enabled=env_bool(source, "MQTT_TLS_ENABLED", False),
            cert=_strip_or_none(source.get("MQTT_CERT")),
            key=_strip_or_none(source.get("MQTT_KEY")),
            ca_cert=_strip_or_none(source.get("MQTT_CA_CERT")),
            topic_base=topic_base.rstrip("/"),
        )

        tts_host = _strip_or_none(source.get("WYOMING_PIPER_HOST"))
        tts_endpoint = None
        if tts_host:
            tts_endpoint = WyomingEndpoint(
                host=tts_host,
                port=env_int(source, "WYOMING_PIPER_PORT", 10200, minimum=1, maximum=65535),
            )
        preferences = SpeechPreferences(
            enabled=env_bool(source, "CHIME_TTS_ENABLED", True),
            format=SpeechFormat.parse(source.get("CHIME_SPEECH_FORMAT")),
            speak_am_pm=env_bool(source, "CHIME_SPEAK_AMPM", True),
            custom_template=source.get("CHIME_SPEECH_TEMPLATE") or DEFAULT_CUSTOM_TEMPLATE,
        )
        speech = SpeechConfig(
            tts_endpoint=tts_endpoint,
            voice=_strip_or_none(source.get("CHIME_TTS_VOICE")),
            timeout=env_float(source, "CHIME_TTS_TIMEOUT_SECONDS", 15.0, minimum=1.0, maximum=120.0),
            preferences=preferences,
        )

        snooze_seconds = parse_duration_seconds(source.get("CHIME_SNOOZE_DELAY") or "")
        snooze = timedelta(seconds=snooze_seconds) if snooze_seconds > 0 else DEFAULT_SNOOZE
        delivery_default: DeliveryMode = "mqtt" if mqtt.host else "local"
        schedule = ScheduleConfig(
            storage_path=Path(source.get("CHIME_STORAGE_PATH") or DEFAULT_STORAGE_PATH),
            timezone=_strip_or_none(source.get("CHIME_TIMEZONE") or source.get("TZ")),
            snooze=snooze,
            delivery=_normalize_choice(source.get("CHIME_DELIVERY"), {"local", "mqtt"}, delivery_default),
            use_24_hour=env_bool(source, "CHIME_USE_24_HOUR", False),
            week_start=_parse_week_start(source.get("CHIME_WEEK_START")),
        )

        return ChimeConfig(
            hostname=hostname,
            device_name=device_name,
            settings_path=Path(source.get("CHIME_SETTINGS_FILE") or DEFAULT_SETTINGS_PATH),
            mqtt=mqtt,
            speech=speech,
            schedule=schedule,
            state_topic=f"{mqtt.topic_base}/state",
            schedule_topic=f"{mqtt.topic_base}/schedule",
            event_topic=f"{mqtt.topic_base}/event",
            action_topic=f"{mqtt.topic_base}/action",
        )


def _normalize_choice(value: str | None, allowed: set[str], default: str) -> str:
    if not value:
        return default
    lowered = value.strip().lower()
    if lowered in allowed:
        return lowered
    return default


def _parse_week_start(value: str | None) -> Weekday:
    if not value:
        return Weekday.SUNDAY
    return DAY_NAME_MAP.get(value.strip().lower()[:3], Weekday.SUNDAY)
