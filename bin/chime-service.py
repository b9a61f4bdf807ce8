#!/usr/bin/env python3
"""Hourly chime daemon: keeps alarms and spoken-time reminders scheduled."""

from __future__ import annotations

import argparse
import asyncio
import concurrent.futures
import contextlib
import logging
import os
import signal
from pathlib import Path
from typing import Any

from chime.datetime_utils import resolve_zone
from chime.service.app import ChimeService
from chime.service.config import ChimeConfig
from chime.service.mqtt import ChimeMqtt
from chime.service.notifier import (
    AsyncioNotificationService,
    FanoutNotificationService,
    MqttNotificationService,
)
from chime.service.storage import ScheduleStore
from chime.service.wyoming import WyomingSpeechService
from chime.settings_store import SettingsStore

LOGGER = logging.getLogger("chime-service")

LOCALTIME_PATH = Path("/etc/localtime")
TIMEZONE_POLL_SECONDS = 60.0


def _log_action_failure(future: concurrent.futures.Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        LOGGER.error("Action message failed", exc_info=exc)


def load_config() -> tuple[ChimeConfig, SettingsStore]:
    """Environment first, then the settings file on top of it."""
    bootstrap = ChimeConfig.from_env()
    settings = SettingsStore(bootstrap.settings_path, logger=LOGGER)
    merged = {**os.environ, **settings.read_all()}
    return ChimeConfig.from_env(merged), settings


class ChimeDaemon:
    def __init__(self, config: ChimeConfig, settings: SettingsStore) -> None:
        self.config = config
        self.settings = settings
        self.mqtt = ChimeMqtt(config.mqtt, logger=LOGGER)
        self.timers = AsyncioNotificationService(self._on_fire, logger=LOGGER)
        self.speech = WyomingSpeechService(config.speech, logger=LOGGER)
        self.service: ChimeService | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._localtime_stamp = self._localtime_signature()

    async def run(self) -> None:
        self._loop = asyncio.get_running_loop()
        self.mqtt.connect()

        notifier: Any = self.timers
        if self.config.schedule.delivery == "mqtt":
            if self.config.mqtt.host:
                mirror = MqttNotificationService(self.mqtt, self.config.schedule_topic, logger=LOGGER)
                mirror.adopt_retained()
                notifier = FanoutNotificationService(self.timers, mirror, logger=LOGGER)
            else:
                LOGGER.warning("MQTT delivery requested without MQTT_HOST; using local timers only")

        schedule = self.config.schedule
        self.service = ChimeService(
            store=ScheduleStore(schedule.storage_path, logger=LOGGER),
            notifier=notifier,
            zone=resolve_zone(schedule.timezone),
            speech=self.speech,
            settings=self.settings,
            preferences=self.config.speech.preferences,
            snooze_delay=schedule.snooze,
            use_24_hour=schedule.use_24_hour,
            week_start=schedule.week_start,
            on_state_changed=self._publish_state,
            on_event=self._publish_event,
            logger=LOGGER,
        )
        if not self.mqtt.subscribe(self.config.action_topic, self._handle_action_message):
            LOGGER.info("MQTT unavailable; remote actions disabled")

        report = await self.service.start()
        if not report.ok:
            LOGGER.warning("Initial schedule incomplete: %d failure(s)", len(report.failed))
        await self._watch_timezone()

    async def shutdown(self) -> None:
        if self.service:
            await self.service.stop()
        self.timers.close()
        await self.speech.close()
        self.mqtt.disconnect()

    async def _on_fire(self, request_id: str, payload: dict[str, Any]) -> None:
        if self.service:
            await self.service.handle_fired(request_id, payload)

    def _handle_action_message(self, payload: str) -> None:
        if not self._loop or not self.service:
            return
        future = asyncio.run_coroutine_threadsafe(self.service.handle_action(payload), self._loop)
        future.add_done_callback(_log_action_failure)

    def _publish_state(self, snapshot: dict[str, Any]) -> None:
        self.mqtt.publish_json(self.config.state_topic, snapshot, retain=True)

    def _publish_event(self, request_id: str, payload: dict[str, Any]) -> None:
        self.mqtt.publish_json(self.config.event_topic, {"id": request_id, **payload})

    async def _watch_timezone(self) -> None:
        """Follow /etc/localtime when no zone is pinned in the configuration."""
        while True:
            await asyncio.sleep(TIMEZONE_POLL_SECONDS)
            if self.config.schedule.timezone or not self.service:
                continue
            stamp = self._localtime_signature()
            if stamp == self._localtime_stamp:
                continue
            self._localtime_stamp = stamp
            try:
                zone = resolve_zone(None)
            except Exception as exc:
                LOGGER.warning("Failed to reload local time zone: %s", exc)
                continue
            await self.service.set_timezone(zone)

    @staticmethod
    def _localtime_signature() -> tuple[int, int] | None:
        try:
            stat = LOCALTIME_PATH.stat()
        except OSError:
            return None
        return stat.st_ino, stat.st_mtime_ns


async def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    config, settings = load_config()
    daemon = ChimeDaemon(config, settings)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _handle_signal(signum: int) -> None:
        LOGGER.info("Received signal %s, shutting down", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    run_task = asyncio.create_task(daemon.run())
    await stop_event.wait()
    await daemon.shutdown()
    run_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await run_task


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
