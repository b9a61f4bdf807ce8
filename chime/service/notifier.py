"""Notification delivery adapters.

Implementations of the delivery service used by the rescheduling
coordinator:

- ``MqttNotificationService`` publishes each request as a retained message
  on ``<schedule_topic>/<id>`` so a kiosk or phone bridge always sees the
  current schedule; cancelling clears the retained message.
- ``AsyncioNotificationService`` keeps one sleeping task per request id and
  invokes a callback when the fire time arrives. A request that is already
  due when cancelled still fires, so requests sharing a fire time are not
  lost when the first callback reschedules everything.
- ``FanoutNotificationService`` mirrors requests to several services, e.g.
  local timers plus the MQTT schedule.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from chime.datetime_utils import ensure_utc, utc_now

from .mqtt import ChimeMqtt

FireCallback = Callable[[str, dict[str, Any]], Awaitable[None]]

LOGGER = logging.getLogger("chime.notifier")


class MqttNotificationService:
    def __init__(self, mqtt: ChimeMqtt, topic: str, logger: logging.Logger | None = None) -> None:
        self.mqtt = mqtt
        self.topic = topic.rstrip("/")
        self._logger = logger or LOGGER
        self._published: set[str] = set()
        self._lock = threading.Lock()

    def adopt_retained(self) -> None:
        """Learn ids retained on the broker by an earlier run so they get cancelled too."""

        def _on_message(payload: str) -> None:
            if not payload:
                return
            try:
                request_id = json.loads(payload).get("id")
            except (json.JSONDecodeError, AttributeError):
                return
            if isinstance(request_id, str) and request_id:
                with self._lock:
                    self._published.add(request_id)

        if not self.mqtt.subscribe(f"{self.topic}/+", _on_message):
            self._logger.debug("MQTT not connected; cannot adopt retained schedule under %s", self.topic)

    def submit(self, request_id: str, fire_at: datetime, payload: dict[str, Any]) -> None:
        message = json.dumps(
            {
                "id": request_id,
                "fire_at": ensure_utc(fire_at).isoformat(),
                "payload": payload,
            }
        )
        if not self.mqtt.publish_retained(f"{self.topic}/{request_id}", message):
            raise RuntimeError(f"MQTT publish failed for {request_id}")
        with self._lock:
            self._published.add(request_id)

    def cancel(self, request_id: str) -> None:
        if not self.mqtt.clear_retained(f"{self.topic}/{request_id}"):
            raise RuntimeError(f"MQTT cancel failed for {request_id}")
        with self._lock:
            self._published.discard(request_id)

    def cancel_all(self) -> None:
        with self._lock:
            pending = sorted(self._published)
        failed: list[str] = []
        for request_id in pending:
            try:
                self.cancel(request_id)
            except RuntimeError:
                failed.append(request_id)
        if failed:
            raise RuntimeError(f"Failed to cancel {len(failed)} notification(s): {', '.join(failed)}")

    def pending_ids(self) -> set[str]:
        with self._lock:
            return set(self._published)


class AsyncioNotificationService:
    """Local delivery: requests fire inside this process's event loop."""

    def __init__(
        self,
        on_fire: FireCallback,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._on_fire = on_fire
        self._logger = logger or LOGGER
        self._clock = clock
        self._tasks: dict[str, asyncio.Task] = {}
        self._fire_times: dict[str, datetime] = {}
        # Cancelled while already due; left to finish firing.
        self._due: set[asyncio.Task] = set()

    def submit(self, request_id: str, fire_at: datetime, payload: dict[str, Any]) -> None:
        self.cancel(request_id)
        loop = asyncio.get_running_loop()
        self._tasks[request_id] = loop.create_task(self._wait_and_fire(request_id, fire_at, dict(payload)))
        self._fire_times[request_id] = fire_at

    def cancel(self, request_id: str) -> None:
        """Withdraw a future request; one whose fire time has passed still fires."""
        task = self._tasks.pop(request_id, None)
        fire_at = self._fire_times.pop(request_id, None)
        if task is None or task.done():
            return
        if fire_at is not None and ensure_utc(fire_at) <= self._clock():
            self._due.add(task)
            task.add_done_callback(self._due.discard)
            return
        task.cancel()

    def cancel_all(self) -> None:
        for request_id in list(self._tasks):
            self.cancel(request_id)

    def close(self) -> None:
        """Cancel every task, due ones included; used at shutdown."""
        tasks = [*self._tasks.values(), *self._due]
        self._tasks.clear()
        self._fire_times.clear()
        self._due.clear()
        for task in tasks:
            if not task.done():
                task.cancel()

    def pending(self) -> dict[str, datetime]:
        return dict(self._fire_times)

    async def _wait_and_fire(self, request_id: str, fire_at: datetime, payload: dict[str, Any]) -> None:
        target = ensure_utc(fire_at)
        # The loop clock can wake marginally early; never fire before fire_at.
        while (delay := (target - self._clock()).total_seconds()) > 0:
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                return
        # Unregister before firing so a rebuild triggered by the callback
        # cannot cancel the task that is running it.
        if self._tasks.get(request_id) is asyncio.current_task():
            self._tasks.pop(request_id, None)
            self._fire_times.pop(request_id, None)
        try:
            await self._on_fire(request_id, payload)
        except Exception:
            self._logger.exception("Notification handler failed for %s", request_id)


class FanoutNotificationService:
    """Forward every request to several delivery services.

    Each call reaches every service even when an earlier one fails; the first
    failure is re-raised afterwards so the coordinator records it.
    """

    def __init__(self, *services: Any, logger: logging.Logger | None = None) -> None:
        self.services = list(services)
        self._logger = logger or LOGGER

    def _each(self, method: str, *args: Any) -> None:
        first_error: Exception | None = None
        for service in self.services:
            try:
                getattr(service, method)(*args)
            except Exception as exc:
                self._logger.debug("%s.%s failed: %s", type(service).__name__, method, exc)
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error

    def submit(self, request_id: str, fire_at: datetime, payload: dict[str, Any]) -> None:
        self._each("submit", request_id, fire_at, payload)

    def cancel(self, request_id: str) -> None:
        self._each("cancel", request_id)

    def cancel_all(self) -> None:
        self._each("cancel_all")
