"""Broker connection for the chime daemon.

One paho client carries three kinds of traffic: retained per-request schedule
messages, the retained state snapshot and fire events going out, and action
messages coming in. Subscriptions are remembered and replayed whenever the
client reconnects, so a broker restart does not silently drop the action
topic.
"""

from __future__ import annotations

import json
import logging
import ssl
import threading
from collections.abc import Callable
from typing import Any

import paho.mqtt.client as mqtt

from .config import MqttConfig

LOGGER = logging.getLogger("chime.mqtt")

MessageHandler = Callable[[str], None]


class ChimeMqtt:
    def __init__(self, config: MqttConfig, logger: logging.Logger | None = None) -> None:
        self.config = config
        self._logger = logger or LOGGER
        self._client: mqtt.Client | None = None
        self._handlers: dict[str, MessageHandler] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return bool(self.config.host)

    @property
    def connected(self) -> bool:
        return self._client is not None

    def connect(self) -> bool:
        """Start the network loop; False when MQTT is off or the broker is unreachable."""
        if not self.enabled:
            self._logger.debug("MQTT host not configured; remote delivery disabled")
            return False
        with self._lock:
            if self._client is not None:
                return True
            client = self._new_client()
            try:
                client.connect(self.config.host, self.config.port, keepalive=30)
            except (OSError, ValueError) as exc:
                self._logger.warning(
                    "Failed to connect to MQTT broker %s:%s: %s", self.config.host, self.config.port, exc
                )
                return False
            client.loop_start()
            self._client = client
        return True

    def disconnect(self) -> None:
        with self._lock:
            client, self._client = self._client, None
            self._handlers.clear()
        if client is not None:
            client.loop_stop()
            client.disconnect()

    def _new_client(self) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"chime-{self.config.topic_base.replace('/', '-')}",
            clean_session=True,
        )
        client.on_connect = self._on_connect
        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password or "")
        if self.config.tls_enabled:
            client.tls_set(
                ca_certs=self.config.ca_cert,
                certfile=self.config.cert,
                keyfile=self.config.key,
                tls_version=ssl.PROTOCOL_TLS_CLIENT,
            )
        return client

    def _on_connect(
        self,
        client: mqtt.Client,
        _userdata: Any,
        _flags: Any,
        reason_code: Any,
        _properties: Any = None,
    ) -> None:
        if reason_code.is_failure:
            self._logger.warning("MQTT broker refused connection: %s", reason_code)
            return
        with self._lock:
            topics = list(self._handlers)
        for topic in topics:
            client.subscribe(topic, qos=1)
        if topics:
            self._logger.debug("Resubscribed to %d topic(s)", len(topics))

    # ------------------------------------------------------------------
    # Outgoing

    def _publish(self, topic: str, payload: str, *, retain: bool, qos: int) -> bool:
        client = self._client
        if client is None:
            return False
        try:
            info = client.publish(topic, payload=payload, qos=qos, retain=retain)
        except (OSError, ValueError) as exc:
            self._logger.debug("Publish to %s failed: %s", topic, exc)
            return False
        return info.rc == mqtt.MQTT_ERR_SUCCESS

    def publish_retained(self, topic: str, payload: str) -> bool:
        """Replace the retained message on ``topic``."""
        return self._publish(topic, payload, retain=True, qos=1)

    def clear_retained(self, topic: str) -> bool:
        """Remove the retained message on ``topic`` (an empty retained payload)."""
        return self._publish(topic, "", retain=True, qos=1)

    def publish_json(self, topic: str, data: dict[str, Any], *, retain: bool = False) -> bool:
        return self._publish(topic, json.dumps(data), retain=retain, qos=1 if retain else 0)

    # ------------------------------------------------------------------
    # Incoming

    def subscribe(self, topic: str, handler: MessageHandler) -> bool:
        """Deliver decoded payloads on ``topic`` to ``handler``; False when not connected."""
        client = self._client
        if client is None:
            return False

        def _callback(_client: mqtt.Client, _userdata: Any, message: mqtt.MQTTMessage) -> None:
            try:
                handler(message.payload.decode("utf-8", errors="ignore"))
            except Exception:
                self._logger.exception("Handler for %s failed", message.topic)

        with self._lock:
            self._handlers[topic] = handler
        client.message_callback_add(topic, _callback)
        result, _mid = client.subscribe(topic, qos=1)
        if result != mqtt.MQTT_ERR_SUCCESS:
            self._logger.warning("Subscribe to %s not accepted yet (rc=%s); retrying on reconnect", topic, result)
        return True
