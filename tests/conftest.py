"""Shared test fixtures and configuration for the Hourly Chime test suite.

This module provides reusable fixtures for common test scenarios including:
- MQTT broker/client mocking
- A recording notification delivery service
- Fixed clocks and zones for deterministic scheduling
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from unittest.mock import Mock
from zoneinfo import ZoneInfo

import paho.mqtt.client as mqtt
import pytest

from chime.service.config import MqttConfig

# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


# ============================================================================
# Logging Fixtures
# ============================================================================


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing.

    Returns a Mock with spec=logging.Logger to ensure only valid
    logger methods can be called.
    """
    return Mock(spec=logging.Logger)


# ============================================================================
# Time Fixtures
# ============================================================================


@pytest.fixture
def new_york():
    """A zone with DST transitions (second Sunday of March, first Sunday of November)."""
    return ZoneInfo("America/New_York")


# ============================================================================
# MQTT Fixtures
# ============================================================================


@pytest.fixture
def mqtt_config():
    """Create a basic MQTT configuration for testing."""
    return MqttConfig(
        host="localhost",
        port=1883,
        username=None,
        password=None,
        tls_enabled=False,
        cert=None,
        key=None,
        ca_cert=None,
        topic_base="chime/test-device",
    )


@pytest.fixture
def mqtt_config_with_tls():
    """Create MQTT configuration with TLS encryption enabled."""
    return MqttConfig(
        host="localhost",
        port=8883,
        username="mqtt_user",
        password="mqtt_pass",
        tls_enabled=True,
        cert="/path/to/client.crt",
        key="/path/to/client.key",
        ca_cert="/path/to/ca.crt",
        topic_base="chime/test-device",
    )


@pytest.fixture
def mock_mqtt_client():
    """Create a mock paho MQTT client.

    Provides common MQTT client methods as mocks for testing
    MQTT interactions without a real broker.
    """
    client = Mock(spec=mqtt.Client)
    client.connect = Mock()
    client.disconnect = Mock()
    client.subscribe = Mock(return_value=(mqtt.MQTT_ERR_SUCCESS, 1))
    client.message_callback_add = Mock()

    message_info = Mock(spec=mqtt.MQTTMessageInfo)
    message_info.rc = mqtt.MQTT_ERR_SUCCESS
    message_info.mid = 1
    client.publish = Mock(return_value=message_info)

    client.loop_start = Mock()
    client.loop_stop = Mock()
    return client


# ============================================================================
# Delivery Fixtures
# ============================================================================


class RecordingNotifier:
    """In-memory delivery service that remembers every call in order."""

    def __init__(self, fail_ids: set[str] | None = None, fail_cancel_all: bool = False) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.pending: dict[str, tuple[datetime, dict[str, Any]]] = {}
        self.fail_ids = set(fail_ids or set())
        self.fail_cancel_all = fail_cancel_all

    def submit(self, request_id: str, fire_at: datetime, payload: dict[str, Any]) -> None:
        self.calls.append(("submit", request_id))
        if request_id in self.fail_ids:
            raise RuntimeError(f"rejected {request_id}")
        self.pending[request_id] = (fire_at, payload)

    def cancel(self, request_id: str) -> None:
        self.calls.append(("cancel", request_id))
        self.pending.pop(request_id, None)

    def cancel_all(self) -> None:
        self.calls.append(("cancel_all", None))
        if self.fail_cancel_all:
            raise RuntimeError("cancel_all unavailable")
        self.pending.clear()

    def schedule(self) -> list[tuple[str, datetime]]:
        return sorted((request_id, fire_at) for request_id, (fire_at, _payload) in self.pending.items())


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_notifier():
    """Factory for notifiers that fail on chosen ids or on cancel_all."""
    return RecordingNotifier
