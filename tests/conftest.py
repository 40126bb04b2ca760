"""Shared test fixtures for the Somnus test suite.

This module provides reusable fixtures for common test scenarios including:
- Fixed clocks and a fake notification sink for deterministic scheduling
- MQTT client mocking
- Home Assistant configuration
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from unittest.mock import Mock

import paho.mqtt.client as mqtt
import pytest

from somnus.alarms.config import HomeAssistantConfig, MqttConfig
from somnus.alarms.notification_sink import SchedulingError

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
    """Create a mock logger for testing."""
    return Mock(spec=logging.Logger)


# ============================================================================
# Clock and Sink Fixtures
# ============================================================================


class FakeClock:
    """Manually advanced clock. Monday 2024-01-01 06:00 UTC by default."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 6, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeSink:
    """In-memory notification sink; tests deliver triggers explicitly."""

    def __init__(self) -> None:
        self.handler = None
        self.scheduled: dict[str, tuple[datetime, bool]] = {}
        self.cancelled: list[str] = []
        self.fail_schedule = False
        self.closed = False

    def set_delivery_handler(self, handler) -> None:  # type: ignore[no-untyped-def]
        self.handler = handler

    def schedule(self, trigger_id: str, fire_at: datetime, repeats: bool = False) -> None:
        if self.fail_schedule:
            raise SchedulingError("sink unavailable")
        self.scheduled[trigger_id] = (fire_at, repeats)

    def cancel(self, trigger_id: str) -> None:
        self.cancelled.append(trigger_id)
        self.scheduled.pop(trigger_id, None)

    def open(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True
        self.scheduled.clear()

    async def deliver(self, trigger_id: str) -> None:
        self.scheduled.pop(trigger_id, None)
        assert self.handler is not None
        await self.handler(trigger_id)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sink():
    return FakeSink()


# ============================================================================
# Home Assistant Fixtures
# ============================================================================


@pytest.fixture
def ha_config():
    """Create a basic Home Assistant configuration for testing."""
    return HomeAssistantConfig(
        base_url="http://homeassistant.local:8123",
        token="test_token_123",
        verify_ssl=True,
        notify_service="mobile_app_phone",
    )


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
        topic_base="somnus/test-device",
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
        topic_base="somnus/test-device",
    )


@pytest.fixture
def mock_mqtt_client():
    """Create a mock paho MQTT client."""
    client = Mock(spec=mqtt.Client)
    message_info = Mock(spec=mqtt.MQTTMessageInfo)
    message_info.rc = mqtt.MQTT_ERR_SUCCESS
    message_info.mid = 1
    client.publish = Mock(return_value=message_info)
    client.subscribe = Mock(return_value=(mqtt.MQTT_ERR_SUCCESS, 1))
    client.is_connected = Mock(return_value=True)
    return client
