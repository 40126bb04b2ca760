"""Configuration helpers for the Somnus alarm daemon."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from datetime import tzinfo
from pathlib import Path

from somnus.datetime_utils import resolve_timezone
from somnus.utils import clamp, parse_bool, parse_float, parse_int


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


DEFAULT_SNOOZE_MINUTES = 5
DEFAULT_REANNOUNCE_SECONDS = 10.0
DEFAULT_REANNOUNCE_MAX_ATTEMPTS = 30
DEFAULT_QUIZ_QUESTIONS = 3
MAX_QUIZ_QUESTIONS = 10


def default_storage_path() -> Path:
    return Path.home() / ".local" / "share" / "somnus" / "alarms.json"


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
class HomeAssistantConfig:
    base_url: str | None
    token: str | None
    verify_ssl: bool
    notify_service: str | None


@dataclass(frozen=True)
class FiringConfig:
    snooze_minutes: int
    reannounce_seconds: float
    max_attempts: int
    quiz_enabled: bool
    quiz_questions: int


@dataclass(frozen=True)
class SomnusConfig:
    hostname: str
    device_name: str
    storage_path: Path
    timezone: tzinfo | None
    firing: FiringConfig
    mqtt: MqttConfig
    home_assistant: HomeAssistantConfig

    @staticmethod
    def from_env(env: dict[str, str] | None = None) -> SomnusConfig:
        source = env if env is not None else os.environ
        hostname = source.get("SOMNUS_HOSTNAME") or socket.gethostname()
        device_name = source.get("SOMNUS_NAME") or hostname.replace("-", " ").title()

        storage_override = _strip_or_none(source.get("SOMNUS_ALARMS_FILE"))
        storage_path = Path(storage_override).expanduser() if storage_override else default_storage_path()

        firing = FiringConfig(
            snooze_minutes=max(1, parse_int(source.get("SOMNUS_SNOOZE_MINUTES"), DEFAULT_SNOOZE_MINUTES)),
            reannounce_seconds=max(
                1.0, parse_float(source.get("SOMNUS_REANNOUNCE_SECONDS"), DEFAULT_REANNOUNCE_SECONDS)
            ),
            max_attempts=max(
                1, parse_int(source.get("SOMNUS_REANNOUNCE_MAX_ATTEMPTS"), DEFAULT_REANNOUNCE_MAX_ATTEMPTS)
            ),
            quiz_enabled=parse_bool(source.get("SOMNUS_QUIZ_ENABLED"), False),
            quiz_questions=clamp(
                parse_int(source.get("SOMNUS_QUIZ_QUESTIONS"), DEFAULT_QUIZ_QUESTIONS), 1, MAX_QUIZ_QUESTIONS
            ),
        )

        topic_base = source.get("SOMNUS_TOPIC_BASE") or f"somnus/{hostname}"
        mqtt = MqttConfig(
            host=_strip_or_none(source.get("MQTT_HOST")),
            port=parse_int(source.get("MQTT_PORT"), 1883),
            username=_strip_or_none(source.get("MQTT_USER") or source.get("MQTT_USERNAME")),
            password=_strip_or_none(source.get("MQTT_PASS") or source.get("MQTT_PASSWORD")),
            tls_enabled=parse_bool(source.get("MQTT_TLS_ENABLED"), False),
            cert=_strip_or_none(source.get("MQTT_CERT")),
            key=_strip_or_none(source.get("MQTT_KEY")),
            ca_cert=_strip_or_none(source.get("MQTT_CA_CERT")),
            topic_base=topic_base.rstrip("/"),
        )

        ha_base_url = _strip_or_none(source.get("HOME_ASSISTANT_BASE_URL"))
        if ha_base_url:
            ha_base_url = ha_base_url.rstrip("/")
        home_assistant = HomeAssistantConfig(
            base_url=ha_base_url,
            token=_strip_or_none(source.get("HOME_ASSISTANT_TOKEN") or source.get("HOME_ASSISTANT_LONG_LIVED_TOKEN")),
            verify_ssl=parse_bool(source.get("HOME_ASSISTANT_VERIFY_SSL"), True),
            notify_service=_normalize_notify_service(source.get("HOME_ASSISTANT_NOTIFY_SERVICE")),
        )

        return SomnusConfig(
            hostname=hostname,
            device_name=device_name,
            storage_path=storage_path,
            timezone=resolve_timezone(source.get("SOMNUS_TIMEZONE")),
            firing=firing,
            mqtt=mqtt,
            home_assistant=home_assistant,
        )


def _normalize_notify_service(value: str | None) -> str | None:
    """Accept both `mobile_app_phone` and `notify.mobile_app_phone`."""
    service = _strip_or_none(value)
    if not service:
        return None
    if service.startswith("notify."):
        service = service[len("notify.") :]
    return service or None
