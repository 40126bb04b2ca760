"""MQTT link used by the alarm command bridge.

Subscriptions are remembered and replayed from the connect callback: the
client runs with a clean session and paho reconnects on its own, so the
broker forgets them on every reconnect.
"""

from __future__ import annotations

import logging
import ssl
import threading
from collections.abc import Callable
from typing import Any

import paho.mqtt.client as mqtt

from somnus.utils import sanitize_hostname_for_client_id

from .config import MqttConfig

PayloadHandler = Callable[[str], None]

KEEPALIVE_SECONDS = 30
RECONNECT_MIN_DELAY = 1
RECONNECT_MAX_DELAY = 60


class AlarmMqtt:
    def __init__(self, config: MqttConfig, hostname: str, logger: logging.Logger | None = None) -> None:
        self.config = config
        self.client_id = f"somnus-{sanitize_hostname_for_client_id(hostname)}"
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._lock = threading.Lock()
        self._topics: dict[str, PayloadHandler] = {}

    @property
    def subscribed_topics(self) -> list[str]:
        with self._lock:
            return list(self._topics)

    def connect(self) -> None:
        """Open the broker connection and start paho's network thread.

        A missing host leaves remote control disabled. Connection errors are
        logged and leave the helper disconnected.
        """
        if not self.config.host:
            self._logger.debug("[mqtt] MQTT host not configured; remote alarm control disabled")
            return
        with self._lock:
            if self._client is not None:
                return
            client = self._build_client()
            try:
                client.connect(self.config.host, self.config.port, keepalive=KEEPALIVE_SECONDS)
            except (OSError, ValueError) as exc:
                self._logger.warning(
                    "[mqtt] Could not reach broker %s:%s: %s", self.config.host, self.config.port, exc
                )
                return
            client.loop_start()
            self._client = client
        self._logger.info("[mqtt] Connecting to %s:%s as %s", self.config.host, self.config.port, self.client_id)

    def _build_client(self) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=True,
        )
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.reconnect_delay_set(min_delay=RECONNECT_MIN_DELAY, max_delay=RECONNECT_MAX_DELAY)
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

    def disconnect(self) -> None:
        with self._lock:
            client = self._client
            self._client = None
            self._topics.clear()
        if client:
            client.loop_stop()
            client.disconnect()

    def is_connected(self) -> bool:
        client = self._client
        return bool(client and client.is_connected())

    def publish(self, topic: str, payload: str, retain: bool = False, qos: int = 0) -> None:
        client = self._client
        if not client:
            return
        try:
            client.publish(topic, payload=payload, qos=qos, retain=retain)
        except (OSError, ValueError, RuntimeError) as exc:
            self._logger.debug("[mqtt] Failed to publish to %s: %s", topic, exc)

    def subscribe(self, topic: str, on_message: PayloadHandler) -> None:
        """Route `topic` to `on_message` now and after every reconnect.

        Raises RuntimeError when `connect()` has not produced a client. The
        SUBSCRIBE itself is deferred to the connect callback until the broker
        has acknowledged the connection.
        """
        client = self._client
        if not client:
            raise RuntimeError("MQTT client is not connected")
        client.message_callback_add(topic, self._dispatcher(topic, on_message))
        with self._lock:
            self._topics[topic] = on_message
        if client.is_connected():
            self._send_subscribe(client, topic)
        else:
            self._logger.debug("[mqtt] Subscription to %s queued until the broker accepts the connection", topic)

    def _dispatcher(self, topic: str, on_message: PayloadHandler) -> Callable[[Any, Any, mqtt.MQTTMessage], None]:
        def _callback(_client: Any, _userdata: Any, message: mqtt.MQTTMessage) -> None:
            try:
                on_message(message.payload.decode("utf-8", errors="ignore"))
            except Exception as exc:
                self._logger.error("[mqtt] Handler for topic '%s' failed: %s", topic, exc, exc_info=True)

        return _callback

    def _send_subscribe(self, client: mqtt.Client, topic: str) -> None:
        result, _mid = client.subscribe(topic)
        if result != mqtt.MQTT_ERR_SUCCESS:
            self._logger.warning("[mqtt] Failed to subscribe to topic: %s (rc=%s)", topic, result)

    def _on_connect(
        self, client: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any
    ) -> None:
        if reason_code.is_failure:
            self._logger.warning("[mqtt] Broker refused connection: %s", reason_code)
            return
        topics = self.subscribed_topics
        for topic in topics:
            self._send_subscribe(client, topic)
        self._logger.info(
            "[mqtt] Connected to %s:%s (%d topic(s) subscribed)", self.config.host, self.config.port, len(topics)
        )

    def _on_disconnect(
        self, _client: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any
    ) -> None:
        if reason_code.is_failure:
            self._logger.warning("[mqtt] Lost broker connection (%s); reconnecting", reason_code)
        else:
            self._logger.debug("[mqtt] Disconnected from broker")
