"""Alarm command processor for MQTT commands.

Parses JSON commands from `{base}/alarms/command`, routes them to the
AlarmService and mirrors service state and fire events back onto MQTT.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

from .events import FireEvent
from .models import InvalidAlarmInput, parse_alarm_spec

if TYPE_CHECKING:
    from .mqtt import AlarmMqtt
    from .service import AlarmService

LOGGER = logging.getLogger(__name__)


class AlarmCommandProcessor:
    """Processes MQTT alarm commands and routes them to AlarmService.

    Supported command actions:
    - CRUD: add_alarm/create_alarm, update_alarm, toggle_alarm, enable_alarm,
      disable_alarm, delete_alarm
    - Firing: dismiss/stop, snooze, answer_quiz
    - Queries: next_alarm
    """

    def __init__(
        self,
        service: AlarmService,
        mqtt: AlarmMqtt,
        base_topic: str,
        logger: logging.Logger | None = None,
    ) -> None:
        self.service = service
        self.mqtt = mqtt
        self.logger = logger or LOGGER

        self._command_topic = f"{base_topic}/alarms/command"
        self._state_topic = f"{base_topic}/alarms/state"
        self._events_topic = f"{base_topic}/alarms/events"
        self._active_topic = f"{base_topic}/alarms/active"
        self._next_alarm_topic = f"{base_topic}/alarms/next"

        self._loop: asyncio.AbstractEventLoop | None = None

    def set_event_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Set the event loop for async command processing."""
        self._loop = loop

    @property
    def command_topic(self) -> str:
        """MQTT topic for alarm commands."""
        return self._command_topic

    # ------------------------------------------------------------------
    # MQTT message handler
    # ------------------------------------------------------------------

    def handle_command_message(self, payload: str) -> None:
        """MQTT callback: parse JSON and hand the command to the event loop."""
        if not self._loop:
            return
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            self.logger.debug("[alarm_commands] Ignoring malformed command: %s", payload)
            return
        asyncio.run_coroutine_threadsafe(self._process_command(data), self._loop)

    # ------------------------------------------------------------------
    # Service callbacks
    # ------------------------------------------------------------------

    def handle_state_changed(self, snapshot: dict[str, Any]) -> None:
        self.mqtt.publish(self._state_topic, json.dumps(snapshot), retain=True)

    def handle_fire_event(self, event: FireEvent) -> None:
        self.mqtt.publish(self._events_topic, json.dumps(event.to_public_dict()))
        firing = self.service.firing_alarms()
        message: dict[str, Any] = {"state": "ringing", "alarms": firing} if firing else {"state": "idle"}
        self.mqtt.publish(self._active_topic, json.dumps(message), retain=True)

    # ------------------------------------------------------------------
    # Command processing
    # ------------------------------------------------------------------

    async def _process_command(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            return
        action = str(payload.get("action") or "").lower()
        if not action:
            return
        try:
            await self._dispatch_action(action, payload)
        except InvalidAlarmInput as exc:
            self.logger.warning("[alarm_commands] Rejected %s: %s", action, exc)
        except Exception:
            self.logger.exception("[alarm_commands] Command %s failed", action)

    async def _dispatch_action(self, action: str, payload: dict[str, Any]) -> None:
        if action in {"add_alarm", "create_alarm"}:
            await self.service.add_alarm(parse_alarm_spec(payload))
        elif action == "update_alarm":
            await self._update_alarm(payload)
        elif action == "toggle_alarm":
            await self.service.toggle_alarm(self._alarm_id(payload))
        elif action == "enable_alarm":
            await self.service.set_enabled(self._alarm_id(payload), True)
        elif action == "disable_alarm":
            await self.service.set_enabled(self._alarm_id(payload), False)
        elif action == "delete_alarm":
            await self.service.delete_alarm(self._alarm_id(payload))
        elif action in {"dismiss", "stop"}:
            alarm_id = self._alarm_id(payload)
            if not await self.service.dismiss_alarm(alarm_id):
                self.logger.info("[alarm_commands] Alarm %s was not dismissed", alarm_id)
        elif action == "snooze":
            await self.service.snooze_alarm(self._alarm_id(payload), minutes=self._minutes(payload))
        elif action == "answer_quiz":
            await self._answer_quiz(payload)
        elif action == "next_alarm":
            self.mqtt.publish(self._next_alarm_topic, json.dumps({"next_alarm": self.service.next_alarm()}))
        else:
            self.logger.debug("[alarm_commands] Unknown action: %s", action)

    async def _update_alarm(self, payload: dict[str, Any]) -> None:
        time_text = payload.get("time") or payload.get("time_of_day")
        if "days" in payload:
            days = payload.get("days")
        else:
            days = payload.get("repeat_days")
        label = payload.get("label")
        updated = await self.service.update_alarm(
            self._alarm_id(payload),
            time_of_day=str(time_text) if time_text else None,
            repeat_days=days,
            label=str(label) if label is not None else None,
        )
        if updated is None:
            self.logger.info("[alarm_commands] Unknown alarm %s", payload.get("alarm_id"))

    async def _answer_quiz(self, payload: dict[str, Any]) -> None:
        option = payload.get("option")
        if isinstance(option, bool) or not isinstance(option, (int, str)):
            raise InvalidAlarmInput("option must be a number")
        try:
            value = int(option)
        except ValueError as exc:
            raise InvalidAlarmInput("option must be a number") from exc
        await self.service.answer_quiz(self._alarm_id(payload), value)

    @staticmethod
    def _alarm_id(payload: dict[str, Any]) -> str:
        alarm_id = payload.get("alarm_id") or payload.get("id")
        if not alarm_id:
            raise InvalidAlarmInput("alarm_id is required")
        return str(alarm_id)

    @staticmethod
    def _minutes(payload: dict[str, Any]) -> int | None:
        if payload.get("minutes") is None:
            return None
        try:
            return max(1, int(payload["minutes"]))
        except (TypeError, ValueError):
            return None
