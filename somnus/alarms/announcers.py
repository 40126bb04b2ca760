"""Announcers put a ringing alarm in front of the sleeper.

Each (re-)announcement of a firing alarm goes to every configured announcer.
Announcers are best-effort: a failure is logged and never stops the alarm.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Protocol

from .home_assistant import HomeAssistantClient, HomeAssistantError
from .models import Alarm

LOGGER = logging.getLogger(__name__)

ALARM_TITLE = "Wake Up!"
DEFAULT_ALARM_MESSAGE = "Time to wake up!"
SHUTDOWN_WARNING_TITLE = "Warning: Alarms Will Not Work"
SHUTDOWN_WARNING_MESSAGE = (
    "The alarm service has stopped. Your alarms will not sound until it is started again."
)


def alarm_message(alarm: Alarm) -> str:
    return alarm.label or DEFAULT_ALARM_MESSAGE


class Announcer(Protocol):
    async def announce(self, alarm: Alarm, attempt: int) -> None: ...

    async def withdraw(self, alarm: Alarm) -> None: ...

    async def warn(self, title: str, message: str) -> None: ...


class HomeAssistantAnnouncer:
    """Push alarm notifications through a Home Assistant notify service."""

    def __init__(
        self,
        client: HomeAssistantClient,
        notify_service: str,
        logger: logging.Logger | None = None,
    ) -> None:
        self._client = client
        self._service = notify_service
        self._logger = logger or LOGGER

    async def announce(self, alarm: Alarm, attempt: int) -> None:
        data: dict[str, Any] = {
            # Same tag on every attempt replaces the previous notification.
            "tag": alarm.alarm_id,
            "push": {"interruption-level": "critical", "sound": {"name": "default", "critical": 1, "volume": 1.0}},
            "ttl": 0,
            "priority": "high",
        }
        await self._send(
            message=alarm_message(alarm),
            title=ALARM_TITLE,
            data=data,
            context=f"announce alarm {alarm.alarm_id} (attempt {attempt})",
        )

    async def withdraw(self, alarm: Alarm) -> None:
        await self._send(
            message="clear_notification",
            data={"tag": alarm.alarm_id},
            context=f"clear alarm {alarm.alarm_id}",
        )

    async def warn(self, title: str, message: str) -> None:
        await self._send(message=message, title=title, context="send warning")

    async def _send(
        self,
        *,
        message: str,
        context: str,
        title: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        try:
            await self._client.send_notification(self._service, message=message, title=title, data=data)
        except HomeAssistantError as exc:
            self._logger.warning("Home Assistant failed to %s: %s", context, exc)


async def announce_all(announcers: Sequence[Announcer], alarm: Alarm, attempt: int) -> None:
    for announcer in announcers:
        try:
            await announcer.announce(alarm, attempt)
        except Exception:
            LOGGER.warning("Announcer %s failed for alarm %s", type(announcer).__name__, alarm.alarm_id, exc_info=True)


async def withdraw_all(announcers: Sequence[Announcer], alarm: Alarm) -> None:
    for announcer in announcers:
        try:
            await announcer.withdraw(alarm)
        except Exception:
            LOGGER.warning("Announcer %s failed to withdraw alarm %s", type(announcer).__name__, alarm.alarm_id, exc_info=True)


async def warn_all(announcers: Sequence[Announcer], title: str, message: str) -> None:
    for announcer in announcers:
        try:
            await announcer.warn(title, message)
        except Exception:
            LOGGER.warning("Announcer %s failed to send warning", type(announcer).__name__, exc_info=True)
