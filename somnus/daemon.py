"""Somnus alarm daemon."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
from typing import Any

from somnus.alarms.announcers import Announcer, HomeAssistantAnnouncer
from somnus.alarms.commands import AlarmCommandProcessor
from somnus.alarms.config import SomnusConfig
from somnus.alarms.home_assistant import (
    HomeAssistantAuthError,
    HomeAssistantClient,
    HomeAssistantError,
    verify_home_assistant_access,
)
from somnus.alarms.mqtt import AlarmMqtt
from somnus.alarms.service import AlarmService

LOGGER = logging.getLogger("somnus.daemon")


class SomnusDaemon:
    def __init__(self, config: SomnusConfig) -> None:
        self.config = config
        self.home_assistant: HomeAssistantClient | None = None
        announcers: list[Announcer] = []
        ha_config = config.home_assistant
        if ha_config.base_url and ha_config.token:
            self.home_assistant = HomeAssistantClient(ha_config)
            if ha_config.notify_service:
                announcers.append(HomeAssistantAnnouncer(self.home_assistant, ha_config.notify_service))
            else:
                LOGGER.info("HOME_ASSISTANT_NOTIFY_SERVICE not set; alarm notifications disabled")
        self.mqtt = AlarmMqtt(config.mqtt, config.hostname)
        self.service = AlarmService.from_config(
            config,
            announcers=announcers,
            on_state_changed=self._publish_state,
        )
        self.commands = AlarmCommandProcessor(self.service, self.mqtt, config.mqtt.topic_base)
        self.service.subscribe(self.commands.handle_fire_event)

    async def run(self) -> None:
        self.commands.set_event_loop(asyncio.get_running_loop())
        await self._check_home_assistant()
        self.mqtt.connect()
        self._subscribe_command_topic()
        await self.service.start()
        LOGGER.info(
            "Somnus ready on %s (%d alarms, store %s)",
            self.config.device_name,
            len(self.service.list_alarms()),
            self.config.storage_path,
        )

    async def shutdown(self) -> None:
        await self.service.stop()
        self.mqtt.disconnect()
        if self.home_assistant:
            await self.home_assistant.close()

    def _subscribe_command_topic(self) -> None:
        try:
            self.mqtt.subscribe(self.commands.command_topic, self.commands.handle_command_message)
        except RuntimeError:
            LOGGER.debug("MQTT client not ready for alarm command subscription")

    def _publish_state(self, snapshot: dict[str, Any]) -> None:
        self.commands.handle_state_changed(snapshot)

    async def _check_home_assistant(self) -> None:
        if not self.home_assistant:
            return
        try:
            info = await verify_home_assistant_access(self.config.home_assistant)
        except HomeAssistantAuthError:
            LOGGER.error("Home Assistant rejected the configured token; notifications will fail")
        except HomeAssistantError as exc:
            LOGGER.warning("Home Assistant is unreachable: %s", exc)
        else:
            LOGGER.info("Connected to Home Assistant %s", info.get("version", "unknown") if isinstance(info, dict) else "")


async def main() -> None:
    parser = argparse.ArgumentParser(description="Somnus alarm daemon")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    config = SomnusConfig.from_env()
    daemon = SomnusDaemon(config)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _handle_signal(signum: int) -> None:
        LOGGER.info("Received signal %s, shutting down", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    await daemon.run()
    await stop_event.wait()
    await daemon.shutdown()


def run() -> None:
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())
