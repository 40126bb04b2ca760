"""Notification sinks: where armed triggers live until they are due.

A sink stores scheduled triggers keyed by id and calls the delivery handler
once per `schedule()` call when the trigger's time has passed. The `repeats`
flag is advisory; repeating alarms are re-armed by the scheduler after every
delivery.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from functools import partial
from typing import Protocol

from somnus.datetime_utils import local_now

DeliveryHandler = Callable[[str], Awaitable[None]]
Clock = Callable[[], datetime]

LOGGER = logging.getLogger(__name__)

# Long sleeps are split so wall-clock jumps (suspend, NTP) are noticed.
MAX_SLEEP_SECONDS = 30.0


class SchedulingError(RuntimeError):
    """The sink refused to register a trigger."""


class NotificationSink(Protocol):
    def set_delivery_handler(self, handler: DeliveryHandler) -> None: ...

    def schedule(self, trigger_id: str, fire_at: datetime, repeats: bool = False) -> None: ...

    def cancel(self, trigger_id: str) -> None: ...

    def open(self) -> None: ...

    def close(self) -> None: ...


class LocalNotificationSink:
    """In-process sink that arms one asyncio task per trigger."""

    def __init__(self, *, clock: Clock | None = None, logger: logging.Logger | None = None) -> None:
        self._clock = clock or local_now
        self._logger = logger or LOGGER
        self._handler: DeliveryHandler | None = None
        self._tasks: dict[str, asyncio.Task] = {}
        self._closed = False

    def set_delivery_handler(self, handler: DeliveryHandler) -> None:
        self._handler = handler

    def schedule(self, trigger_id: str, fire_at: datetime, repeats: bool = False) -> None:
        if self._closed:
            raise SchedulingError("Notification sink is closed")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as exc:
            raise SchedulingError("No running event loop to arm trigger on") from exc
        self.cancel(trigger_id)
        task = loop.create_task(self._wait_and_deliver(trigger_id, fire_at), name=f"alarm-trigger-{trigger_id}")
        self._tasks[trigger_id] = task
        task.add_done_callback(partial(self._forget, trigger_id))
        self._logger.debug("Armed trigger %s for %s (repeats=%s)", trigger_id, fire_at.isoformat(), repeats)

    def cancel(self, trigger_id: str) -> None:
        task = self._tasks.pop(trigger_id, None)
        if task:
            task.cancel()

    def pending_ids(self) -> set[str]:
        return set(self._tasks)

    def open(self) -> None:
        """Accept triggers again after `close()`."""
        self._closed = False

    def close(self) -> None:
        self._closed = True
        for task in self._tasks.values():
            task.cancel()
        self._tasks.clear()

    def _forget(self, trigger_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(trigger_id) is task:
            self._tasks.pop(trigger_id, None)

    async def _wait_and_deliver(self, trigger_id: str, fire_at: datetime) -> None:
        while True:
            delay = (fire_at - self._clock()).total_seconds()
            if delay <= 0:
                break
            await asyncio.sleep(min(delay, MAX_SLEEP_SECONDS))
        # Detach first: the handler may re-arm this same id.
        if self._tasks.get(trigger_id) is asyncio.current_task():
            self._tasks.pop(trigger_id, None)
        handler = self._handler
        if handler is None:
            self._logger.warning("Trigger %s fired but no delivery handler is registered", trigger_id)
            return
        try:
            await handler(trigger_id)
        except Exception:
            self._logger.exception("Delivery handler failed for trigger %s", trigger_id)
