"""Fire-event channel that user interfaces subscribe to."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from somnus.datetime_utils import serialize_dt

FireEventKind = Literal["ringing", "reannounced", "exhausted", "dismissed", "snoozed", "cancelled"]
EventCallback = Callable[["FireEvent"], None]

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class FireEvent:
    kind: FireEventKind
    alarm_id: str
    alarm: dict[str, Any]
    at: datetime
    attempt: int = 0
    detail: dict[str, Any] | None = None

    def to_public_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind,
            "alarm_id": self.alarm_id,
            "alarm": self.alarm,
            "at": serialize_dt(self.at),
            "attempt": self.attempt,
        }
        if self.detail:
            data.update(self.detail)
        return data


class EventChannel:
    """Synchronous observer list plus queue-backed async streams."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOGGER
        self._subscribers: list[EventCallback] = []

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: FireEvent) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                self._logger.error("Fire event subscriber failed for %s", event.kind, exc_info=True)

    def stream(self) -> EventStream:
        return EventStream(self)


class EventStream:
    """Async iterator over fire events.

    Events are queued from the moment the stream is created, not from the
    first `__anext__`. Use it as an async context manager, or call `close()`,
    to stop receiving.
    """

    def __init__(self, channel: EventChannel) -> None:
        self._queue: asyncio.Queue[FireEvent] = asyncio.Queue()
        self._unsubscribe: Callable[[], None] | None = channel.subscribe(self._queue.put_nowait)

    @property
    def closed(self) -> bool:
        return self._unsubscribe is None

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def __aiter__(self) -> EventStream:
        return self

    async def __anext__(self) -> FireEvent:
        if self._unsubscribe is None and self._queue.empty():
            raise StopAsyncIteration
        return await self._queue.get()

    async def __aenter__(self) -> EventStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()
