"""Tests for the in-process notification sink."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from somnus.alarms.notification_sink import LocalNotificationSink, SchedulingError

pytestmark = pytest.mark.anyio


async def test_due_trigger_is_delivered(clock):
    sink = LocalNotificationSink(clock=clock)
    delivered: list[str] = []
    done = asyncio.Event()

    async def _handler(trigger_id: str) -> None:
        delivered.append(trigger_id)
        done.set()

    sink.set_delivery_handler(_handler)
    sink.schedule("a1", clock() - timedelta(seconds=1))
    await asyncio.wait_for(done.wait(), timeout=1.0)
    assert delivered == ["a1"]
    await asyncio.sleep(0)
    assert sink.pending_ids() == set()


async def test_future_trigger_waits_and_can_be_cancelled(clock):
    sink = LocalNotificationSink(clock=clock)
    delivered: list[str] = []

    async def _handler(trigger_id: str) -> None:
        delivered.append(trigger_id)

    sink.set_delivery_handler(_handler)
    sink.schedule("a1", clock() + timedelta(hours=1))
    await asyncio.sleep(0.01)
    assert sink.pending_ids() == {"a1"}
    sink.cancel("a1")
    await asyncio.sleep(0.01)
    assert delivered == []
    assert sink.pending_ids() == set()


async def test_rescheduling_same_id_replaces_task(clock):
    sink = LocalNotificationSink(clock=clock)
    delivered: list[str] = []
    done = asyncio.Event()

    async def _handler(trigger_id: str) -> None:
        delivered.append(trigger_id)
        done.set()

    sink.set_delivery_handler(_handler)
    sink.schedule("a1", clock() + timedelta(hours=1))
    sink.schedule("a1", clock() - timedelta(seconds=1))
    await asyncio.wait_for(done.wait(), timeout=1.0)
    await asyncio.sleep(0.01)
    assert delivered == ["a1"]


async def test_handler_can_rearm_same_id(clock):
    sink = LocalNotificationSink(clock=clock)
    calls: list[str] = []

    async def _handler(trigger_id: str) -> None:
        calls.append(trigger_id)
        sink.schedule(trigger_id, clock() + timedelta(days=1))

    sink.set_delivery_handler(_handler)
    sink.schedule("a1", clock())
    await asyncio.sleep(0.05)
    assert calls == ["a1"]
    assert sink.pending_ids() == {"a1"}
    sink.close()


async def test_handler_errors_are_logged(clock, mock_logger):
    sink = LocalNotificationSink(clock=clock, logger=mock_logger)

    async def _handler(trigger_id: str) -> None:
        raise RuntimeError("boom")

    sink.set_delivery_handler(_handler)
    sink.schedule("a1", clock())
    await asyncio.sleep(0.05)
    mock_logger.exception.assert_called_once()


async def test_closed_sink_refuses(clock):
    sink = LocalNotificationSink(clock=clock)
    sink.schedule("a1", clock() + timedelta(hours=1))
    sink.close()
    assert sink.pending_ids() == set()
    with pytest.raises(SchedulingError):
        sink.schedule("a2", clock())


async def test_reopened_sink_accepts_triggers(clock):
    sink = LocalNotificationSink(clock=clock)
    sink.close()
    sink.open()
    sink.schedule("a1", clock() + timedelta(hours=1))
    assert sink.pending_ids() == {"a1"}
    sink.close()


def test_schedule_without_loop_raises(clock):
    sink = LocalNotificationSink(clock=clock)
    with pytest.raises(SchedulingError):
        sink.schedule("a1", clock())
