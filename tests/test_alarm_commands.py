"""Tests for AlarmCommandProcessor."""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock, Mock, patch

import pytest

from somnus.alarms.commands import AlarmCommandProcessor
from somnus.alarms.events import FireEvent
from somnus.alarms.models import AlarmSpec

pytestmark = pytest.mark.anyio


@pytest.fixture
def mock_service():
    service = Mock()
    service.add_alarm = AsyncMock()
    service.update_alarm = AsyncMock()
    service.toggle_alarm = AsyncMock()
    service.set_enabled = AsyncMock()
    service.delete_alarm = AsyncMock()
    service.dismiss_alarm = AsyncMock(return_value=True)
    service.snooze_alarm = AsyncMock()
    service.answer_quiz = AsyncMock()
    service.next_alarm = Mock(return_value=None)
    service.firing_alarms = Mock(return_value=[])
    return service


@pytest.fixture
def mock_mqtt():
    return Mock()


@pytest.fixture
def processor(mock_service, mock_mqtt, mock_logger):
    return AlarmCommandProcessor(mock_service, mock_mqtt, "somnus/test", logger=mock_logger)


class TestTopics:
    def test_command_topic(self, processor):
        assert processor.command_topic == "somnus/test/alarms/command"

    def test_state_published_retained(self, processor, mock_mqtt):
        processor.handle_state_changed({"alarms": []})
        mock_mqtt.publish.assert_called_once_with("somnus/test/alarms/state", '{"alarms": []}', retain=True)

    def test_fire_event_publishes_event_and_active(self, processor, mock_mqtt, mock_service):
        mock_service.firing_alarms.return_value = [{"alarm": {"id": "a1"}, "state": "firing"}]
        event = FireEvent(kind="ringing", alarm_id="a1", alarm={"id": "a1"}, at=datetime(2024, 1, 1, 7, tzinfo=UTC))
        processor.handle_fire_event(event)
        first, second = mock_mqtt.publish.call_args_list
        assert first.args[0] == "somnus/test/alarms/events"
        assert json.loads(first.args[1])["kind"] == "ringing"
        assert second.args[0] == "somnus/test/alarms/active"
        assert json.loads(second.args[1])["state"] == "ringing"
        assert second.kwargs["retain"] is True

    def test_idle_when_nothing_firing(self, processor, mock_mqtt):
        event = FireEvent(kind="dismissed", alarm_id="a1", alarm={}, at=datetime(2024, 1, 1, 7, tzinfo=UTC))
        processor.handle_fire_event(event)
        assert json.loads(mock_mqtt.publish.call_args_list[-1].args[1]) == {"state": "idle"}


class TestMessageHandling:
    def test_without_loop_is_ignored(self, processor):
        with patch("asyncio.run_coroutine_threadsafe") as mock_run:
            processor.handle_command_message('{"action": "next_alarm"}')
        mock_run.assert_not_called()

    def test_malformed_json_is_ignored(self, processor):
        processor.set_event_loop(Mock())
        with patch("asyncio.run_coroutine_threadsafe") as mock_run:
            processor.handle_command_message("{nope")
        mock_run.assert_not_called()

    async def test_hands_off_to_loop(self, processor, mock_service):
        processor.set_event_loop(asyncio.get_running_loop())
        processor.handle_command_message(json.dumps({"action": "toggle_alarm", "alarm_id": "a1"}))
        for _ in range(5):
            await asyncio.sleep(0)
        mock_service.toggle_alarm.assert_awaited_once_with("a1")


class TestDispatch:
    async def test_add_alarm_validates(self, processor, mock_service):
        await processor._process_command({"action": "add_alarm", "time": "6:30 am", "days": "weekdays"})
        mock_service.add_alarm.assert_awaited_once_with(
            AlarmSpec(time_of_day="06:30", label="", repeat_days=(1, 2, 3, 4, 5), enabled=True)
        )

    async def test_invalid_input_never_reaches_service(self, processor, mock_service, mock_logger):
        await processor._process_command({"action": "create_alarm", "time": "26:00"})
        mock_service.add_alarm.assert_not_awaited()
        mock_logger.warning.assert_called_once()

    async def test_missing_alarm_id_rejected(self, processor, mock_service, mock_logger):
        await processor._process_command({"action": "delete_alarm"})
        mock_service.delete_alarm.assert_not_awaited()
        mock_logger.warning.assert_called_once()

    async def test_update_alarm(self, processor, mock_service):
        await processor._process_command(
            {"action": "update_alarm", "alarm_id": "a1", "time": "08:00", "days": [1, 3], "label": "Work"}
        )
        mock_service.update_alarm.assert_awaited_once_with(
            "a1", time_of_day="08:00", repeat_days=[1, 3], label="Work"
        )

    async def test_update_alarm_partial(self, processor, mock_service):
        await processor._process_command({"action": "update_alarm", "id": "a1", "label": "Nap"})
        mock_service.update_alarm.assert_awaited_once_with("a1", time_of_day=None, repeat_days=None, label="Nap")

    @pytest.mark.parametrize(
        ("action", "method", "args"),
        [
            ("toggle_alarm", "toggle_alarm", ("a1",)),
            ("enable_alarm", "set_enabled", ("a1", True)),
            ("disable_alarm", "set_enabled", ("a1", False)),
            ("delete_alarm", "delete_alarm", ("a1",)),
            ("dismiss", "dismiss_alarm", ("a1",)),
            ("stop", "dismiss_alarm", ("a1",)),
        ],
    )
    async def test_simple_actions(self, processor, mock_service, action, method, args):
        await processor._process_command({"action": action.upper(), "alarm_id": "a1"})
        getattr(mock_service, method).assert_awaited_once_with(*args)

    async def test_snooze_minutes(self, processor, mock_service):
        await processor._process_command({"action": "snooze", "alarm_id": "a1", "minutes": "10"})
        mock_service.snooze_alarm.assert_awaited_once_with("a1", minutes=10)

    async def test_snooze_default_minutes(self, processor, mock_service):
        await processor._process_command({"action": "snooze", "alarm_id": "a1", "minutes": "soon"})
        mock_service.snooze_alarm.assert_awaited_once_with("a1", minutes=None)

    async def test_answer_quiz(self, processor, mock_service):
        await processor._process_command({"action": "answer_quiz", "alarm_id": "a1", "option": "17"})
        mock_service.answer_quiz.assert_awaited_once_with("a1", 17)

    async def test_answer_quiz_rejects_non_numbers(self, processor, mock_service):
        await processor._process_command({"action": "answer_quiz", "alarm_id": "a1", "option": True})
        await processor._process_command({"action": "answer_quiz", "alarm_id": "a1", "option": "x"})
        mock_service.answer_quiz.assert_not_awaited()

    async def test_next_alarm_publishes(self, processor, mock_service, mock_mqtt):
        mock_service.next_alarm.return_value = {"alarm": {"id": "a1"}}
        await processor._process_command({"action": "next_alarm"})
        mock_mqtt.publish.assert_called_once_with(
            "somnus/test/alarms/next", json.dumps({"next_alarm": {"alarm": {"id": "a1"}}})
        )

    async def test_service_failures_are_logged(self, processor, mock_service, mock_logger):
        mock_service.delete_alarm.side_effect = RuntimeError("boom")
        await processor._process_command({"action": "delete_alarm", "alarm_id": "a1"})
        mock_logger.exception.assert_called_once()

    async def test_non_dict_and_missing_action_ignored(self, processor, mock_service):
        await processor._process_command(["add_alarm"])
        await processor._process_command({"time": "07:00"})
        mock_service.add_alarm.assert_not_awaited()
