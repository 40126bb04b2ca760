"""Tests for the firing session state machine."""

from __future__ import annotations

import random
from datetime import UTC, datetime

import pytest

from somnus.alarms.firing import FiringSession, FiringState, InvalidTransition, ReannouncePolicy
from somnus.alarms.models import Alarm, ScheduledTrigger
from somnus.alarms.quiz import MathQuiz

NOW = datetime(2024, 1, 1, 7, 0, tzinfo=UTC)


def _session(quiz: MathQuiz | None = None) -> FiringSession:
    alarm = Alarm(alarm_id="a1", time_of_day="07:00")
    return FiringSession(alarm=alarm, trigger=ScheduledTrigger("a1", NOW), started_at=NOW, quiz=quiz)


def test_policy_validation():
    with pytest.raises(ValueError):
        ReannouncePolicy(interval_seconds=0)
    with pytest.raises(ValueError):
        ReannouncePolicy(max_attempts=0)
    policy = ReannouncePolicy(interval_seconds=1, max_attempts=3)
    assert policy.has_attempts_left(2)
    assert not policy.has_attempts_left(3)


def test_idle_to_firing_to_dismissed():
    session = _session()
    assert session.state is FiringState.IDLE
    assert not session.can_dismiss
    session.transition(FiringState.FIRING)
    assert session.is_active
    assert session.can_dismiss
    session.transition(FiringState.DISMISSED)
    assert not session.is_active


@pytest.mark.parametrize(
    ("path", "target"),
    [
        ([], FiringState.DISMISSED),
        ([], FiringState.SNOOZED),
        ([FiringState.FIRING, FiringState.SNOOZED], FiringState.FIRING),
        ([FiringState.FIRING, FiringState.DISMISSED], FiringState.SNOOZED),
    ],
)
def test_invalid_transitions(path, target):
    session = _session()
    for state in path:
        session.transition(state)
    with pytest.raises(InvalidTransition):
        session.transition(target)


def test_quiz_blocks_dismissal_until_solved():
    quiz = MathQuiz.generate(1, rng=random.Random(2))
    session = _session(quiz)
    session.transition(FiringState.FIRING)
    assert not session.can_dismiss
    quiz.answer(quiz.current.answer)
    assert session.can_dismiss


def test_attempts_and_public_dict():
    session = _session()
    session.transition(FiringState.FIRING)
    assert session.record_attempt() == 1
    assert session.record_attempt() == 2
    data = session.to_public_dict()
    assert data["state"] == "firing"
    assert data["attempts"] == 2
    assert data["quiz"] is None
    assert data["alarm"]["id"] == "a1"
    session.cancel_reannounce()
