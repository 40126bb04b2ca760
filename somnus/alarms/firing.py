"""Firing/dismissal state machine and the bounded re-announcement policy."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from somnus.datetime_utils import serialize_dt

from .models import Alarm, ScheduledTrigger
from .quiz import MathQuiz


class FiringState(str, Enum):
    IDLE = "idle"
    FIRING = "firing"
    DISMISSED = "dismissed"
    SNOOZED = "snoozed"


_TRANSITIONS: dict[FiringState, set[FiringState]] = {
    FiringState.IDLE: {FiringState.FIRING},
    FiringState.FIRING: {FiringState.DISMISSED, FiringState.SNOOZED, FiringState.IDLE},
    FiringState.DISMISSED: set(),
    FiringState.SNOOZED: set(),
}


class InvalidTransition(RuntimeError):
    """A firing session was asked to move to a state it cannot reach."""


@dataclass(frozen=True)
class ReannouncePolicy:
    """Fixed-interval re-announcement with a cap on total announcements."""

    interval_seconds: float = 10.0
    max_attempts: int = 30

    def __post_init__(self) -> None:
        if self.interval_seconds <= 0:
            raise ValueError("Re-announce interval must be positive")
        if self.max_attempts < 1:
            raise ValueError("Re-announce attempts must be at least 1")

    def has_attempts_left(self, attempts_made: int) -> bool:
        return attempts_made < self.max_attempts


@dataclass
class FiringSession:
    alarm: Alarm
    trigger: ScheduledTrigger
    started_at: datetime
    quiz: MathQuiz | None = None
    state: FiringState = FiringState.IDLE
    attempts: int = 0
    exhausted: bool = False
    task: asyncio.Task | None = field(default=None, repr=False)

    @property
    def alarm_id(self) -> str:
        return self.alarm.alarm_id

    @property
    def is_active(self) -> bool:
        return self.state is FiringState.FIRING

    @property
    def can_dismiss(self) -> bool:
        return self.is_active and (self.quiz is None or self.quiz.solved)

    def transition(self, target: FiringState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"Cannot move alarm {self.alarm_id} from {self.state.value} to {target.value}")
        self.state = target

    def record_attempt(self) -> int:
        self.attempts += 1
        return self.attempts

    def cancel_reannounce(self) -> None:
        task = self.task
        self.task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "alarm": self.alarm.to_public_dict(),
            "trigger": self.trigger.to_public_dict(),
            "state": self.state.value,
            "started_at": serialize_dt(self.started_at),
            "attempts": self.attempts,
            "exhausted": self.exhausted,
            "quiz": self.quiz.to_public_dict() if self.quiz else None,
        }
