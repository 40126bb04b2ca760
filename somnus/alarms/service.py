"""Alarm service: the API user interfaces drive.

Owns the alarm store, the scheduler and every firing session. All state
changes, including notification sink deliveries, are serialized through a
single asyncio lock.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable, Sequence
from datetime import timedelta
from functools import partial
from typing import Any

from somnus.datetime_utils import local_now, serialize_dt

from .announcers import (
    SHUTDOWN_WARNING_MESSAGE,
    SHUTDOWN_WARNING_TITLE,
    Announcer,
    announce_all,
    warn_all,
    withdraw_all,
)
from .config import SomnusConfig
from .events import EventCallback, EventChannel, EventStream, FireEvent, FireEventKind
from .firing import FiringSession, FiringState, ReannouncePolicy
from .models import (
    Alarm,
    AlarmSpec,
    ScheduledTrigger,
    normalize_repeat_days,
    validate_label,
    validate_time_of_day,
)
from .notification_sink import Clock, LocalNotificationSink, NotificationSink
from .quiz import MathQuiz
from .scheduler import AlarmScheduler
from .store import AlarmStore, JsonFileBackend

StateCallback = Callable[[dict[str, Any]], None]

LOGGER = logging.getLogger("somnus.alarm_service")


def _disable(alarm: Alarm) -> None:
    alarm.enabled = False


class AlarmService:
    """Manage alarms, their triggers and the Idle -> Firing -> Dismissed/Snoozed lifecycle."""

    def __init__(
        self,
        *,
        store: AlarmStore,
        sink: NotificationSink,
        scheduler: AlarmScheduler | None = None,
        policy: ReannouncePolicy | None = None,
        snooze_minutes: int = 5,
        quiz_enabled: bool = False,
        quiz_questions: int = 3,
        announcers: Sequence[Announcer] = (),
        on_state_changed: StateCallback | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._sink = sink
        self._clock = clock or local_now
        self._scheduler = scheduler or AlarmScheduler(sink, clock=self._clock)
        self._policy = policy or ReannouncePolicy()
        self._snooze_minutes = max(1, snooze_minutes)
        self._quiz_enabled = quiz_enabled
        self._quiz_questions = max(1, quiz_questions)
        self._announcers = list(announcers)
        self._state_cb = on_state_changed
        self._rng = rng or random.Random()
        self._events = EventChannel()
        self._sessions: dict[str, FiringSession] = {}
        self._lock = asyncio.Lock()
        self._started = False
        sink.set_delivery_handler(self._handle_delivery)

    @classmethod
    def from_config(
        cls,
        config: SomnusConfig,
        *,
        sink: NotificationSink | None = None,
        announcers: Sequence[Announcer] = (),
        on_state_changed: StateCallback | None = None,
    ) -> AlarmService:
        clock = partial(local_now, config.timezone)
        firing = config.firing
        return cls(
            store=AlarmStore(JsonFileBackend(config.storage_path)),
            sink=sink or LocalNotificationSink(clock=clock),
            policy=ReannouncePolicy(interval_seconds=firing.reannounce_seconds, max_attempts=firing.max_attempts),
            snooze_minutes=firing.snooze_minutes,
            quiz_enabled=firing.quiz_enabled,
            quiz_questions=firing.quiz_questions,
            announcers=announcers,
            on_state_changed=on_state_changed,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._started:
            return
        async with self._lock:
            self._sink.open()
            for alarm in self._store.load():
                if alarm.enabled:
                    self._scheduler.arm(alarm)
            self._started = True
        self._publish_state()

    async def stop(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            for session in sessions:
                session.cancel_reannounce()
            self._scheduler.disarm_all()
            self._sink.close()
            enabled_count = sum(1 for alarm in self._store.list() if alarm.enabled)
            self._started = False
        for session in sessions:
            await withdraw_all(self._announcers, session.alarm)
        if enabled_count:
            LOGGER.warning("Stopping with %d enabled alarms; they will not ring until restart", enabled_count)
            await warn_all(self._announcers, SHUTDOWN_WARNING_TITLE, SHUTDOWN_WARNING_MESSAGE)

    # ------------------------------------------------------------------
    # Alarm CRUD
    # ------------------------------------------------------------------

    def list_alarms(self) -> list[Alarm]:
        return self._store.list()

    def get_alarm(self, alarm_id: str) -> Alarm | None:
        return self._store.get(alarm_id)

    async def add_alarm(self, spec: AlarmSpec) -> Alarm:
        async with self._lock:
            alarm = self._store.add(spec.build(now=self._clock()))
            if alarm.enabled:
                self._scheduler.arm(alarm)
        LOGGER.info("Added alarm %s at %s (days=%s)", alarm.alarm_id, alarm.time_of_day, alarm.repeat_days)
        self._publish_state()
        return alarm

    async def update_alarm(
        self,
        alarm_id: str,
        *,
        time_of_day: str | None = None,
        repeat_days: Sequence[int] | str | None = None,
        label: str | None = None,
    ) -> Alarm | None:
        new_time = validate_time_of_day(time_of_day) if time_of_day is not None else None
        new_days = normalize_repeat_days(repeat_days) if repeat_days is not None else None
        new_label = validate_label(label) if label is not None else None

        def _apply(alarm: Alarm) -> None:
            if new_time is not None:
                alarm.time_of_day = new_time
            if new_days is not None:
                alarm.repeat_days = new_days
            if new_label is not None:
                alarm.label = new_label

        async with self._lock:
            updated = self._store.update(alarm_id, _apply)
            if updated is None:
                return None
            if updated.enabled:
                self._scheduler.arm(updated)
        self._publish_state()
        return updated

    async def toggle_alarm(self, alarm_id: str) -> Alarm | None:
        def _flip(alarm: Alarm) -> None:
            alarm.enabled = not alarm.enabled

        return await self._change_enabled(alarm_id, _flip)

    async def set_enabled(self, alarm_id: str, enabled: bool) -> Alarm | None:
        def _set(alarm: Alarm) -> None:
            alarm.enabled = enabled

        return await self._change_enabled(alarm_id, _set)

    async def delete_alarm(self, alarm_id: str) -> bool:
        async with self._lock:
            removed = self._store.remove(alarm_id)
            self._scheduler.disarm(alarm_id)
            ended = self._end_session_locked(alarm_id, FiringState.IDLE)
        if ended:
            await self._finish_session(ended, "cancelled", {"reason": "deleted"})
        if removed is None:
            return False
        LOGGER.info("Deleted alarm %s", alarm_id)
        self._publish_state()
        return True

    async def _change_enabled(self, alarm_id: str, mutator: Callable[[Alarm], None]) -> Alarm | None:
        ended: FiringSession | None = None
        async with self._lock:
            updated = self._store.update(alarm_id, mutator)
            if updated is None:
                return None
            if updated.enabled:
                self._scheduler.arm(updated)
            else:
                self._scheduler.disarm(alarm_id)
                ended = self._end_session_locked(alarm_id, FiringState.IDLE)
        if ended:
            await self._finish_session(ended, "cancelled", {"reason": "disabled"})
        LOGGER.info("Alarm %s %s", alarm_id, "enabled" if updated.enabled else "disabled")
        self._publish_state()
        return updated

    # ------------------------------------------------------------------
    # Firing, dismissal and snooze
    # ------------------------------------------------------------------

    async def dismiss_alarm(self, alarm_id: str) -> bool:
        async with self._lock:
            session = self._sessions.get(alarm_id)
            if session is None or not session.can_dismiss:
                return False
            self._end_session_locked(alarm_id, FiringState.DISMISSED)
            alarm = self._store.get(alarm_id)
            if alarm and alarm.enabled and alarm.is_repeating:
                self._scheduler.arm(alarm)
        LOGGER.info("Alarm %s dismissed after %d announcements", alarm_id, session.attempts)
        await self._finish_session(session, "dismissed")
        return True

    async def snooze_alarm(self, alarm_id: str, minutes: int | None = None) -> ScheduledTrigger | None:
        """Defer a ringing alarm. Returns the snooze trigger, or None if nothing was ringing or arming failed."""
        delay = max(1, int(minutes)) if minutes else self._snooze_minutes
        async with self._lock:
            session = self._sessions.get(alarm_id)
            if session is None or not session.is_active:
                return None
            self._end_session_locked(alarm_id, FiringState.SNOOZED)
            alarm = self._store.get(alarm_id) or session.alarm
            snooze_until = self._clock() + timedelta(minutes=delay)
            trigger = self._scheduler.arm_snooze(alarm, snooze_until)
        LOGGER.info("Alarm %s snoozed for %d minutes", alarm_id, delay)
        await self._finish_session(session, "snoozed", {"minutes": delay, "snooze_until": serialize_dt(snooze_until)})
        return trigger

    async def answer_quiz(self, alarm_id: str, option: int) -> bool:
        """Answer the current quiz question; the alarm is dismissed once the quiz is solved."""
        async with self._lock:
            session = self._sessions.get(alarm_id)
            if session is None or not session.is_active or session.quiz is None:
                return False
            correct = session.quiz.answer(option)
            solved = session.quiz.solved
        self._publish_state()
        if solved:
            await self.dismiss_alarm(alarm_id)
        return correct

    def quiz_for(self, alarm_id: str) -> dict[str, Any] | None:
        session = self._sessions.get(alarm_id)
        if session is None or session.quiz is None:
            return None
        return session.quiz.to_public_dict()

    def firing_state(self, alarm_id: str) -> FiringState:
        session = self._sessions.get(alarm_id)
        return session.state if session else FiringState.IDLE

    def firing_alarms(self) -> list[dict[str, Any]]:
        return [session.to_public_dict() for session in self._sessions.values()]

    def pending_triggers(self, alarm_id: str | None = None) -> list[ScheduledTrigger]:
        return self._scheduler.pending(alarm_id)

    def next_alarm(self) -> dict[str, Any] | None:
        trigger = self._scheduler.next_trigger()
        if trigger is None:
            return None
        alarm = self._store.get(trigger.alarm_id)
        if alarm is None:
            return None
        return {"alarm": alarm.to_public_dict(), "trigger": trigger.to_public_dict()}

    # ------------------------------------------------------------------
    # Fire events
    # ------------------------------------------------------------------

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        return self._events.subscribe(callback)

    def events(self) -> EventStream:
        """Stream of fire events published from this call on; close it when done."""
        return self._events.stream()

    def snapshot(self) -> dict[str, Any]:
        return {
            "alarms": [alarm.to_public_dict() for alarm in self._store.list()],
            "triggers": [trigger.to_public_dict() for trigger in self._scheduler.pending()],
            "firing": self.firing_alarms(),
            "next_alarm": self.next_alarm(),
            "updated_at": serialize_dt(self._clock()),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _handle_delivery(self, trigger_id: str) -> None:
        async with self._lock:
            trigger = self._scheduler.claim(trigger_id)
            if trigger is None:
                LOGGER.debug("Ignoring stale trigger %s", trigger_id)
                return
            alarm = self._store.get(trigger.alarm_id)
            if alarm is None:
                return
            now = self._clock()
            if trigger.kind == "scheduled":
                if alarm.is_repeating:
                    self._scheduler.arm(alarm, after=max(trigger.fire_at, now))
                else:
                    alarm = self._store.update(alarm.alarm_id, _disable) or alarm
            if alarm.alarm_id in self._sessions:
                LOGGER.info("Alarm %s is already ringing; ignoring %s trigger", alarm.alarm_id, trigger.kind)
                return
            session = FiringSession(alarm=alarm, trigger=trigger, started_at=now, quiz=self._make_quiz())
            session.transition(FiringState.FIRING)
            attempt = session.record_attempt()
            self._sessions[alarm.alarm_id] = session
            session.task = asyncio.create_task(
                self._reannounce_loop(session), name=f"alarm-reannounce-{alarm.alarm_id}"
            )
        LOGGER.info("Alarm %s ringing (%s trigger due %s)", alarm.alarm_id, trigger.kind, trigger.fire_at.isoformat())
        self._emit("ringing", session, attempt, {"trigger": trigger.kind})
        self._publish_state()
        await announce_all(self._announcers, alarm, attempt)

    async def _reannounce_loop(self, session: FiringSession) -> None:
        try:
            while True:
                await asyncio.sleep(self._policy.interval_seconds)
                async with self._lock:
                    if self._sessions.get(session.alarm_id) is not session or not session.is_active:
                        return
                    if not self._policy.has_attempts_left(session.attempts):
                        session.exhausted = True
                        attempt = session.attempts
                    else:
                        attempt = session.record_attempt()
                if session.exhausted:
                    LOGGER.warning(
                        "Alarm %s still ringing after %d announcements; no more re-announcements",
                        session.alarm_id,
                        attempt,
                    )
                    self._emit("exhausted", session, attempt)
                    self._publish_state()
                    return
                self._emit("reannounced", session, attempt)
                await announce_all(self._announcers, session.alarm, attempt)
        except asyncio.CancelledError:
            return

    def _end_session_locked(self, alarm_id: str, state: FiringState) -> FiringSession | None:
        session = self._sessions.pop(alarm_id, None)
        if session is None:
            return None
        session.transition(state)
        session.cancel_reannounce()
        return session

    async def _finish_session(
        self,
        session: FiringSession,
        kind: FireEventKind,
        detail: dict[str, Any] | None = None,
    ) -> None:
        self._emit(kind, session, session.attempts, detail)
        self._publish_state()
        await withdraw_all(self._announcers, session.alarm)

    def _make_quiz(self) -> MathQuiz | None:
        if not self._quiz_enabled:
            return None
        return MathQuiz.generate(self._quiz_questions, rng=self._rng)

    def _emit(
        self,
        kind: FireEventKind,
        session: FiringSession,
        attempt: int,
        detail: dict[str, Any] | None = None,
    ) -> None:
        event = FireEvent(
            kind=kind,
            alarm_id=session.alarm_id,
            alarm=session.alarm.to_public_dict(),
            at=self._clock(),
            attempt=attempt,
            detail=detail,
        )
        self._events.publish(event)

    def _publish_state(self) -> None:
        if not self._state_cb:
            return
        try:
            self._state_cb(self.snapshot())
        except Exception:
            LOGGER.error("State change callback failed", exc_info=True)
