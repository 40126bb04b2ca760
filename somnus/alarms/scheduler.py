"""Next-occurrence computation and trigger registration."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta

from somnus.datetime_utils import combine_time, local_now, localize_wall_time, sunday_weekday

from .models import Alarm, ScheduledTrigger, TriggerKind, trigger_id_for
from .notification_sink import Clock, NotificationSink, SchedulingError

LOGGER = logging.getLogger(__name__)


def compute_next_fire(time_of_day: str, repeat_days: Iterable[int] | None, *, after: datetime) -> datetime:
    """Return the first occurrence of `time_of_day` strictly after `after`.

    `repeat_days` holds Sunday-based weekday indices; when empty the alarm is
    one-shot and the result is today or tomorrow.
    """
    day_set = {int(day) for day in repeat_days or ()}
    if not day_set <= set(range(7)):
        raise ValueError(f"Weekday indices must be within 0..6: {sorted(day_set)}")
    # Days are stepped on the wall clock so a DST change keeps the local time.
    start = after.replace(tzinfo=None)
    offset = 0
    while True:
        wall = combine_time(start + timedelta(days=offset), time_of_day)
        offset += 1
        if day_set and sunday_weekday(wall) not in day_set:
            continue
        candidate = localize_wall_time(wall, after)
        if candidate > after:
            return candidate


class AlarmScheduler:
    """Keeps at most one scheduled trigger (plus an optional snooze) per alarm armed in the sink."""

    def __init__(
        self,
        sink: NotificationSink,
        *,
        clock: Clock | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._sink = sink
        self._clock = clock or local_now
        self._logger = logger or LOGGER
        self._pending: dict[str, ScheduledTrigger] = {}

    def arm(self, alarm: Alarm, *, after: datetime | None = None) -> ScheduledTrigger | None:
        if not alarm.enabled:
            self.disarm(alarm.alarm_id, include_snooze=False)
            return None
        reference = after or self._clock()
        fire_at = compute_next_fire(alarm.time_of_day, alarm.repeat_days, after=reference)
        trigger = ScheduledTrigger(alarm_id=alarm.alarm_id, fire_at=fire_at, kind="scheduled")
        return self._register(trigger, repeats=alarm.is_repeating)

    def arm_snooze(self, alarm: Alarm, fire_at: datetime) -> ScheduledTrigger | None:
        trigger = ScheduledTrigger(alarm_id=alarm.alarm_id, fire_at=fire_at, kind="snooze")
        return self._register(trigger, repeats=False)

    def disarm(self, alarm_id: str, *, include_snooze: bool = True) -> None:
        kinds: tuple[TriggerKind, ...] = ("scheduled", "snooze") if include_snooze else ("scheduled",)
        for kind in kinds:
            trigger_id = trigger_id_for(alarm_id, kind)
            if self._pending.pop(trigger_id, None) is not None:
                self._cancel(trigger_id)

    def disarm_all(self) -> None:
        for trigger_id in list(self._pending):
            self._pending.pop(trigger_id, None)
            self._cancel(trigger_id)

    def claim(self, trigger_id: str) -> ScheduledTrigger | None:
        """Take ownership of a delivered trigger; stale ids yield None."""
        return self._pending.pop(trigger_id, None)

    def pending(self, alarm_id: str | None = None) -> list[ScheduledTrigger]:
        triggers = [
            trigger for trigger in self._pending.values() if alarm_id is None or trigger.alarm_id == alarm_id
        ]
        triggers.sort(key=lambda trigger: trigger.fire_at)
        return triggers

    def scheduled_trigger(self, alarm_id: str) -> ScheduledTrigger | None:
        return self._pending.get(trigger_id_for(alarm_id, "scheduled"))

    def next_trigger(self) -> ScheduledTrigger | None:
        triggers = self.pending()
        return triggers[0] if triggers else None

    def _register(self, trigger: ScheduledTrigger, *, repeats: bool) -> ScheduledTrigger | None:
        trigger_id = trigger.trigger_id
        if self._pending.pop(trigger_id, None) is not None:
            self._cancel(trigger_id)
        try:
            self._sink.schedule(trigger_id, trigger.fire_at, repeats=repeats)
        except SchedulingError as exc:
            self._logger.warning("Notification sink rejected trigger %s: %s", trigger_id, exc)
            return None
        except Exception:
            self._logger.exception("Unexpected failure arming trigger %s", trigger_id)
            return None
        self._pending[trigger_id] = trigger
        self._logger.info("Alarm %s (%s) armed for %s", trigger.alarm_id, trigger.kind, trigger.fire_at.isoformat())
        return trigger

    def _cancel(self, trigger_id: str) -> None:
        try:
            self._sink.cancel(trigger_id)
        except Exception as exc:
            self._logger.warning("Failed to cancel trigger %s: %s", trigger_id, exc)
