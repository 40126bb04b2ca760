"""Alarm records, user-facing alarm specs and derived triggers."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal
from uuid import uuid4

from somnus.datetime_utils import local_now, normalize_time_string, serialize_dt

TriggerKind = Literal["scheduled", "snooze"]

SNOOZE_SUFFIX = ":snooze"
MAX_LABEL_LENGTH = 120

# Weekday indices are Sunday-based: 0 = Sunday ... 6 = Saturday.
DAY_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]

DAY_NAME_MAP = {
    "sun": 0,
    "sunday": 0,
    "mon": 1,
    "monday": 1,
    "tue": 2,
    "tues": 2,
    "tuesday": 2,
    "wed": 3,
    "wednesday": 3,
    "thu": 4,
    "thur": 4,
    "thurs": 4,
    "thursday": 4,
    "fri": 5,
    "friday": 5,
    "sat": 6,
    "saturday": 6,
}

WEEKDAY_SET = {1, 2, 3, 4, 5}
WEEKEND_SET = {0, 6}


class InvalidAlarmInput(ValueError):
    """Raised when user input cannot describe a valid alarm."""


def parse_day_tokens(value: str | None) -> list[int] | None:
    """Parse day phrases like "mon,wed", "weekdays" or "daily" into indices."""
    if not value:
        return None
    lowered = value.strip().lower()
    condensed = lowered.replace(" ", "")
    if lowered in {"single", "once", "next", "never"}:
        return None
    if lowered in {"weekdays", "weekday"}:
        return sorted(WEEKDAY_SET)
    if lowered in {"weekend", "weekends"}:
        return sorted(WEEKEND_SET)
    if condensed in {"everyday", "alldays"} or lowered in {"daily", "all"}:
        return list(range(7))
    days: set[int] = set()
    for chunk in re.split(r"[,\s]+", lowered):
        chunk = chunk.strip()
        if not chunk:
            continue
        idx = DAY_NAME_MAP.get(chunk, DAY_NAME_MAP.get(chunk[:3]))
        if idx is None:
            raise InvalidAlarmInput(f"Unknown day name: {chunk!r}")
        days.add(idx)
    if not days:
        return None
    return sorted(days)


def day_indexes_to_names(indexes: Iterable[int] | None) -> list[str]:
    if not indexes:
        return []
    return [DAY_NAMES[i] for i in indexes]


def normalize_repeat_days(value: Any) -> list[int]:
    """Coerce a loose day payload into a sorted list of indices in [0, 6]."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        return parse_day_tokens(value) or []
    if isinstance(value, bool) or not isinstance(value, Iterable):
        raise InvalidAlarmInput(f"Unsupported repeat days value: {value!r}")
    days: set[int] = set()
    for item in value:
        if isinstance(item, bool):
            raise InvalidAlarmInput(f"Invalid weekday index: {item!r}")
        if isinstance(item, int):
            if item < 0 or item > 6:
                raise InvalidAlarmInput(f"Weekday index out of range: {item}")
            days.add(item)
        elif isinstance(item, str):
            stripped = item.strip()
            if stripped.isdigit():
                days.update(normalize_repeat_days([int(stripped)]))
            else:
                days.update(parse_day_tokens(stripped) or [])
        else:
            raise InvalidAlarmInput(f"Invalid weekday value: {item!r}")
    return sorted(days)


@dataclass
class Alarm:
    alarm_id: str
    time_of_day: str
    label: str = ""
    enabled: bool = True
    repeat_days: list[int] = field(default_factory=list)
    created_at: str = ""

    @property
    def is_repeating(self) -> bool:
        return bool(self.repeat_days)

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "id": self.alarm_id,
            "time": self.time_of_day,
            "label": self.label,
            "is_enabled": self.enabled,
            "repeat_days": list(self.repeat_days),
            "created_at": self.created_at,
        }

    def to_public_dict(self) -> dict[str, Any]:
        data = self.to_json_dict()
        data["days"] = day_indexes_to_names(self.repeat_days)
        data["is_repeating"] = self.is_repeating
        return data

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Alarm:
        alarm_id = payload.get("id") or payload.get("alarm_id")
        if not alarm_id:
            raise ValueError("Alarm payload missing id")
        time_raw = payload.get("time") or payload.get("time_of_day")
        if not time_raw:
            raise ValueError("Alarm payload missing time")
        return cls(
            alarm_id=str(alarm_id),
            time_of_day=normalize_time_string(str(time_raw)),
            label=str(payload.get("label") or ""),
            enabled=bool(payload.get("is_enabled", payload.get("enabled", True))),
            repeat_days=normalize_repeat_days(payload.get("repeat_days")),
            created_at=str(payload.get("created_at") or ""),
        )


@dataclass(frozen=True)
class AlarmSpec:
    """Validated input for creating an alarm."""

    time_of_day: str
    label: str = ""
    repeat_days: tuple[int, ...] = ()
    enabled: bool = True

    def build(self, *, now: datetime | None = None) -> Alarm:
        return Alarm(
            alarm_id=uuid4().hex,
            time_of_day=self.time_of_day,
            label=self.label,
            enabled=self.enabled,
            repeat_days=list(self.repeat_days),
            created_at=serialize_dt(now or local_now()),
        )


def validate_time_of_day(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidAlarmInput("alarm time is required")
    try:
        return normalize_time_string(value)
    except ValueError as exc:
        raise InvalidAlarmInput(str(exc)) from exc


def validate_label(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise InvalidAlarmInput("alarm label must be text")
    label = value.strip()
    if len(label) > MAX_LABEL_LENGTH:
        raise InvalidAlarmInput(f"alarm label longer than {MAX_LABEL_LENGTH} characters")
    return label


def parse_alarm_spec(payload: dict[str, Any]) -> AlarmSpec:
    """Validate a loose UI/MQTT payload into an AlarmSpec."""
    if not isinstance(payload, dict):
        raise InvalidAlarmInput("alarm payload must be an object")
    time_of_day = validate_time_of_day(payload.get("time") or payload.get("time_of_day"))
    days_raw = payload.get("days", payload.get("repeat_days"))
    enabled = payload.get("enabled", True)
    if not isinstance(enabled, bool):
        raise InvalidAlarmInput("enabled must be true or false")
    return AlarmSpec(
        time_of_day=time_of_day,
        label=validate_label(payload.get("label")),
        repeat_days=tuple(normalize_repeat_days(days_raw)),
        enabled=enabled,
    )


@dataclass(frozen=True)
class ScheduledTrigger:
    alarm_id: str
    fire_at: datetime
    kind: TriggerKind = "scheduled"

    @property
    def trigger_id(self) -> str:
        return trigger_id_for(self.alarm_id, self.kind)

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "alarm_id": self.alarm_id,
            "fire_at": serialize_dt(self.fire_at),
            "kind": self.kind,
        }


def trigger_id_for(alarm_id: str, kind: TriggerKind = "scheduled") -> str:
    if kind == "snooze":
        return f"{alarm_id}{SNOOZE_SUFFIX}"
    return alarm_id
