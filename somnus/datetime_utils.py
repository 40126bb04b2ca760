"""Shared time-of-day parsing and local clock utilities."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

LOGGER = logging.getLogger(__name__)

_TIME_KEYWORDS = {
    "noon": (12, 0),
    "midday": (12, 0),
    "midnight": (0, 0),
}

_TIME_PATTERN = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm|a\.m\.|p\.m\.)?$")


def local_now(tz: tzinfo | None = None) -> datetime:
    """Get current datetime in the given timezone, or the system local one."""
    if tz is not None:
        return datetime.now(tz)
    return datetime.now().astimezone()


def resolve_timezone(name: str | None) -> tzinfo | None:
    """Resolve an IANA zone name. Returns None to mean "system local"."""
    if not name or not name.strip():
        return None
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError) as exc:
        LOGGER.warning("Unknown timezone %s (%s); using system local time", name, exc)
        return None


def ensure_aware(dt: datetime, tz: tzinfo | None = None) -> datetime:
    """Attach or convert to the target timezone."""
    if dt.tzinfo is None:
        if tz is not None:
            return dt.replace(tzinfo=tz)
        return dt.astimezone()
    if tz is not None:
        return dt.astimezone(tz)
    return dt


def localize_wall_time(wall: datetime, like: datetime) -> datetime:
    """Attach the zone of `like` to the naive wall-clock datetime `wall`.

    `datetime.now().astimezone()` yields a fixed offset; such offsets are
    re-resolved against the system zone so the result follows DST.
    """
    tz = like.tzinfo
    if tz is None:
        return wall
    if isinstance(tz, timezone) and tz is not timezone.utc and like.utcoffset() == like.astimezone().utcoffset():
        return ensure_aware(wall)
    return ensure_aware(wall, tz)


def parse_time_of_day(phrase: str | None) -> tuple[int, int] | None:
    """Parse time of day phrase into (hour, minute) tuple. Returns None if invalid."""
    if not phrase:
        return None
    cleaned = phrase.strip().lower()
    if not cleaned:
        return None
    keyword = _TIME_KEYWORDS.get(cleaned)
    if keyword:
        return keyword
    if cleaned.endswith(" o'clock"):
        cleaned = cleaned[: -len(" o'clock")].strip()
    match = _TIME_PATTERN.match(cleaned)
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    suffix = (match.group(3) or "").replace(".", "")
    if suffix:
        if hour < 1 or hour > 12:
            return None
        if hour == 12:
            hour = 0
        if suffix == "pm":
            hour += 12
    if hour >= 24 or minute >= 60:
        return None
    return hour, minute


def parse_time_string(value: str) -> tuple[int, int]:
    """Parse time string into (hour, minute) tuple. Raises ValueError if invalid."""
    result = parse_time_of_day(value)
    if result is None:
        raise ValueError(f"Invalid time format: {value!r}")
    return result


def normalize_time_string(value: str) -> str:
    """Canonicalize a time phrase to HH:MM. Raises ValueError if invalid."""
    hour, minute = parse_time_string(value)
    return f"{hour:02d}:{minute:02d}"


def combine_time(reference: datetime, time_str: str) -> datetime:
    """Combine a reference datetime with a time string (HH:MM format)."""
    hour, minute = parse_time_string(time_str)
    return reference.replace(hour=hour, minute=minute, second=0, microsecond=0)


def sunday_weekday(dt: datetime) -> int:
    """Weekday index with Sunday as 0 and Saturday as 6."""
    return (dt.weekday() + 1) % 7


def serialize_dt(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.astimezone()
    return value.isoformat()
