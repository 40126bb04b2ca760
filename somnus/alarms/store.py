"""Ordered alarm collection mirrored to durable storage."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path
from typing import Any, Protocol

from .models import Alarm

LOGGER = logging.getLogger(__name__)

AlarmMutator = Callable[[Alarm], "Alarm | None"]


class PersistenceError(RuntimeError):
    """Stored alarm data could not be read."""


class AlarmBackend(Protocol):
    def save(self, payload: list[dict[str, Any]]) -> None: ...

    def load(self) -> list[dict[str, Any]]: ...


class JsonFileBackend:
    """Store alarms as a JSON document, replacing the file atomically."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def save(self, payload: list[dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps({"alarms": payload}, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(self.path)

    def load(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as exc:
            raise PersistenceError(f"Failed to read alarms file {self.path}: {exc}") from exc
        if isinstance(data, list):
            items = data
        elif isinstance(data, dict):
            items = data.get("alarms")
        else:
            items = None
        if not isinstance(items, list):
            raise PersistenceError(f"Alarms file {self.path} has an unexpected layout")
        return [item for item in items if isinstance(item, dict)]


class AlarmStore:
    """In-memory alarm list that writes the full collection on every mutation."""

    def __init__(self, backend: AlarmBackend, logger: logging.Logger | None = None) -> None:
        self._backend = backend
        self._logger = logger or LOGGER
        self._alarms: dict[str, Alarm] = {}
        self._lock = threading.Lock()

    def load(self) -> list[Alarm]:
        try:
            payload = self._backend.load()
        except PersistenceError as exc:
            self._logger.warning("Starting with no alarms: %s", exc)
            payload = []
        alarms: dict[str, Alarm] = {}
        for item in payload:
            try:
                alarm = Alarm.from_dict(item)
            except (TypeError, ValueError) as exc:
                self._logger.warning("Skipping invalid alarm entry %s: %s", item, exc)
                continue
            if alarm.alarm_id in alarms:
                self._logger.warning("Skipping duplicate alarm id %s", alarm.alarm_id)
                continue
            alarms[alarm.alarm_id] = alarm
        with self._lock:
            self._alarms = alarms
        self._logger.info("Loaded %d alarms", len(alarms))
        return self.list()

    def list(self) -> list[Alarm]:
        with self._lock:
            return [replace(alarm, repeat_days=list(alarm.repeat_days)) for alarm in self._alarms.values()]

    def get(self, alarm_id: str) -> Alarm | None:
        with self._lock:
            alarm = self._alarms.get(alarm_id)
            if alarm is None:
                return None
            return replace(alarm, repeat_days=list(alarm.repeat_days))

    def __len__(self) -> int:
        with self._lock:
            return len(self._alarms)

    def add(self, alarm: Alarm) -> Alarm:
        with self._lock:
            if alarm.alarm_id in self._alarms:
                raise ValueError(f"Alarm {alarm.alarm_id} already exists")
            self._alarms[alarm.alarm_id] = replace(alarm, repeat_days=list(alarm.repeat_days))
            self._persist_locked()
        return replace(alarm, repeat_days=list(alarm.repeat_days))

    def update(self, alarm_id: str, mutator: AlarmMutator) -> Alarm | None:
        with self._lock:
            current = self._alarms.get(alarm_id)
            if current is None:
                return None
            draft = replace(current, repeat_days=list(current.repeat_days))
            result = mutator(draft)
            updated = result if result is not None else draft
            if updated.alarm_id != alarm_id:
                raise ValueError("Alarm id cannot be changed")
            self._alarms[alarm_id] = updated
            self._persist_locked()
            return replace(updated, repeat_days=list(updated.repeat_days))

    def remove(self, alarm_id: str) -> Alarm | None:
        with self._lock:
            removed = self._alarms.pop(alarm_id, None)
            if removed is None:
                return None
            self._persist_locked()
            return removed

    def _persist_locked(self) -> None:
        payload = [alarm.to_json_dict() for alarm in self._alarms.values()]
        try:
            self._backend.save(payload)
        except OSError as exc:
            self._logger.error("Failed to persist %d alarms: %s", len(payload), exc)
