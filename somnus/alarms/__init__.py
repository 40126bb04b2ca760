"""
Alarm scheduling, firing and dismissal for Somnus

This package provides the alarm clock core:

- Store: ordered alarm collection mirrored to a JSON file
- Scheduler: next-occurrence computation and trigger registration with a notification sink
- Firing: Idle -> Firing -> Dismissed/Snoozed state machine with bounded re-announcement
- Quiz gate: optional arithmetic challenge required to dismiss a ringing alarm
- Integrations: MQTT command/state bridge and Home Assistant push notifications

Key modules:
- config: Configuration management from environment variables
- service: AlarmService, the API used by user interfaces
- commands: MQTT command processor
"""

from __future__ import annotations

__all__ = [
    "announcers",
    "commands",
    "config",
    "events",
    "firing",
    "home_assistant",
    "models",
    "mqtt",
    "notification_sink",
    "quiz",
    "scheduler",
    "service",
    "store",
]
