"""
Somnus - alarm clock service package

This is the root package for Somnus, a small alarm clock daemon that keeps a
list of alarms on disk, arms them with a notification sink and keeps ringing
until the sleeper dismisses or snoozes them.

Core modules:
- utils: Environment-style value parsing helpers
- datetime_utils: Time-of-day parsing and local clock helpers
- daemon: Process entry point wiring the service to MQTT and Home Assistant
- alarms: Alarm store, scheduler, firing state machine, quiz gate and the
  MQTT / Home Assistant integrations
"""

__version__ = "0.3.2"
