"""
Hourly Chime - recurring alarm and spoken-time reminder scheduler

This is the root package for Hourly Chime. It holds the shared value types and
helpers used by the scheduling engine and the service layer.

Core modules:
- weekdays: Weekday enumeration and weekday-set algebra
- time_of_day: Hour/minute value with formatting and parsing
- datetime_utils: Zone-aware wall clock helpers
- settings_store: Persistent key/value preferences
- engine: Recurrence, reminder expansion, snooze, speech text and rescheduling
- service: Configuration, storage, MQTT/Wyoming adapters and the daemon wiring
"""

__version__ = "0.4.2"
