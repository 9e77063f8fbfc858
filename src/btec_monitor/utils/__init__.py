"""Utility modules for btec_monitor."""

from .event_log import EventLog, LogEntry
