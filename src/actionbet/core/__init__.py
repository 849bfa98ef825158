# src/actionbet/core/__init__.py
"""Session-scoped event bus and timer source."""

from .event_bus import Event, EventBus, EventType
from .scheduler import QtScheduler, Scheduler, TimerHandle, VirtualScheduler

__all__ = [
    "Event",
    "EventBus",
    "EventType",
    "Scheduler",
    "TimerHandle",
    "VirtualScheduler",
    "QtScheduler",
]
