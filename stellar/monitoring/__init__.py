"""Monitoring module for filesystem events."""

from .watcher import (
    Watcher,
    WatcherState,
    OrganizerEventHandler,
    DebounceTracker,
)

__all__ = [
    "Watcher",
    "WatcherState",
    "OrganizerEventHandler",
    "DebounceTracker",
]
