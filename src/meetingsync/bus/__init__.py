"""
Event channel for engine notifications.

Example:
    >>> from meetingsync.bus import InMemoryEventChannel
    >>> from meetingsync.events import MigrationProgressed
    >>>
    >>> channel = InMemoryEventChannel()
    >>> channel.subscribe(MigrationProgressed, lambda e: print(e.progress, e.phase))
"""

from meetingsync.bus.adapter import HandlerAdapter
from meetingsync.bus.interface import EventChannel, EventHandlerFunc
from meetingsync.bus.memory import InMemoryEventChannel

__all__ = [
    "EventChannel",
    "EventHandlerFunc",
    "HandlerAdapter",
    "InMemoryEventChannel",
]
