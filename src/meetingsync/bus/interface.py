"""Event channel interface definitions.

The event channel decouples the engine from whoever watches it: dashboards,
progress reporters and the external project-phase state machine subscribe
to typed events instead of being called directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from meetingsync.events import EngineEvent

# Type alias for simple function-based handlers
EventHandlerFunc = Callable[[EngineEvent], Awaitable[None] | None]


class EventChannel(ABC):
    """
    Abstract channel for publishing and subscribing to engine events.

    Implementations must isolate handler failures: a failing subscriber
    never prevents delivery to the others, and never propagates back to
    the publisher.

    Example:
        >>> channel = InMemoryEventChannel()
        >>> channel.subscribe(MigrationProgressed, progress_handler)
        >>> await channel.publish([MigrationProgressed(run_id="r1", progress=20, phase="validated")])
    """

    @abstractmethod
    async def publish(self, events: Sequence[EngineEvent]) -> None:
        """
        Publish events to all registered subscribers, in order.

        Args:
            events: Events to publish
        """
        pass

    @abstractmethod
    def subscribe(
        self,
        event_type: type[EngineEvent],
        handler: Any | EventHandlerFunc,
    ) -> None:
        """
        Subscribe a handler to an event type.

        Subscribing to a base class (e.g. MigrationEvent) receives every
        subclass as well.

        Args:
            event_type: The event class to subscribe to
            handler: Object with handle() method or callable
        """
        pass

    @abstractmethod
    def unsubscribe(
        self,
        event_type: type[EngineEvent],
        handler: Any | EventHandlerFunc,
    ) -> bool:
        """
        Unsubscribe a handler from an event type.

        Returns:
            True if the handler was found and removed, False otherwise
        """
        pass

    @abstractmethod
    def subscribe_to_all_events(self, handler: Any | EventHandlerFunc) -> None:
        """Subscribe a handler to every event (wildcard subscription)."""
        pass

    @abstractmethod
    def unsubscribe_from_all_events(self, handler: Any | EventHandlerFunc) -> bool:
        """Remove a wildcard subscription."""
        pass


__all__ = ["EventChannel", "EventHandlerFunc"]
