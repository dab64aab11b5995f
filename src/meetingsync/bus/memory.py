"""In-memory event channel implementation.

Distributes engine events to subscribers within the same process. This is
the default channel wired by MigrationEngine.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import defaultdict
from collections.abc import Sequence
from typing import Any

from meetingsync.bus.adapter import HandlerAdapter
from meetingsync.bus.interface import EventChannel, EventHandlerFunc
from meetingsync.events import EngineEvent
from meetingsync.observability import Tracer, create_tracer
from meetingsync.observability.attributes import (
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_HANDLER_COUNT,
    ATTR_HANDLER_NAME,
    ATTR_HANDLER_SUCCESS,
)

logger = logging.getLogger(__name__)


class InMemoryEventChannel(EventChannel):
    """
    In-memory event channel.

    Features:
    - Thread-safe subscription management
    - Support for sync and async handlers
    - Subscriptions to a base event class receive its subclasses
    - Wildcard subscriptions (receive all events)
    - Error isolation (handler failures don't stop other handlers)
    - Optional OpenTelemetry tracing

    Events are delivered in publish order; the handlers of a single event
    run concurrently.

    Example:
        >>> channel = InMemoryEventChannel()
        >>> channel.subscribe(MigrationCompleted, my_handler)
        >>> await channel.publish([MigrationCompleted(...)])
    """

    def __init__(
        self,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the channel with an empty subscriber registry.

        Args:
            tracer: Optional custom Tracer instance. If not provided, one is
                   created based on enable_tracing setting.
            enable_tracing: If True, emit OpenTelemetry spans.
                          Ignored if tracer is explicitly provided.
        """
        self._subscribers: dict[type[EngineEvent], list[HandlerAdapter]] = defaultdict(list)
        self._all_event_handlers: list[HandlerAdapter] = []
        self._lock = threading.RLock()
        self._stats = {
            "events_published": 0,
            "handlers_invoked": 0,
            "handler_errors": 0,
        }

        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def publish(self, events: Sequence[EngineEvent]) -> None:
        for event in events:
            await self._dispatch_event(event)
            self._stats["events_published"] += 1

    async def _dispatch_event(self, event: EngineEvent) -> None:
        event_type = type(event)

        with self._lock:
            handlers: list[HandlerAdapter] = []
            for cls in event_type.__mro__:
                handlers.extend(self._subscribers.get(cls, []))
            handlers.extend(self._all_event_handlers)

        if not handlers:
            logger.debug(
                f"No handlers registered for event type: {event_type.__name__}",
                extra={"event_type": event_type.__name__},
            )
            return

        with self._tracer.span(
            "meetingsync.event_channel.dispatch",
            {
                ATTR_EVENT_TYPE: event_type.__name__,
                ATTR_EVENT_ID: str(event.event_id),
                ATTR_HANDLER_COUNT: len(handlers),
            },
        ):
            tasks = [self._safe_handle(adapter, event) for adapter in handlers]
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _safe_handle(self, adapter: HandlerAdapter, event: EngineEvent) -> None:
        """Execute a handler, catching and logging exceptions."""
        with self._tracer.span(
            "meetingsync.event_channel.handle",
            {
                ATTR_EVENT_TYPE: type(event).__name__,
                ATTR_EVENT_ID: str(event.event_id),
                ATTR_HANDLER_NAME: adapter.name,
            },
        ) as span:
            try:
                await adapter.handle(event)
                if span:
                    span.set_attribute(ATTR_HANDLER_SUCCESS, True)
                self._stats["handlers_invoked"] += 1
            except Exception as e:
                if span:
                    span.set_attribute(ATTR_HANDLER_SUCCESS, False)
                    span.record_exception(e)
                self._stats["handler_errors"] += 1
                logger.error(
                    f"Handler {adapter.name} failed processing {type(event).__name__}: {e}",
                    exc_info=True,
                    extra={
                        "handler": adapter.name,
                        "event_type": type(event).__name__,
                        "event_id": str(event.event_id),
                    },
                )

    def subscribe(
        self,
        event_type: type[EngineEvent],
        handler: Any | EventHandlerFunc,
    ) -> None:
        adapter = HandlerAdapter(handler)
        with self._lock:
            self._subscribers[event_type].append(adapter)
        logger.debug(
            f"Registered handler {adapter.name} for {event_type.__name__}",
            extra={"handler": adapter.name, "event_type": event_type.__name__},
        )

    def unsubscribe(
        self,
        event_type: type[EngineEvent],
        handler: Any | EventHandlerFunc,
    ) -> bool:
        target = HandlerAdapter(handler)
        with self._lock:
            adapters = self._subscribers.get(event_type, [])
            for i, adapter in enumerate(adapters):
                if adapter == target:
                    adapters.pop(i)
                    return True
        return False

    def subscribe_to_all_events(self, handler: Any | EventHandlerFunc) -> None:
        adapter = HandlerAdapter(handler)
        with self._lock:
            self._all_event_handlers.append(adapter)
        logger.debug(
            f"Registered wildcard handler {adapter.name}",
            extra={"handler": adapter.name},
        )

    def unsubscribe_from_all_events(self, handler: Any | EventHandlerFunc) -> bool:
        target = HandlerAdapter(handler)
        with self._lock:
            for i, adapter in enumerate(self._all_event_handlers):
                if adapter == target:
                    self._all_event_handlers.pop(i)
                    return True
        return False

    def clear_subscribers(self) -> None:
        """Clear all subscribers. Useful for testing."""
        with self._lock:
            self._subscribers.clear()
            self._all_event_handlers.clear()

    def get_subscriber_count(self, event_type: type[EngineEvent] | None = None) -> int:
        """
        Get the number of registered subscribers.

        Args:
            event_type: If provided, count subscribers registered for exactly
                       this event type. Does not include wildcard subscribers.
        """
        with self._lock:
            if event_type is None:
                return sum(len(handlers) for handlers in self._subscribers.values())
            return len(self._subscribers.get(event_type, []))

    def get_stats(self) -> dict[str, int]:
        """
        Get statistics about channel operation.

        Returns:
            Dictionary with counts:
            - events_published: Total events published
            - handlers_invoked: Total successful handler invocations
            - handler_errors: Total handler errors
        """
        return dict(self._stats)


__all__ = ["InMemoryEventChannel"]
