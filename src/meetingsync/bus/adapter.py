"""
Handler adapter for normalizing notification handlers.

Handlers may be sync or async callables, or objects exposing a sync or
async handle() method. The adapter gives all of them one async interface.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from meetingsync.events import EngineEvent

AsyncHandlerFunc = Callable[[EngineEvent], Awaitable[None]]


def get_handler_name(handler: Any) -> str:
    """
    Get a descriptive name for a handler for logging and debugging.

    Args:
        handler: Any handler object (class instance, function, lambda)

    Returns:
        String name for the handler
    """
    if hasattr(handler, "__class__") and handler.__class__.__name__ not in (
        "function",
        "method",
    ):
        return str(handler.__class__.__name__)
    if hasattr(handler, "__name__"):
        return str(handler.__name__)
    return repr(handler)


class HandlerAdapter:
    """
    Adapter that normalizes handlers to a consistent async interface.

    Example:
        >>> def sync_handler(event: EngineEvent) -> None:
        ...     print(event)
        >>> adapter = HandlerAdapter(sync_handler)
        >>> await adapter.handle(event)

    Attributes:
        original: The original unwrapped handler
        name: Descriptive name for logging
    """

    def __init__(self, handler: Any) -> None:
        """
        Initialize the adapter with a handler.

        Raises:
            TypeError: If handler doesn't have handle() method and isn't callable
        """
        self._original = handler
        self._name = get_handler_name(handler)
        self._async_handler = self._normalize(handler)

    def _normalize(self, handler: Any) -> AsyncHandlerFunc:
        if hasattr(handler, "handle"):
            target = handler.handle
        elif callable(handler):
            target = handler
        else:
            raise TypeError(
                f"Handler must have a handle() method or be callable, got {type(handler)}"
            )

        if inspect.iscoroutinefunction(target):
            return target  # type: ignore[no-any-return]

        async def async_wrapper(event: EngineEvent) -> None:
            result = target(event)
            if inspect.isawaitable(result):
                await result

        return async_wrapper

    @property
    def original(self) -> Any:
        return self._original

    @property
    def name(self) -> str:
        return self._name

    async def handle(self, event: EngineEvent) -> None:
        await self._async_handler(event)

    def __eq__(self, other: object) -> bool:
        """Check equality based on original handler identity."""
        if isinstance(other, HandlerAdapter):
            return self._original is other._original
        return self._original is other

    def __hash__(self) -> int:
        return id(self._original)

    def __repr__(self) -> str:
        return f"HandlerAdapter({self._name})"


__all__ = ["HandlerAdapter", "AsyncHandlerFunc", "get_handler_name"]
