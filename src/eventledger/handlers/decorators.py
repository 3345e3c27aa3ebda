"""
Event handler decorators.

The @handles decorator marks a projection method as the handler for one or
more event type names. Handlers are discovered by HandlerRegistry when the
projection is instantiated.

Example:
    >>> from eventledger.handlers import handles
    >>>
    >>> class UserProfileProjection(Projection):
    ...     @handles("UserRegistered")
    ...     def _on_registered(self, state: dict, event: Event) -> dict:
    ...         return {**state, "email": event.payload["email"], "status": "pending"}
"""

from collections.abc import Callable
from typing import Any, TypeVar

F = TypeVar("F", bound=Callable[..., Any])


def handles(*event_types: str) -> Callable[[F], F]:
    """
    Decorator to mark a method as the handler for the given event types.

    Handler signature:
        def handler(self, state: dict, event: Event) -> dict | None

    The handler receives a private copy of the current state. It may return
    a new state dict, or mutate the copy in place and return None.

    Args:
        *event_types: One or more registered event type names

    Raises:
        ValueError: If no event type name is given
    """
    if not event_types or not all(isinstance(t, str) and t for t in event_types):
        raise ValueError("@handles requires at least one non-empty event type name")

    def decorator(func: F) -> F:
        func._handles_event_types = tuple(event_types)  # type: ignore[attr-defined]
        return func

    return decorator


def get_handled_event_types(func: Callable[..., Any]) -> tuple[str, ...]:
    """Event type names handled by a decorated function (empty if undecorated)."""
    return getattr(func, "_handles_event_types", ())


def is_event_handler(func: Callable[..., Any]) -> bool:
    """Check if a function is decorated with @handles."""
    return hasattr(func, "_handles_event_types")


__all__ = [
    "handles",
    "get_handled_event_types",
    "is_event_handler",
]
