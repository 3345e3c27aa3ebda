"""
Base class for projections.

A projection turns an ordered event sequence into current-state rows. Its
``apply`` is a pure function of (event, state): it never touches storage,
never mutates the state it is given and returns the same result for the
same inputs, so rebuilding a projection from scratch reproduces the same
rows. Events are routed to handler methods by event type through the
@handles decorator.

Strictness is declared per projection with ``unregistered_event_handling``:

- "ignore" (default): event types without a handler are skipped, so new
  event types never stop the projection
- "warn": skipped with a logged warning
- "error": UnknownEventTypeError is raised and catch-up halts at the event
"""

from __future__ import annotations

import copy
from collections.abc import Iterable
from typing import Any, ClassVar

from eventledger.events.base import Event
from eventledger.handlers.registry import HandlerRegistry, UnregisteredEventHandling


class Projection:
    """
    Base class for declarative projections.

    Class attributes:
        name: Projection name used for checkpoints (default: class name)
        stream_types: Only consume events of these stream types (None: all)
        unregistered_event_handling: "ignore", "warn" or "error"
        schema_version: Version of the state shape; snapshots taken with an
            older version are not used

    Example:
        >>> class UserProfileProjection(Projection):
        ...     stream_types = ("User",)
        ...     unregistered_event_handling = "error"
        ...
        ...     @handles("UserRegistered")
        ...     def _on_registered(self, state: dict, event: Event) -> dict:
        ...         return {"email": event.payload["email"], "status": "pending"}
        ...
        ...     @handles("UserEmailVerified")
        ...     def _on_verified(self, state: dict, event: Event) -> None:
        ...         state["status"] = "active"
    """

    name: ClassVar[str | None] = None
    stream_types: ClassVar[tuple[str, ...] | None] = None
    unregistered_event_handling: ClassVar[UnregisteredEventHandling] = "ignore"
    schema_version: ClassVar[int] = 1

    def __init__(self) -> None:
        self._projection_name = self.name or type(self).__name__
        self._handler_registry = HandlerRegistry(
            self,
            unregistered_event_handling=self.unregistered_event_handling,
            owner_name=self._projection_name,
        )

    @property
    def projection_name(self) -> str:
        return self._projection_name

    def subscribed_to(self) -> list[str]:
        """Event type names this projection has handlers for."""
        return self._handler_registry.get_subscribed_events()

    def initial_state(self) -> dict[str, Any]:
        """State of a row before its first event."""
        return {}

    def key_for(self, event: Event) -> str:
        """Row key an event applies to. One row per stream by default."""
        return event.stream_id

    def accepts(self, event: Event) -> bool:
        """Whether the event belongs to a stream this projection consumes."""
        return self.stream_types is None or event.stream_type in self.stream_types

    def apply(self, event: Event, state: dict[str, Any]) -> dict[str, Any]:
        """
        Apply one event to a state and return the new state.

        The handler works on a deep copy, so ``state`` is never modified.

        Raises:
            UnknownEventTypeError: In "error" mode, for an event type without a handler
        """
        working = copy.deepcopy(state)
        if not self.accepts(event):
            return working
        result = self._handler_registry.dispatch(event, working)
        return working if result is None else result

    def replay(
        self,
        events: Iterable[Event],
        state: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Fold events over a state, starting from initial_state() by default."""
        current = self.initial_state() if state is None else state
        for event in events:
            current = self.apply(event, current)
        return current

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self._projection_name!r}>"


__all__ = ["Projection"]
