"""
Handler registry for discovering and routing projection handlers.

The registry scans an owner object for @handles methods, validates their
signatures and routes events to them by event type name. What happens to
an event type without a handler is decided by the owner's
``unregistered_event_handling`` mode.
"""

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

from eventledger.events.base import Event
from eventledger.exceptions import UnknownEventTypeError
from eventledger.handlers.decorators import get_handled_event_types

logger = logging.getLogger(__name__)

# Type alias for unregistered event handling mode
UnregisteredEventHandling = Literal["ignore", "warn", "error"]

_MODES = ("ignore", "warn", "error")


class HandlerSignatureError(ValueError):
    """Raised when a @handles method has an unusable signature."""

    def __init__(self, handler_name: str, owner_name: str, reason: str) -> None:
        self.handler_name = handler_name
        self.owner_name = owner_name
        super().__init__(
            f"Handler '{handler_name}' in {owner_name} is invalid: {reason}.\n\n"
            f"Expected:\n"
            f"  def {handler_name}(self, state: dict, event: Event) -> dict | None"
        )


@dataclass(frozen=True)
class HandlerInfo:
    """Metadata about a discovered handler."""

    event_type: str
    handler_name: str
    handler: Callable[[dict[str, Any], Event], dict[str, Any] | None]


class HandlerRegistry:
    """
    Registry for discovering, validating and routing event handlers.

    Example:
        >>> registry = HandlerRegistry(projection, unregistered_event_handling="error")
        >>> registry.get_subscribed_events()
        ['UserEmailVerified', 'UserRegistered']
        >>> new_state = registry.dispatch(event, state)
    """

    def __init__(
        self,
        owner: Any,
        *,
        unregistered_event_handling: UnregisteredEventHandling = "ignore",
        owner_name: str | None = None,
    ) -> None:
        """
        Initialize the handler registry.

        Args:
            owner: The object containing @handles decorated methods
            unregistered_event_handling: How to handle events with no handler:
                - "ignore": Skip silently (forward-compatible, default)
                - "warn": Log a warning and skip
                - "error": Raise UnknownEventTypeError
            owner_name: Name used in logs and errors (default: class name)
        """
        if unregistered_event_handling not in _MODES:
            raise ValueError(
                f"unregistered_event_handling must be one of {_MODES}, "
                f"got {unregistered_event_handling!r}"
            )
        self._owner = owner
        self._owner_name = owner_name or owner.__class__.__name__
        self._unregistered_event_handling = unregistered_event_handling
        self._handlers: dict[str, HandlerInfo] = {}
        self._discover_handlers()

    @property
    def unregistered_event_handling(self) -> UnregisteredEventHandling:
        return self._unregistered_event_handling

    def _discover_handlers(self) -> None:
        for attr_name in dir(type(self._owner)):
            if attr_name.startswith("__"):
                continue
            event_types = get_handled_event_types(getattr(type(self._owner), attr_name, None))
            if not event_types:
                continue
            attr = getattr(self._owner, attr_name)
            self._validate_handler(attr_name, attr)

            for event_type in event_types:
                existing = self._handlers.get(event_type)
                if existing is not None and existing.handler_name != attr_name:
                    raise HandlerSignatureError(
                        attr_name,
                        self._owner_name,
                        f"{event_type} is already handled by '{existing.handler_name}'",
                    )
                self._handlers[event_type] = HandlerInfo(event_type, attr_name, attr)
                logger.debug(
                    "Registered handler %s for %s",
                    attr_name,
                    event_type,
                    extra={
                        "owner": self._owner_name,
                        "handler": attr_name,
                        "event_type": event_type,
                    },
                )

    def _validate_handler(self, handler_name: str, handler: Callable[..., Any]) -> None:
        if inspect.iscoroutinefunction(handler):
            raise HandlerSignatureError(
                handler_name, self._owner_name, "projection handlers must be synchronous"
            )
        try:
            param_count = len(inspect.signature(handler).parameters)
        except (ValueError, TypeError):
            return
        if param_count != 2:
            raise HandlerSignatureError(
                handler_name,
                self._owner_name,
                f"takes {param_count} parameter(s) after self, expected 2",
            )

    def get_handler(self, event_type: str) -> HandlerInfo | None:
        return self._handlers.get(event_type)

    def has_handler(self, event_type: str) -> bool:
        return event_type in self._handlers

    def get_subscribed_events(self) -> list[str]:
        """Sorted event type names that have handlers."""
        return sorted(self._handlers)

    def dispatch(self, event: Event, state: dict[str, Any]) -> dict[str, Any] | None:
        """
        Route an event to its handler.

        Args:
            event: The event to apply
            state: State copy owned by the handler for this call

        Returns:
            The handler's result (new state, or None if it mutated ``state``),
            or ``state`` unchanged when the event type has no handler and the
            mode is "ignore" or "warn".

        Raises:
            UnknownEventTypeError: If no handler exists and the mode is "error"
        """
        info = self._handlers.get(event.event_type)
        if info is not None:
            return info.handler(state, event)

        if self._unregistered_event_handling == "error":
            raise UnknownEventTypeError(
                event_type=event.event_type,
                event_id=event.event_id,
                projection_name=self._owner_name,
                available_handlers=list(self._handlers),
            )
        if self._unregistered_event_handling == "warn":
            logger.warning(
                "No handler for event type %s in %s",
                event.event_type,
                self._owner_name,
                extra={
                    "owner": self._owner_name,
                    "event_type": event.event_type,
                    "event_id": str(event.event_id),
                },
            )
        return state


__all__ = [
    "HandlerInfo",
    "HandlerRegistry",
    "HandlerSignatureError",
    "UnregisteredEventHandling",
]
