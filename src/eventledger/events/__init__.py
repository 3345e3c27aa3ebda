"""Event record and event type registry."""

from eventledger.events.base import Event
from eventledger.events.registry import (
    EventTypeRegistry,
    EventTypeSpec,
    PayloadSchema,
    PayloadValidator,
    default_registry,
    register_event_type,
)

__all__ = [
    "Event",
    "EventTypeRegistry",
    "EventTypeSpec",
    "PayloadSchema",
    "PayloadValidator",
    "default_registry",
    "register_event_type",
]
