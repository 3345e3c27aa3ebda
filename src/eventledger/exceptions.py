"""Library exceptions for the eventledger package."""

from __future__ import annotations

from typing import Any
from uuid import UUID


class EventLedgerError(Exception):
    """Base exception for eventledger library."""

    pass


class ConcurrencyConflictError(EventLedgerError):
    """
    Raised when an append's expected version does not match the stream.

    The store never retries on its own. Callers should re-read the stream,
    re-run their decision against the new state and append again.
    """

    def __init__(
        self,
        stream_id: str,
        expected_version: int | None,
        actual_version: int,
    ) -> None:
        self.stream_id = stream_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Concurrency conflict on stream {stream_id}: "
            f"expected version {expected_version}, but current version is {actual_version}"
        )


class EventValidationError(EventLedgerError):
    """Raised when an event type or payload is rejected before append."""

    def __init__(
        self,
        event_type: str,
        message: str,
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        self.event_type = event_type
        self.errors = errors or []
        super().__init__(f"Invalid event {event_type}: {message}")


class UnregisteredEventTypeError(EventValidationError):
    """Raised when appending an event type that was never registered."""

    def __init__(self, event_type: str, available: list[str] | None = None) -> None:
        self.available = sorted(available or [])
        message = "event type is not registered"
        if self.available:
            message += f" (registered: {', '.join(self.available)})"
        super().__init__(event_type, message)


class StreamTypeMismatchError(EventValidationError):
    """Raised when appending to a stream under a different stream type."""

    def __init__(
        self,
        stream_id: str,
        expected_type: str,
        actual_type: str,
        event_type: str = "",
    ) -> None:
        self.stream_id = stream_id
        self.expected_type = expected_type
        self.actual_type = actual_type
        super().__init__(
            event_type or "<any>",
            f"stream {stream_id} has type {expected_type!r}, cannot append as {actual_type!r}",
        )


class DuplicateEventTypeError(EventLedgerError):
    """Raised when an event type name is registered twice with different schemas."""

    def __init__(self, event_type: str) -> None:
        self.event_type = event_type
        super().__init__(f"Event type {event_type!r} is already registered with another schema")


class UnknownEventTypeError(EventLedgerError):
    """
    Raised by a strict projection that receives an event type it has no handler for.

    Attributes:
        event_type: Name of the unhandled event type
        event_id: ID of the event that wasn't handled
        projection_name: Name of the projection
        available_handlers: Event types the projection does handle
    """

    def __init__(
        self,
        event_type: str,
        event_id: UUID,
        projection_name: str,
        available_handlers: list[str],
    ) -> None:
        self.event_type = event_type
        self.event_id = event_id
        self.projection_name = projection_name
        self.available_handlers = available_handlers
        handlers_str = ", ".join(sorted(available_handlers)) if available_handlers else "none"
        super().__init__(
            f"Projection {projection_name} has no handler for event type {event_type} "
            f"(event_id={event_id}). Handled types: {handlers_str}. "
            f"Add a @handles({event_type!r}) method or set "
            f"unregistered_event_handling='ignore'."
        )


class ProjectionError(EventLedgerError):
    """Raised when a projection fails to process an event during catch-up."""

    def __init__(self, projection_name: str, event_id: UUID | None, message: str) -> None:
        self.projection_name = projection_name
        self.event_id = event_id
        super().__init__(f"Projection {projection_name} failed on event {event_id}: {message}")


class ProjectionNotFoundError(EventLedgerError, KeyError):
    """Raised when a projection name is not registered with the projector."""

    def __init__(self, projection_name: str) -> None:
        self.projection_name = projection_name
        super().__init__(f"Projection not registered: {projection_name}")

    def __str__(self) -> str:
        return str(self.args[0])


class SnapshotFailureError(EventLedgerError):
    """
    Raised when an explicit snapshot cannot be created or stored.

    Automatic snapshots never raise this; their failures are logged and
    retried at the next interval check.
    """

    def __init__(
        self,
        stream_id: str,
        aggregate_type: str | None,
        message: str,
        original_error: BaseException | None = None,
    ) -> None:
        self.stream_id = stream_id
        self.aggregate_type = aggregate_type
        self.original_error = original_error
        super().__init__(f"Snapshot failed for {aggregate_type} stream {stream_id}: {message}")


class EventNotFoundError(EventLedgerError):
    """Raised when an event cannot be found."""

    def __init__(self, event_id: UUID) -> None:
        self.event_id = event_id
        super().__init__(f"Event not found: {event_id}")


class CausationReferenceWarning(UserWarning):
    """
    Emitted when an append names a causation id that is not a stored event.

    The append still succeeds. The causing event may live in another store
    or not be visible yet.
    """

    def __init__(self, causation_id: UUID, stream_id: str, event_type: str) -> None:
        self.causation_id = causation_id
        self.stream_id = stream_id
        self.event_type = event_type
        super().__init__(
            f"Causation id {causation_id} on {event_type} (stream {stream_id}) "
            f"does not reference a known event"
        )


__all__ = [
    "EventLedgerError",
    "ConcurrencyConflictError",
    "EventValidationError",
    "UnregisteredEventTypeError",
    "StreamTypeMismatchError",
    "DuplicateEventTypeError",
    "UnknownEventTypeError",
    "ProjectionError",
    "ProjectionNotFoundError",
    "SnapshotFailureError",
    "EventNotFoundError",
    "CausationReferenceWarning",
]
