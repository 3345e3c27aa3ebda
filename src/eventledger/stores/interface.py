"""
Event store interface and core data structures.

The event store is the source of truth of the ledger. It is the only
writer of events and exposes them by stream (in version order) and across
all streams (in recording order).

This module provides:
- PendingEvent: A validated event that has not been assigned a version yet
- AppendResult: Result of appending an event
- EventStore: Abstract base class for event store implementations
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from eventledger.correlation import CorrelationTracker
from eventledger.events.base import Event
from eventledger.events.registry import EventTypeRegistry, default_registry
from eventledger.observability import (
    ATTR_CAUSATION_ID,
    ATTR_CORRELATION_ID,
    ATTR_EVENT_TYPE,
    ATTR_EXPECTED_VERSION,
    ATTR_FROM_POSITION,
    ATTR_FROM_VERSION,
    ATTR_STREAM_ID,
    ATTR_STREAM_TYPE,
    Tracer,
    create_tracer,
)
from eventledger.stores.versions import StreamInfo, validate_expected_version

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingEvent:
    """
    A validated event waiting for its version and global position.

    Built by EventStore.append() and handed to the backend's _do_append().
    """

    stream_id: str
    stream_type: str
    event_type: str
    payload: dict[str, Any]
    correlation_id: UUID
    schema_version: int = 1
    metadata: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    causation_id: UUID | None = None
    event_id: UUID = field(default_factory=uuid4)

    def to_event(self, version: int, global_position: int, recorded_at: datetime) -> Event:
        """Materialize the stored event once version and position are assigned."""
        return Event(
            event_id=self.event_id,
            stream_id=self.stream_id,
            stream_type=self.stream_type,
            event_type=self.event_type,
            version=version,
            payload=self.payload,
            schema_version=self.schema_version,
            metadata=self.metadata,
            occurred_at=self.occurred_at,
            recorded_at=recorded_at,
            global_position=global_position,
            correlation_id=self.correlation_id,
            causation_id=self.causation_id,
        )


@dataclass(frozen=True)
class AppendResult:
    """
    Result of a successful append.

    Failed appends raise instead of returning a result.

    Attributes:
        event_id: Identifier of the new event
        stream_id: Stream the event was appended to
        version: Version assigned to the event (the stream's new version)
        global_position: Recording position of the event
        correlation_id: Correlation id stored with the event
    """

    event_id: UUID
    stream_id: str
    version: int
    global_position: int
    correlation_id: UUID

    @classmethod
    def from_event(cls, event: Event) -> AppendResult:
        return cls(
            event_id=event.event_id,
            stream_id=event.stream_id,
            version=event.version,
            global_position=event.global_position,
            correlation_id=event.correlation_id,
        )


class EventStore(ABC):
    """
    Abstract base class for event stores.

    ``append`` validates the event against the registry, resolves its
    correlation and causation ids and delegates to ``_do_append``, which
    must reserve the next stream version and persist the event as one
    atomic step.

    Concrete implementations:
    - InMemoryEventStore: For testing and development
    - SQLEventStore: SQLite or PostgreSQL through SQLAlchemy

    Example:
        >>> result = await store.append(
        ...     "u1", "User", "UserRegistered",
        ...     {"email": "a@b.com", "username": "ab"},
        ... )
        >>> result.version
        1
        >>> async for event in store.read_stream("u1"):
        ...     print(event.event_type, event.version)
    """

    def __init__(
        self,
        registry: EventTypeRegistry | None = None,
        *,
        correlation: CorrelationTracker | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Args:
            registry: Event type registry used to validate appends
                      (defaults to the module-level default_registry)
            correlation: Correlation/causation tracker
            tracer: Optional custom Tracer instance
            enable_tracing: Create an OpenTelemetry tracer when no tracer is given
        """
        self._registry = registry if registry is not None else default_registry
        self._correlation = correlation or CorrelationTracker()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def registry(self) -> EventTypeRegistry:
        return self._registry

    @property
    def correlation(self) -> CorrelationTracker:
        return self._correlation

    async def append(
        self,
        stream_id: str,
        stream_type: str,
        event_type: str,
        payload: dict[str, Any],
        *,
        expected_version: int | None = None,
        metadata: dict[str, Any] | None = None,
        correlation_id: UUID | None = None,
        causation_id: UUID | None = None,
        occurred_at: datetime | None = None,
    ) -> AppendResult:
        """
        Append one event to a stream.

        The stream is created on its first append. The check of
        ``expected_version`` and the version increment happen atomically
        with the insert; a failed append persists nothing. The store never
        retries on its own.

        Args:
            stream_id: Stream to append to
            stream_type: Stream type; fixed by the stream's first append
            event_type: Registered event type name
            payload: Event body, validated against the event type's schema
            expected_version: None/ExpectedVersion.ANY to skip the check,
                ExpectedVersion.NO_STREAM (0), ExpectedVersion.STREAM_EXISTS,
                or the exact current version of the stream
            metadata: Optional key/value metadata
            correlation_id: Groups events of one logical operation; inherited
                from the causing event or generated when absent
            causation_id: Id of the event that caused this one
            occurred_at: When the fact happened (default: now)

        Returns:
            AppendResult with the new event id, version and global position

        Raises:
            ConcurrencyConflictError: If expected_version does not match
            EventValidationError: If the event type is unregistered, the payload
                fails its schema or the stream type differs from the stream's
        """
        if not stream_id or not stream_type:
            raise ValueError("stream_id and stream_type must be non-empty strings")
        validate_expected_version(expected_version)

        with self._tracer.span(
            "eventledger.event_store.append",
            {
                ATTR_STREAM_ID: stream_id,
                ATTR_STREAM_TYPE: stream_type,
                ATTR_EVENT_TYPE: event_type,
                ATTR_EXPECTED_VERSION: -1 if expected_version is None else expected_version,
            },
        ):
            normalized, schema_version = self._registry.validate(event_type, payload)
            context = await self._correlation.resolve(
                self,
                correlation_id=correlation_id,
                causation_id=causation_id,
                stream_id=stream_id,
                event_type=event_type,
            )
            pending = PendingEvent(
                stream_id=stream_id,
                stream_type=stream_type,
                event_type=event_type,
                payload=normalized,
                schema_version=schema_version,
                metadata=copy.deepcopy(metadata or {}),
                occurred_at=occurred_at or datetime.now(UTC),
                correlation_id=context.correlation_id,
                causation_id=context.causation_id,
            )
            result = await self._do_append(pending, expected_version)

        logger.debug(
            "Appended %s to %s at version %d",
            event_type,
            stream_id,
            result.version,
            extra={
                "stream_id": stream_id,
                "event_type": event_type,
                "version": result.version,
                "global_position": result.global_position,
                ATTR_CORRELATION_ID: str(result.correlation_id),
                ATTR_CAUSATION_ID: str(causation_id) if causation_id else None,
            },
        )
        return result

    @abstractmethod
    async def _do_append(self, pending: PendingEvent, expected_version: int | None) -> AppendResult:
        """Reserve the next version and persist the event atomically."""
        pass

    def read_stream(
        self,
        stream_id: str,
        from_version: int = 1,
        to_version: int | None = None,
    ) -> AsyncIterator[Event]:
        """
        Read a stream's events in version order.

        The iterator is lazy and finite; calling read_stream again restarts
        from ``from_version``.

        Args:
            stream_id: Stream to read
            from_version: First version to return (inclusive, default 1)
            to_version: Last version to return (inclusive, default: latest)
        """
        if from_version < 1:
            raise ValueError(f"from_version must be >= 1, got {from_version}")
        if to_version is not None and to_version < from_version:
            raise ValueError("to_version must be >= from_version")
        with self._tracer.span(
            "eventledger.event_store.read_stream",
            {ATTR_STREAM_ID: stream_id, ATTR_FROM_VERSION: from_version},
        ):
            return self._do_read_stream(stream_id, from_version, to_version)

    @abstractmethod
    def _do_read_stream(
        self,
        stream_id: str,
        from_version: int,
        to_version: int | None,
    ) -> AsyncIterator[Event]:
        pass

    def read_all(
        self,
        from_position: int = 0,
        *,
        limit: int | None = None,
        stream_types: list[str] | None = None,
    ) -> AsyncIterator[Event]:
        """
        Read events of all streams in global recording order.

        Returns events with ``global_position > from_position``. The read is
        bounded by the head position when iteration starts, so it is finite;
        poll again with the last seen position to pick up newer events.

        Args:
            from_position: Exclusive cursor (0 reads from the beginning)
            limit: Maximum number of events to return
            stream_types: Only return events of these stream types
        """
        if from_position < 0:
            raise ValueError(f"from_position must be >= 0, got {from_position}")
        if limit is not None and limit < 0:
            raise ValueError("limit must be >= 0")
        with self._tracer.span(
            "eventledger.event_store.read_all",
            {ATTR_FROM_POSITION: from_position},
        ):
            return self._do_read_all(from_position, limit, stream_types)

    @abstractmethod
    def _do_read_all(
        self,
        from_position: int,
        limit: int | None,
        stream_types: list[str] | None,
    ) -> AsyncIterator[Event]:
        pass

    @abstractmethod
    async def get_event(self, event_id: UUID) -> Event | None:
        """Get one event by id, None if it is not stored."""
        pass

    async def event_exists(self, event_id: UUID) -> bool:
        return await self.get_event(event_id) is not None

    @abstractmethod
    async def get_events_by_correlation(self, correlation_id: UUID) -> list[Event]:
        """All events with a correlation id, in global order."""
        pass

    @abstractmethod
    async def current_version(self, stream_id: str) -> int:
        """Current version of a stream, 0 if the stream is unknown."""
        pass

    @abstractmethod
    async def get_stream(self, stream_id: str) -> StreamInfo | None:
        """Metadata of a stream, None if the stream is unknown."""
        pass

    @abstractmethod
    async def get_global_position(self) -> int:
        """Global position of the newest event, 0 if the store is empty."""
        pass


__all__ = ["AppendResult", "EventStore", "PendingEvent"]
