"""
Correlation and causation tracking.

Every stored event carries a correlation id that groups all events of one
logical operation, possibly across many streams, and an optional causation
id naming the event that triggered it. The tracker fills these in at append
time and answers tracing queries afterwards. It only propagates metadata and
never changes the outcome of an append: a causation id that does not resolve
is reported as a CausationReferenceWarning and the append proceeds.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID, uuid4

from eventledger.events.base import Event
from eventledger.exceptions import CausationReferenceWarning, EventNotFoundError

logger = logging.getLogger(__name__)


class EventLookup(Protocol):
    """The part of an event store the tracker reads from."""

    async def get_event(self, event_id: UUID) -> Event | None: ...

    async def get_events_by_correlation(self, correlation_id: UUID) -> list[Event]: ...


@dataclass(frozen=True)
class CorrelationContext:
    """
    Resolved correlation and causation ids for one append.

    Attributes:
        correlation_id: Correlation id to store
        causation_id: Causation id to store, as given by the caller
        causation_resolved: None when no causation id was given, otherwise
            whether it matched a stored event
    """

    correlation_id: UUID
    causation_id: UUID | None = None
    causation_resolved: bool | None = None


class CorrelationTracker:
    """
    Resolves correlation/causation ids on append and traces event chains.

    Args:
        validate_causation: Look up causation ids and warn on unknown ones.
            Disable when causing events live in another store.

    Example:
        >>> tracker = CorrelationTracker()
        >>> ctx = await tracker.resolve(store, causation_id=order_placed.event_id)
        >>> ctx.correlation_id == order_placed.correlation_id
        True
    """

    def __init__(self, *, validate_causation: bool = True) -> None:
        self._validate_causation = validate_causation
        self._unresolved_causations = 0

    @property
    def validate_causation(self) -> bool:
        return self._validate_causation

    @property
    def unresolved_causations(self) -> int:
        """Number of appends whose causation id did not match a stored event."""
        return self._unresolved_causations

    async def resolve(
        self,
        lookup: EventLookup,
        *,
        correlation_id: UUID | None = None,
        causation_id: UUID | None = None,
        stream_id: str = "",
        event_type: str = "",
    ) -> CorrelationContext:
        """
        Resolve the ids to store with a new event.

        A missing correlation id is inherited from the causing event when
        that event is found, and generated fresh otherwise.
        """
        if causation_id is None:
            return CorrelationContext(correlation_id or uuid4())

        if not self._validate_causation:
            return CorrelationContext(correlation_id or uuid4(), causation_id)

        cause = await lookup.get_event(causation_id)
        if cause is None:
            self._unresolved_causations += 1
            logger.warning(
                "Causation id %s on %s (stream %s) does not reference a known event",
                causation_id,
                event_type,
                stream_id,
                extra={
                    "causation_id": str(causation_id),
                    "stream_id": stream_id,
                    "event_type": event_type,
                },
            )
            warnings.warn(
                CausationReferenceWarning(causation_id, stream_id, event_type),
                stacklevel=4,
            )
            return CorrelationContext(correlation_id or uuid4(), causation_id, False)

        return CorrelationContext(correlation_id or cause.correlation_id, causation_id, True)

    async def trace(self, lookup: EventLookup, correlation_id: UUID) -> list[Event]:
        """All events of one logical operation, in global order."""
        events = await lookup.get_events_by_correlation(correlation_id)
        return sorted(events, key=lambda e: e.global_position)

    async def causal_chain(self, lookup: EventLookup, event_id: UUID) -> list[Event]:
        """
        Walk causation links from an event back to its root.

        Returns:
            Events from the root cause to the given event. The walk stops at
            the first causation id that is not stored.

        Raises:
            EventNotFoundError: If event_id itself is not stored
        """
        event = await lookup.get_event(event_id)
        if event is None:
            raise EventNotFoundError(event_id)

        chain = [event]
        seen = {event.event_id}
        while event.causation_id is not None and event.causation_id not in seen:
            cause = await lookup.get_event(event.causation_id)
            if cause is None:
                break
            chain.append(cause)
            seen.add(cause.event_id)
            event = cause
        chain.reverse()
        return chain


__all__ = ["CorrelationContext", "CorrelationTracker", "EventLookup"]
