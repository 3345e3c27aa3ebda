"""
In-memory event store implementation.

Useful for testing and development. Not suitable for production
as all events are lost when the process terminates.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator
from uuid import UUID

from eventledger.correlation import CorrelationTracker
from eventledger.db import utcnow
from eventledger.events.base import Event
from eventledger.events.registry import EventTypeRegistry
from eventledger.observability import Tracer
from eventledger.stores.interface import AppendResult, EventStore, PendingEvent
from eventledger.stores.versions import InMemoryStreamVersionTracker, StreamInfo


class InMemoryEventStore(EventStore):
    """
    In-memory implementation of the event store.

    Stored events are never handed out: reads return deep copies, so
    mutating a returned payload leaves the log unchanged.

    Thread-safety:
        Appends are serialized by an ``asyncio.Lock``: the version
        reservation and the write to the log happen under the same lock, so
        concurrent tasks on one event loop see either the whole append or
        none of it.

    Example:
        >>> store = InMemoryEventStore(registry)
        >>> result = await store.append("u1", "User", "UserRegistered", payload)
        >>> result.version
        1

    Attributes:
        _log: All events in global order (index = global_position - 1)
        _streams: Events of each stream in version order
        _by_id: Events indexed by event_id
        _by_correlation: Events indexed by correlation_id
    """

    def __init__(
        self,
        registry: EventTypeRegistry | None = None,
        *,
        correlation: CorrelationTracker | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        super().__init__(
            registry,
            correlation=correlation,
            tracer=tracer,
            enable_tracing=enable_tracing,
        )
        self._versions = InMemoryStreamVersionTracker()
        self._log: list[Event] = []
        self._streams: dict[str, list[Event]] = defaultdict(list)
        self._by_id: dict[UUID, Event] = {}
        self._by_correlation: dict[UUID, list[Event]] = defaultdict(list)
        self._lock = asyncio.Lock()

    @property
    def versions(self) -> InMemoryStreamVersionTracker:
        return self._versions

    async def _do_append(self, pending: PendingEvent, expected_version: int | None) -> AppendResult:
        async with self._lock:
            now = utcnow()
            version = await self._versions.reserve_next_version(
                pending.stream_id,
                pending.stream_type,
                expected_version,
                event_type=pending.event_type,
                now=now,
            )
            event = pending.to_event(version, len(self._log) + 1, now)
            self._log.append(event)
            self._streams[event.stream_id].append(event)
            self._by_id[event.event_id] = event
            self._by_correlation[event.correlation_id].append(event)
            return AppendResult.from_event(event)

    async def _do_read_stream(
        self,
        stream_id: str,
        from_version: int,
        to_version: int | None,
    ) -> AsyncIterator[Event]:
        # versions are 1..N, so list index = version - 1
        events = self._streams.get(stream_id, [])
        end = len(events) if to_version is None else min(to_version, len(events))
        for index in range(from_version - 1, end):
            yield _detached(events[index])

    async def _do_read_all(
        self,
        from_position: int,
        limit: int | None,
        stream_types: list[str] | None,
    ) -> AsyncIterator[Event]:
        head = len(self._log)
        returned = 0
        for index in range(from_position, head):
            if limit is not None and returned >= limit:
                return
            event = self._log[index]
            if stream_types is not None and event.stream_type not in stream_types:
                continue
            returned += 1
            yield _detached(event)

    async def get_event(self, event_id: UUID) -> Event | None:
        event = self._by_id.get(event_id)
        return _detached(event) if event else None

    async def get_events_by_correlation(self, correlation_id: UUID) -> list[Event]:
        return [_detached(event) for event in self._by_correlation.get(correlation_id, [])]

    async def current_version(self, stream_id: str) -> int:
        return await self._versions.current_version(stream_id)

    async def get_stream(self, stream_id: str) -> StreamInfo | None:
        return await self._versions.get_stream(stream_id)

    async def get_global_position(self) -> int:
        return len(self._log)

    async def clear(self) -> None:
        """Drop all events and streams (mainly for tests)."""
        async with self._lock:
            self._log.clear()
            self._streams.clear()
            self._by_id.clear()
            self._by_correlation.clear()
            self._versions.clear()

    def get_event_count(self) -> int:
        return len(self._log)


def _detached(event: Event) -> Event:
    # payload and metadata are plain dicts; a caller mutating them must not
    # reach the stored log
    return event.model_copy(deep=True)


__all__ = ["InMemoryEventStore"]
