"""
Projector: incremental, idempotent catch-up of projections.

The projector reads the ledger in global order from each projection's
checkpoint and folds events into projection rows with the projection's pure
``apply``. Each batch ends with one ``ProjectionStore.commit`` that writes
the touched rows and the advanced checkpoint together:

- A crash before the commit loses nothing: the next run starts again from
  the old checkpoint.
- Rows remember the global position of the last event applied to them, and
  events at or below that position are skipped. Re-reading an event whose
  batch was already committed therefore never counts it twice.
- Catch-up is bounded by the head position seen when it starts, and it
  checks ``cancel_event`` between events. When cancelled it commits what
  it has applied and returns.

Projections are isolated from each other and from the append path: a
failing projection raises from its own ``catch_up`` only, and
``catch_up_all`` records the failure and moves on to the next projection.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from eventledger.db import utcnow
from eventledger.events.base import Event
from eventledger.exceptions import (
    ProjectionError,
    ProjectionNotFoundError,
    UnknownEventTypeError,
)
from eventledger.observability import (
    ATTR_EVENTS_PROCESSED,
    ATTR_FROM_POSITION,
    ATTR_HEAD_POSITION,
    ATTR_LAG,
    ATTR_PROJECTION_NAME,
    ATTR_STREAM_ID,
    Tracer,
    create_tracer,
)
from eventledger.projections.base import Projection
from eventledger.projections.store import (
    CheckpointData,
    InMemoryProjectionStore,
    LagMetrics,
    ProjectionRow,
    ProjectionStore,
)
from eventledger.stores.interface import EventStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatchUpResult:
    """
    Result of one projection's catch-up inside catch_up_all().

    Attributes:
        projection_name: Name of the projection
        events_processed: Events applied by this run
        final_position: Checkpoint position after the run (-1 if it
            could not be read)
        completed: True if the projection reached the head position
        error: Exception if catch-up failed, None otherwise
    """

    projection_name: str
    events_processed: int
    final_position: int
    completed: bool
    error: Exception | None = None

    @property
    def success(self) -> bool:
        """Return True if catch-up completed without errors."""
        return self.completed and self.error is None


@dataclass(frozen=True)
class _BatchOutcome:
    applied: int
    checkpoint: CheckpointData
    stopped: bool


class Projector:
    """
    Runs projections over the ledger.

    Example:
        >>> projector = Projector(store, InMemoryProjectionStore())
        >>> projector.register(UserProfileProjection())
        >>> await projector.catch_up("UserProfileProjection")
        2
        >>> await projector.get_state("UserProfileProjection", "u1")
        {'email': 'a@b.com', 'status': 'active', ...}
        >>> (await projector.get_lag("UserProfileProjection")).lag_events
        0
    """

    def __init__(
        self,
        event_store: EventStore,
        projection_store: ProjectionStore | None = None,
        *,
        batch_size: int = 100,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Args:
            event_store: Ledger to read events from
            projection_store: Where rows and checkpoints are kept
                              (default: a new InMemoryProjectionStore)
            batch_size: Events read and committed per batch
            tracer: Optional custom Tracer instance
            enable_tracing: Create an OpenTelemetry tracer when no tracer is given
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._event_store = event_store
        self._store = projection_store or InMemoryProjectionStore()
        self._batch_size = batch_size
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._projections: dict[str, Projection] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def projection_store(self) -> ProjectionStore:
        return self._store

    @property
    def projection_names(self) -> list[str]:
        return list(self._projections)

    def register(self, projection: Projection) -> Projection:
        """
        Register a projection under its projection_name.

        Raises:
            ValueError: If another projection is registered under the same name
        """
        name = projection.projection_name
        existing = self._projections.get(name)
        if existing is not None and existing is not projection:
            raise ValueError(f"A projection named {name!r} is already registered")
        self._projections[name] = projection
        self._locks.setdefault(name, asyncio.Lock())
        logger.debug(
            "Registered projection %s",
            name,
            extra={"projection": name, "event_types": projection.subscribed_to()},
        )
        return projection

    def unregister(self, name: str) -> bool:
        self._locks.pop(name, None)
        return self._projections.pop(name, None) is not None

    def get(self, name: str) -> Projection:
        try:
            return self._projections[name]
        except KeyError:
            raise ProjectionNotFoundError(name) from None

    async def catch_up(self, name: str, *, cancel_event: asyncio.Event | None = None) -> int:
        """
        Apply all events recorded after the projection's checkpoint.

        Args:
            name: Registered projection name
            cancel_event: When set, stop between events after committing
                          the progress made so far

        Returns:
            Number of events applied to projection rows

        Raises:
            ProjectionNotFoundError: If no projection is registered under name
            UnknownEventTypeError: If a strict projection meets an unhandled type
            ProjectionError: If a handler fails; events before the failing one
                are committed and the failing event is retried on the next run
        """
        projection = self.get(name)
        async with self._locks[name]:
            checkpoint = await self._store.get_checkpoint(name)
            head = await self._event_store.get_global_position()
            with self._tracer.span(
                "eventledger.projector.catch_up",
                {
                    ATTR_PROJECTION_NAME: name,
                    ATTR_FROM_POSITION: checkpoint.global_position,
                    ATTR_HEAD_POSITION: head,
                },
            ) as span:
                applied = await self._catch_up(projection, checkpoint, head, cancel_event)
                if span is not None:
                    span.set_attribute(ATTR_EVENTS_PROCESSED, applied)
            return applied

    async def _catch_up(
        self,
        projection: Projection,
        checkpoint: CheckpointData,
        head: int,
        cancel_event: asyncio.Event | None,
    ) -> int:
        name = projection.projection_name
        position = checkpoint.global_position
        total = 0
        while position < head:
            if cancel_event is not None and cancel_event.is_set():
                break
            batch = [
                event
                async for event in self._event_store.read_all(position, limit=self._batch_size)
                if event.global_position <= head
            ]
            if not batch:
                break
            outcome = await self._apply_batch(projection, checkpoint, batch, cancel_event)
            total += outcome.applied
            checkpoint = outcome.checkpoint
            position = checkpoint.global_position
            if outcome.stopped:
                break

        if total:
            logger.info(
                "Projection %s applied %d events, now at position %d",
                name,
                total,
                position,
                extra={"projection": name, "events_processed": total, "position": position},
            )
        return total

    async def _apply_batch(
        self,
        projection: Projection,
        checkpoint: CheckpointData,
        batch: list[Event],
        cancel_event: asyncio.Event | None,
    ) -> _BatchOutcome:
        name = projection.projection_name
        keys = {projection.key_for(event) for event in batch if projection.accepts(event)}
        rows = await self._store.get_rows(name, keys)
        dirty: dict[str, ProjectionRow] = {}
        applied = 0
        last_event: Event | None = None
        failure: Exception | None = None
        stopped = False
        now = utcnow()

        for event in batch:
            if cancel_event is not None and cancel_event.is_set():
                stopped = True
                break
            if projection.accepts(event):
                key = projection.key_for(event)
                row = dirty.get(key) or rows.get(key)
                if row is None:
                    row = ProjectionRow(key, projection.initial_state(), 0)
                if event.global_position > row.last_position:
                    try:
                        new_state = self._apply(projection, event, row.state)
                    except Exception as e:
                        failure = e
                        break
                    dirty[key] = ProjectionRow(key, new_state, event.global_position, now)
                    applied += 1
            last_event = event

        if last_event is not None:
            checkpoint = CheckpointData(
                projection_name=name,
                global_position=last_event.global_position,
                last_event_id=last_event.event_id,
                events_processed=checkpoint.events_processed + applied,
                updated_at=now,
            )
            await self._store.commit(name, list(dirty.values()), checkpoint)

        if failure is not None:
            raise failure
        return _BatchOutcome(applied, checkpoint, stopped)

    def _apply(self, projection: Projection, event: Event, state: dict[str, Any]) -> dict[str, Any]:
        name = projection.projection_name
        try:
            return projection.apply(event, state)
        except UnknownEventTypeError:
            logger.error(
                "Projection %s halted at unhandled event type %s",
                name,
                event.event_type,
                extra={
                    "projection": name,
                    "event_id": str(event.event_id),
                    "event_type": event.event_type,
                    "global_position": event.global_position,
                },
            )
            raise
        except Exception as e:
            logger.error(
                "Projection %s failed on %s at position %d: %s",
                name,
                event.event_type,
                event.global_position,
                e,
                exc_info=True,
                extra={
                    "projection": name,
                    "event_id": str(event.event_id),
                    "event_type": event.event_type,
                    "global_position": event.global_position,
                },
            )
            raise ProjectionError(name, event.event_id, str(e)) from e

    async def catch_up_all(
        self,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> dict[str, CatchUpResult]:
        """
        Catch up every registered projection, isolating failures.

        A failing projection is logged and reported in its CatchUpResult;
        the remaining projections still run.
        """
        results: dict[str, CatchUpResult] = {}
        for name in list(self._projections):
            if cancel_event is not None and cancel_event.is_set():
                break
            results[name] = await self._isolated_catch_up(name, cancel_event)
        return results

    async def _isolated_catch_up(
        self,
        name: str,
        cancel_event: asyncio.Event | None,
    ) -> CatchUpResult:
        applied = 0
        try:
            applied = await self.catch_up(name, cancel_event=cancel_event)
            lag = await self.get_lag(name)
        except Exception as e:
            logger.warning(
                "Catch-up of projection %s failed: %s",
                name,
                e,
                extra={"projection": name, "error_type": type(e).__name__},
            )
            return CatchUpResult(
                projection_name=name,
                events_processed=applied,
                final_position=await self._last_known_position(name),
                completed=False,
                error=e,
            )
        return CatchUpResult(
            projection_name=name,
            events_processed=applied,
            final_position=lag.position,
            completed=lag.is_caught_up,
        )

    async def _last_known_position(self, name: str) -> int:
        """Checkpoint position, or -1 when the projection store can't be read."""
        try:
            return (await self._store.get_checkpoint(name)).global_position
        except Exception:
            logger.debug("Checkpoint of projection %s unavailable", name, exc_info=True)
            return -1

    async def rebuild(self, name: str) -> int:
        """Drop a projection's rows and checkpoint, then replay the whole ledger."""
        self.get(name)
        await self.reset(name)
        return await self.catch_up(name)

    async def reset(self, name: str) -> None:
        """Drop a projection's rows and checkpoint."""
        self.get(name)
        async with self._locks[name]:
            await self._store.reset(name)

    async def get_lag(self, name: str) -> LagMetrics:
        """Checkpoint position against the ledger head."""
        self.get(name)
        checkpoint = await self._store.get_checkpoint(name)
        head = await self._event_store.get_global_position()
        metrics = LagMetrics(
            projection_name=name,
            position=checkpoint.global_position,
            head_position=head,
            events_processed=checkpoint.events_processed,
            updated_at=checkpoint.updated_at,
        )
        if metrics.lag_events:
            logger.debug(
                "Projection %s is %d events behind",
                name,
                metrics.lag_events,
                extra={"projection": name, ATTR_LAG: metrics.lag_events},
            )
        return metrics

    async def get_all_lag(self) -> dict[str, LagMetrics]:
        return {name: await self.get_lag(name) for name in self._projections}

    async def get_state(self, name: str, key: str) -> dict[str, Any] | None:
        """Committed state of one row, None if the row does not exist."""
        self.get(name)
        row = await self._store.get_row(name, key)
        return row.state if row else None

    async def list_states(self, name: str) -> dict[str, dict[str, Any]]:
        """Committed state of every row, by key."""
        self.get(name)
        return {row.key: row.state for row in await self._store.list_rows(name)}

    async def replay_stream(self, name: str, stream_id: str) -> dict[str, Any]:
        """
        Fold a whole stream through a projection from version 1.

        Pure: reads the ledger only and writes nothing, so two calls with no
        appends in between return equal states.
        """
        projection = self.get(name)
        with self._tracer.span(
            "eventledger.projector.replay_stream",
            {ATTR_PROJECTION_NAME: name, ATTR_STREAM_ID: stream_id},
        ):
            state = projection.initial_state()
            async for event in self._event_store.read_stream(stream_id):
                state = projection.apply(event, state)
            return state


__all__ = ["CatchUpResult", "Projector"]
