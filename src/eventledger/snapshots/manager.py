"""
Snapshot manager: periodic materialization of stream state.

The manager folds a stream's events through the projection registered for
its stream type and stores the resulting state as a snapshot every
``interval`` versions. Loading a stream then starts from the newest usable
snapshot and replays only the events after it.

Automatic snapshots are best effort. ``maybe_snapshot`` logs and counts a
failure and returns None; the next interval check simply tries again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from eventledger.db import utcnow
from eventledger.exceptions import SnapshotFailureError
from eventledger.observability import (
    ATTR_AGGREGATE_TYPE,
    ATTR_EVENT_COUNT,
    ATTR_SNAPSHOT_INTERVAL,
    ATTR_SNAPSHOT_VERSION,
    ATTR_STREAM_ID,
    ATTR_VERSION,
    Tracer,
    create_tracer,
)
from eventledger.projections.base import Projection
from eventledger.snapshots.in_memory import InMemorySnapshotStore
from eventledger.snapshots.interface import Snapshot, SnapshotStore, check_retain
from eventledger.stores.interface import EventStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadedState:
    """
    State of a stream as returned by SnapshotManager.load_with_snapshot().

    Attributes:
        stream_id: Stream identifier
        aggregate_type: Stream type the state function was chosen by
        version: Stream version folded into ``state`` (0 for an empty stream)
        state: The computed state
        snapshot_version: Version of the snapshot loading started from,
                          None if the stream was replayed from version 1
        events_replayed: Events folded on top of the snapshot
    """

    stream_id: str
    aggregate_type: str
    version: int
    state: dict[str, Any]
    snapshot_version: int | None = None
    events_replayed: int = 0


class SnapshotManager:
    """
    Creates and uses snapshots for registered stream types.

    Example:
        >>> manager = SnapshotManager(store, InMemorySnapshotStore(), interval=100)
        >>> manager.register("User", UserProfileProjection())
        >>> await manager.maybe_snapshot("u1")
        Snapshot(User/u1, v100, schema_v1)
        >>> loaded = await manager.load_with_snapshot("u1")
        >>> loaded.snapshot_version, loaded.events_replayed
        (100, 3)
    """

    def __init__(
        self,
        event_store: EventStore,
        snapshot_store: SnapshotStore | None = None,
        *,
        interval: int = 100,
        retain: int | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Args:
            event_store: Ledger to read streams from
            snapshot_store: Where snapshots are kept
                            (default: a new InMemorySnapshotStore)
            interval: Versions between automatic snapshots
            retain: Newest snapshots kept per stream after each save;
                    None keeps all of them
            tracer: Optional custom Tracer instance
            enable_tracing: Create an OpenTelemetry tracer when no tracer is given
        """
        _check_interval(interval)
        if retain is not None:
            check_retain(retain)
        self._event_store = event_store
        self._snapshot_store = snapshot_store or InMemorySnapshotStore()
        self._interval = interval
        self._retain = retain
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._projections: dict[str, Projection] = {}
        self._failure_count = 0
        self._last_failure: Exception | None = None

    @property
    def snapshot_store(self) -> SnapshotStore:
        return self._snapshot_store

    @property
    def interval(self) -> int:
        return self._interval

    @property
    def failure_count(self) -> int:
        """Automatic snapshots that failed since the manager was created."""
        return self._failure_count

    @property
    def last_failure(self) -> Exception | None:
        return self._last_failure

    def register(self, aggregate_type: str, projection: Projection) -> Projection:
        """Use ``projection`` as the state function for streams of ``aggregate_type``."""
        self._projections[aggregate_type] = projection
        logger.debug(
            "Registered snapshot state function for %s",
            aggregate_type,
            extra={"aggregate_type": aggregate_type, "projection": projection.projection_name},
        )
        return projection

    def is_registered(self, aggregate_type: str) -> bool:
        return aggregate_type in self._projections

    def _projection_for(self, aggregate_type: str) -> Projection:
        try:
            return self._projections[aggregate_type]
        except KeyError:
            raise ValueError(
                f"No state function registered for stream type {aggregate_type!r}"
            ) from None

    async def maybe_snapshot(
        self,
        stream_id: str,
        aggregate_type: str | None = None,
        interval: int | None = None,
    ) -> Snapshot | None:
        """
        Snapshot a stream if ``interval`` versions passed since its last snapshot.

        Unknown streams and stream types without a state function return
        None. Failures while snapshotting are logged, counted and return
        None; they never propagate to the caller.

        Args:
            stream_id: Stream to check
            aggregate_type: Stream type (default: read from the stream)
            interval: Override of the manager's interval

        Returns:
            The new snapshot, or None if none was taken

        Raises:
            ValueError: If the interval override is below 1
        """
        if interval is not None:
            _check_interval(interval)
        every = self._interval if interval is None else interval
        try:
            info = await self._event_store.get_stream(stream_id)
            if info is None:
                return None
            kind = aggregate_type or info.stream_type
            projection = self._projections.get(kind)
            if projection is None:
                return None

            latest = await self._usable_snapshot(stream_id, kind, projection)
            last_version = latest.version if latest else 0
            if info.current_version - last_version < every:
                return None

            with self._tracer.span(
                "eventledger.snapshot_manager.maybe_snapshot",
                {
                    ATTR_STREAM_ID: stream_id,
                    ATTR_AGGREGATE_TYPE: kind,
                    ATTR_VERSION: info.current_version,
                    ATTR_SNAPSHOT_INTERVAL: every,
                },
            ):
                return await self._take(stream_id, kind, projection, latest, info.current_version)
        except Exception as e:
            self._failure_count += 1
            self._last_failure = e
            logger.warning(
                "Automatic snapshot of stream %s failed: %s",
                stream_id,
                e,
                exc_info=True,
                extra={
                    "stream_id": stream_id,
                    "aggregate_type": aggregate_type,
                    "error_type": type(e).__name__,
                    "failure_count": self._failure_count,
                },
            )
            return None

    async def create_snapshot(self, stream_id: str, aggregate_type: str | None = None) -> Snapshot:
        """
        Snapshot a stream at its current version, regardless of the interval.

        Raises:
            SnapshotFailureError: If the stream is unknown, its type has no
                state function, or computing or storing the state fails
        """
        with self._tracer.span(
            "eventledger.snapshot_manager.create_snapshot",
            {ATTR_STREAM_ID: stream_id, ATTR_AGGREGATE_TYPE: aggregate_type or ""},
        ):
            info = await self._event_store.get_stream(stream_id)
            if info is None:
                raise SnapshotFailureError(stream_id, aggregate_type, "stream does not exist")
            kind = aggregate_type or info.stream_type
            projection = self._projections.get(kind)
            if projection is None:
                raise SnapshotFailureError(
                    stream_id, kind, f"no state function registered for {kind!r}"
                )
            try:
                latest = await self._usable_snapshot(stream_id, kind, projection)
                return await self._take(stream_id, kind, projection, latest, info.current_version)
            except SnapshotFailureError:
                raise
            except Exception as e:
                raise SnapshotFailureError(stream_id, kind, str(e), original_error=e) from e

    async def load_with_snapshot(
        self,
        stream_id: str,
        aggregate_type: str | None = None,
    ) -> LoadedState:
        """
        Current state of a stream, starting from its newest usable snapshot.

        Snapshots written with another schema_version than the registered
        projection are ignored and the stream is replayed from version 1.

        Raises:
            ValueError: If the stream type has no state function, or the
                stream is unknown and no aggregate_type was given
        """
        info = await self._event_store.get_stream(stream_id)
        if info is None and aggregate_type is None:
            raise ValueError(f"Stream {stream_id!r} does not exist")
        kind = aggregate_type or info.stream_type  # type: ignore[union-attr]
        projection = self._projection_for(kind)

        with self._tracer.span(
            "eventledger.snapshot_manager.load_with_snapshot",
            {ATTR_STREAM_ID: stream_id, ATTR_AGGREGATE_TYPE: kind},
        ) as span:
            if info is None:
                return LoadedState(stream_id, kind, 0, projection.initial_state())

            snapshot = await self._usable_snapshot(stream_id, kind, projection, fallback=True)
            loaded = await self._fold(
                stream_id, kind, projection, snapshot, info.current_version
            )
            if span is not None:
                span.set_attribute(ATTR_SNAPSHOT_VERSION, loaded.snapshot_version or 0)
                span.set_attribute(ATTR_EVENT_COUNT, loaded.events_replayed)
            return loaded

    async def _usable_snapshot(
        self,
        stream_id: str,
        aggregate_type: str,
        projection: Projection,
        *,
        fallback: bool = False,
    ) -> Snapshot | None:
        """Newest snapshot whose schema matches the projection."""
        try:
            snapshot = await self._snapshot_store.get_snapshot(stream_id, aggregate_type)
        except Exception as e:
            if not fallback:
                raise
            logger.warning(
                "Error loading snapshot for %s/%s: %s. Falling back to full replay.",
                aggregate_type,
                stream_id,
                e,
                extra={"stream_id": stream_id, "aggregate_type": aggregate_type},
            )
            return None

        if snapshot is None:
            return None
        if snapshot.schema_version != projection.schema_version:
            logger.info(
                "Snapshot schema version mismatch for %s/%s: snapshot has v%d, "
                "state function expects v%d. Falling back to full replay.",
                aggregate_type,
                stream_id,
                snapshot.schema_version,
                projection.schema_version,
                extra={"stream_id": stream_id, "aggregate_type": aggregate_type},
            )
            return None
        return snapshot

    async def _fold(
        self,
        stream_id: str,
        aggregate_type: str,
        projection: Projection,
        snapshot: Snapshot | None,
        to_version: int,
    ) -> LoadedState:
        if snapshot is not None:
            state, version = snapshot.state, snapshot.version
        else:
            state, version = projection.initial_state(), 0
        replayed = 0
        if version < to_version:
            async for event in self._event_store.read_stream(
                stream_id, from_version=version + 1, to_version=to_version
            ):
                state = projection.apply(event, state)
                version = event.version
                replayed += 1
        return LoadedState(
            stream_id=stream_id,
            aggregate_type=aggregate_type,
            version=version,
            state=state,
            snapshot_version=snapshot.version if snapshot else None,
            events_replayed=replayed,
        )

    async def _take(
        self,
        stream_id: str,
        aggregate_type: str,
        projection: Projection,
        latest: Snapshot | None,
        to_version: int,
    ) -> Snapshot:
        loaded = await self._fold(stream_id, aggregate_type, projection, latest, to_version)
        if latest is not None and loaded.version == latest.version:
            return latest

        snapshot = Snapshot(
            aggregate_id=stream_id,
            aggregate_type=aggregate_type,
            version=loaded.version,
            state=loaded.state,
            schema_version=projection.schema_version,
            created_at=utcnow(),
        )
        await self._snapshot_store.save_snapshot(snapshot)
        if self._retain is not None:
            await self._snapshot_store.prune(stream_id, aggregate_type, self._retain)

        logger.info(
            "Created snapshot for %s/%s at version %d (schema_version=%d)",
            aggregate_type,
            stream_id,
            snapshot.version,
            snapshot.schema_version,
            extra={
                "stream_id": stream_id,
                "aggregate_type": aggregate_type,
                "version": snapshot.version,
                "events_replayed": loaded.events_replayed,
            },
        )
        return snapshot


def _check_interval(interval: int) -> None:
    if interval < 1:
        raise ValueError(f"interval must be >= 1, got {interval}")


__all__ = ["LoadedState", "SnapshotManager"]
