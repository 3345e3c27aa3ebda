"""
EventLedger: the application-facing entry point.

The ledger wires an event store, a projector and a snapshot manager
together and runs the post-append work explicitly, in order:

1. ``EventStore.append`` validates and records the event.
2. If a state function is registered for the stream type,
   ``SnapshotManager.maybe_snapshot`` checks the snapshot interval. It
   never fails the append.
3. With ``sync_projections`` enabled, ``Projector.catch_up_all`` brings
   every projection to the new head. Projection failures are isolated and
   reported in the logs, not raised.

Without ``sync_projections`` projections are caught up by the background
``ProjectionRunner`` (``ledger.runner``) or by explicit ``catch_up`` calls.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from datetime import datetime
from types import TracebackType
from typing import Any, Self
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncEngine

from eventledger.config import LedgerConfig
from eventledger.correlation import CorrelationTracker
from eventledger.db import create_engine
from eventledger.events.base import Event
from eventledger.events.registry import EventTypeRegistry
from eventledger.observability import Tracer
from eventledger.projections.base import Projection
from eventledger.projections.projector import CatchUpResult, Projector
from eventledger.projections.runner import ProjectionRunner
from eventledger.projections.sql_store import SQLProjectionStore
from eventledger.projections.store import InMemoryProjectionStore, LagMetrics
from eventledger.snapshots.in_memory import InMemorySnapshotStore
from eventledger.snapshots.manager import LoadedState, SnapshotManager
from eventledger.snapshots.sql import SQLSnapshotStore
from eventledger.stores.in_memory import InMemoryEventStore
from eventledger.stores.interface import AppendResult, EventStore
from eventledger.stores.sql import SQLEventStore

logger = logging.getLogger(__name__)


class EventLedger:
    """
    Event store, projections and snapshots behind one object.

    Example:
        >>> async with await EventLedger.from_config(LedgerConfig(database_url=url)) as ledger:
        ...     ledger.register_projection(UserProfileProjection())
        ...     ledger.register_state_function("User", UserProfileProjection())
        ...     result = await ledger.append("u1", "User", "UserRegistered", {...})
        ...     await ledger.catch_up("UserProfileProjection")
    """

    def __init__(
        self,
        event_store: EventStore,
        projector: Projector,
        snapshots: SnapshotManager,
        *,
        sync_projections: bool = False,
        poll_interval: float = 1.0,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._store = event_store
        self._projector = projector
        self._snapshots = snapshots
        self._sync_projections = sync_projections
        self._runner = ProjectionRunner(projector, poll_interval=poll_interval)
        self._engine = engine

    @classmethod
    def in_memory(
        cls,
        registry: EventTypeRegistry | None = None,
        *,
        config: LedgerConfig | None = None,
        tracer: Tracer | None = None,
    ) -> EventLedger:
        """Ledger kept entirely in process memory, for tests and development."""
        config = config or LedgerConfig()
        store = InMemoryEventStore(
            registry,
            correlation=CorrelationTracker(validate_causation=config.validate_causation),
            tracer=tracer,
            enable_tracing=config.enable_tracing,
        )
        return cls._assemble(
            store,
            InMemoryProjectionStore(),
            InMemorySnapshotStore(),
            config,
            tracer,
        )

    @classmethod
    async def from_config(
        cls,
        config: LedgerConfig,
        registry: EventTypeRegistry | None = None,
        *,
        tracer: Tracer | None = None,
    ) -> EventLedger:
        """
        Ledger backed by the database at ``config.database_url``.

        Creates the engine and the ledger tables if they do not exist.
        """
        engine = create_engine(config.database_url, sqlite_busy_timeout=config.sqlite_busy_timeout)
        store = SQLEventStore(
            engine,
            registry,
            correlation=CorrelationTracker(validate_causation=config.validate_causation),
            tracer=tracer,
            enable_tracing=config.enable_tracing,
        )
        try:
            await store.initialize()
        except Exception:
            await engine.dispose()
            raise
        return cls._assemble(
            store,
            SQLProjectionStore(engine, tracer=tracer, enable_tracing=config.enable_tracing),
            SQLSnapshotStore(engine, tracer=tracer, enable_tracing=config.enable_tracing),
            config,
            tracer,
            engine=engine,
        )

    @classmethod
    def _assemble(
        cls,
        store: EventStore,
        projection_store: InMemoryProjectionStore | SQLProjectionStore,
        snapshot_store: InMemorySnapshotStore | SQLSnapshotStore,
        config: LedgerConfig,
        tracer: Tracer | None,
        *,
        engine: AsyncEngine | None = None,
    ) -> EventLedger:
        projector = Projector(
            store,
            projection_store,
            batch_size=config.projection_batch_size,
            tracer=tracer,
            enable_tracing=config.enable_tracing,
        )
        snapshots = SnapshotManager(
            store,
            snapshot_store,
            interval=config.snapshot_interval,
            retain=config.snapshot_retain,
            tracer=tracer,
            enable_tracing=config.enable_tracing,
        )
        return cls(
            store,
            projector,
            snapshots,
            sync_projections=config.sync_projections,
            poll_interval=config.poll_interval,
            engine=engine,
        )

    @property
    def event_store(self) -> EventStore:
        return self._store

    @property
    def projector(self) -> Projector:
        return self._projector

    @property
    def snapshots(self) -> SnapshotManager:
        return self._snapshots

    @property
    def runner(self) -> ProjectionRunner:
        return self._runner

    @property
    def registry(self) -> EventTypeRegistry:
        return self._store.registry

    def register_projection(self, projection: Projection) -> Projection:
        return self._projector.register(projection)

    def register_state_function(self, stream_type: str, projection: Projection) -> Projection:
        """Snapshot streams of ``stream_type`` with ``projection`` as their state function."""
        return self._snapshots.register(stream_type, projection)

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
        Append an event, then run the snapshot check and synchronous projections.

        Only the append itself can raise; see ``EventStore.append``.
        """
        result = await self._store.append(
            stream_id,
            stream_type,
            event_type,
            payload,
            expected_version=expected_version,
            metadata=metadata,
            correlation_id=correlation_id,
            causation_id=causation_id,
            occurred_at=occurred_at,
        )
        if self._snapshots.is_registered(stream_type):
            await self._snapshots.maybe_snapshot(stream_id, stream_type)
        if self._sync_projections:
            await self._run_sync_projections(result)
        return result

    async def _run_sync_projections(self, result: AppendResult) -> None:
        # the event is committed at this point; nothing here may fail the append
        try:
            outcomes = await self._projector.catch_up_all()
        except Exception as e:
            logger.warning(
                "Synchronous projections after %s failed: %s",
                result.event_id,
                e,
                exc_info=True,
                extra={"stream_id": result.stream_id, "error_type": type(e).__name__},
            )
            return
        failed = sorted(name for name, outcome in outcomes.items() if outcome.error is not None)
        if failed:
            logger.warning(
                "Projections %s lag behind position %d",
                ", ".join(failed),
                result.global_position,
                extra={"stream_id": result.stream_id, "projections": failed},
            )

    def read_stream(
        self,
        stream_id: str,
        from_version: int = 1,
        to_version: int | None = None,
    ) -> AsyncIterator[Event]:
        return self._store.read_stream(stream_id, from_version, to_version)

    def read_all(
        self,
        from_position: int = 0,
        *,
        limit: int | None = None,
        stream_types: list[str] | None = None,
    ) -> AsyncIterator[Event]:
        return self._store.read_all(from_position, limit=limit, stream_types=stream_types)

    async def get_event(self, event_id: UUID) -> Event | None:
        return await self._store.get_event(event_id)

    async def current_version(self, stream_id: str) -> int:
        return await self._store.current_version(stream_id)

    async def trace(self, correlation_id: UUID) -> list[Event]:
        """All events of one logical operation, in global order."""
        return await self._store.correlation.trace(self._store, correlation_id)

    async def causal_chain(self, event_id: UUID) -> list[Event]:
        """Causation chain ending at ``event_id``, root first."""
        return await self._store.correlation.causal_chain(self._store, event_id)

    async def catch_up(self, name: str) -> int:
        return await self._projector.catch_up(name)

    async def catch_up_all(self) -> dict[str, CatchUpResult]:
        return await self._projector.catch_up_all()

    async def get_lag(self, name: str) -> LagMetrics:
        return await self._projector.get_lag(name)

    async def get_state(self, name: str, key: str) -> dict[str, Any] | None:
        return await self._projector.get_state(name, key)

    async def load(self, stream_id: str, stream_type: str | None = None) -> LoadedState:
        """Current state of a stream through its registered state function."""
        return await self._snapshots.load_with_snapshot(stream_id, stream_type)

    async def close(self) -> None:
        """Stop the projection runner and dispose of the engine."""
        try:
            if self._runner.is_running:
                await self._runner.stop()
        finally:
            if self._engine is not None:
                await self._engine.dispose()
                logger.debug("Disposed ledger engine")

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()


__all__ = ["EventLedger"]
