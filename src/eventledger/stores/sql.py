"""
SQL event store implementation.

Event store on SQLAlchemy's asyncio engine, supporting SQLite (aiosqlite)
and PostgreSQL (asyncpg). Stream versions live in the ``streams`` table and
are advanced by SQLStreamVersionTracker in the same transaction that
inserts the event. The ``uq_events_stream_version`` constraint on
``events (stream_id, version)`` backs this up: a duplicate version is
reported as a ConcurrencyConflictError, never written.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any
from uuid import UUID

from sqlalchemy import bindparam, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine

from eventledger.correlation import CorrelationTracker
from eventledger.db import (
    backend_name,
    begin_transaction,
    from_db_timestamp,
    initialize_schema,
    read_connection,
    to_db_timestamp,
    utcnow,
)
from eventledger.events.base import Event
from eventledger.events.registry import EventTypeRegistry
from eventledger.exceptions import ConcurrencyConflictError
from eventledger.observability import ATTR_DB_SYSTEM, ATTR_STREAM_ID, Tracer
from eventledger.serialization import json_dumps, load_document
from eventledger.stores.interface import AppendResult, EventStore, PendingEvent
from eventledger.stores.versions import SQLStreamVersionTracker, StreamInfo

logger = logging.getLogger(__name__)

# pg_advisory_xact_lock key serializing the assignment of global positions
APPEND_LOCK_KEY = 0x6576_6C65_6467_6572 & 0x7FFF_FFFF_FFFF_FFFF

_EVENT_COLUMNS = """
    global_position, event_id, stream_id, stream_type, event_type, version,
    payload, schema_version, metadata, occurred_at, recorded_at,
    correlation_id, causation_id
"""

_INSERT_EVENT = text(
    """
    INSERT INTO events (
        event_id, stream_id, stream_type, event_type, version, payload,
        schema_version, metadata, occurred_at, recorded_at,
        correlation_id, causation_id
    )
    VALUES (
        :event_id, :stream_id, :stream_type, :event_type, :version, :payload,
        :schema_version, :metadata, :occurred_at, :recorded_at,
        :correlation_id, :causation_id
    )
    RETURNING global_position
    """
)

_SELECT_STREAM_PAGE = text(
    f"""
    SELECT {_EVENT_COLUMNS}
    FROM events
    WHERE stream_id = :stream_id AND version >= :from_version AND version <= :to_version
    ORDER BY version
    LIMIT :limit
    """
)

_SELECT_ALL_PAGE = text(
    f"""
    SELECT {_EVENT_COLUMNS}
    FROM events
    WHERE global_position > :after AND global_position <= :head
    ORDER BY global_position
    LIMIT :limit
    """
)

_SELECT_ALL_PAGE_BY_TYPE = text(
    f"""
    SELECT {_EVENT_COLUMNS}
    FROM events
    WHERE global_position > :after AND global_position <= :head
      AND stream_type IN :stream_types
    ORDER BY global_position
    LIMIT :limit
    """
).bindparams(bindparam("stream_types", expanding=True))

_SELECT_BY_ID = text(f"SELECT {_EVENT_COLUMNS} FROM events WHERE event_id = :event_id")

_SELECT_BY_CORRELATION = text(
    f"""
    SELECT {_EVENT_COLUMNS}
    FROM events
    WHERE correlation_id = :correlation_id
    ORDER BY global_position
    """
)

_SELECT_HEAD = text("SELECT COALESCE(MAX(global_position), 0) FROM events")


def _is_version_conflict(error: IntegrityError) -> bool:
    message = str(error.orig if error.orig is not None else error).lower()
    return "uq_events_stream_version" in message or "events.stream_id, events.version" in message


class SQLEventStore(EventStore):
    """
    SQL implementation of the event store.

    SQLite adaptations:
    - UUIDs and timestamps stored as TEXT (ISO 8601, UTC)
    - JSON stored as TEXT
    - Writers serialized with ``BEGIN IMMEDIATE`` (see eventledger.db.create_engine)

    PostgreSQL adaptations:
    - JSONB payloads and metadata, TIMESTAMPTZ timestamps
    - A transaction-scoped advisory lock taken before the insert, so global
      positions become visible in the order they were assigned and a
      ``read_all`` poller never skips an event that committed late

    Example:
        >>> engine = create_engine("sqlite+aiosqlite:///ledger.db")
        >>> store = SQLEventStore(engine, registry)
        >>> await store.initialize()
        >>> await store.append("acct1", "Account", "AccountOpened", {"owner": "ab"})
    """

    def __init__(
        self,
        engine: AsyncEngine,
        registry: EventTypeRegistry | None = None,
        *,
        correlation: CorrelationTracker | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
        page_size: int = 500,
    ) -> None:
        """
        Args:
            engine: Engine from eventledger.db.create_engine
            registry: Event type registry used to validate appends
            correlation: Correlation/causation tracker
            tracer: Optional custom Tracer instance
            enable_tracing: Create an OpenTelemetry tracer when no tracer is given
            page_size: Rows fetched per query by read_stream and read_all
        """
        super().__init__(
            registry,
            correlation=correlation,
            tracer=tracer,
            enable_tracing=enable_tracing,
        )
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self._engine = engine
        self._backend = backend_name(engine)
        self._versions = SQLStreamVersionTracker(engine)
        self._page_size = page_size

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def versions(self) -> SQLStreamVersionTracker:
        return self._versions

    async def initialize(self) -> None:
        """Create the ledger tables if they do not exist."""
        await initialize_schema(self._engine)

    async def _do_append(self, pending: PendingEvent, expected_version: int | None) -> AppendResult:
        now = utcnow()
        try:
            with self._tracer.span(
                "eventledger.event_store.insert",
                {ATTR_STREAM_ID: pending.stream_id, ATTR_DB_SYSTEM: self._backend},
            ):
                async with begin_transaction(self._engine) as conn:
                    version = await self._versions.reserve_in(
                        conn,
                        pending.stream_id,
                        pending.stream_type,
                        expected_version,
                        event_type=pending.event_type,
                        now=now,
                    )
                    if self._backend == "postgresql":
                        await conn.execute(
                            text("SELECT pg_advisory_xact_lock(:key)"),
                            {"key": APPEND_LOCK_KEY},
                        )
                    result = await conn.execute(
                        _INSERT_EVENT, self._insert_params(pending, version, now)
                    )
                    global_position = int(result.scalar_one())
        except IntegrityError as e:
            if not _is_version_conflict(e):
                raise
            actual = await self.current_version(pending.stream_id)
            logger.debug(
                "Version conflict on %s detected by unique constraint",
                pending.stream_id,
                extra={"stream_id": pending.stream_id, "actual_version": actual},
            )
            raise ConcurrencyConflictError(pending.stream_id, expected_version, actual) from e

        return AppendResult.from_event(pending.to_event(version, global_position, now))

    def _insert_params(self, pending: PendingEvent, version: int, now: Any) -> dict[str, Any]:
        return {
            "event_id": str(pending.event_id),
            "stream_id": pending.stream_id,
            "stream_type": pending.stream_type,
            "event_type": pending.event_type,
            "version": version,
            "payload": json_dumps(pending.payload),
            "schema_version": pending.schema_version,
            "metadata": json_dumps(pending.metadata),
            "occurred_at": to_db_timestamp(pending.occurred_at, self._backend),
            "recorded_at": to_db_timestamp(now, self._backend),
            "correlation_id": str(pending.correlation_id),
            "causation_id": str(pending.causation_id) if pending.causation_id else None,
        }

    async def _do_read_stream(
        self,
        stream_id: str,
        from_version: int,
        to_version: int | None,
    ) -> AsyncIterator[Event]:
        if to_version is None:
            to_version = await self.current_version(stream_id)
        next_version = from_version
        while next_version <= to_version:
            # each page gets its own short read so no lock is held between yields
            async with read_connection(self._engine) as conn:
                result = await conn.execute(
                    _SELECT_STREAM_PAGE,
                    {
                        "stream_id": stream_id,
                        "from_version": next_version,
                        "to_version": to_version,
                        "limit": self._page_size,
                    },
                )
                rows = result.fetchall()
            for row in rows:
                yield self._row_to_event(row)
            if len(rows) < self._page_size:
                return
            next_version = int(rows[-1].version) + 1

    async def _do_read_all(
        self,
        from_position: int,
        limit: int | None,
        stream_types: list[str] | None,
    ) -> AsyncIterator[Event]:
        if stream_types is not None and not stream_types:
            return
        head = await self.get_global_position()
        after = from_position
        remaining = limit
        while after < head and (remaining is None or remaining > 0):
            page_limit = self._page_size if remaining is None else min(self._page_size, remaining)
            params: dict[str, Any] = {"after": after, "head": head, "limit": page_limit}
            statement = _SELECT_ALL_PAGE
            if stream_types is not None:
                statement = _SELECT_ALL_PAGE_BY_TYPE
                params["stream_types"] = list(stream_types)
            async with read_connection(self._engine) as conn:
                rows = (await conn.execute(statement, params)).fetchall()
            for row in rows:
                yield self._row_to_event(row)
            if len(rows) < page_limit:
                return
            after = int(rows[-1].global_position)
            if remaining is not None:
                remaining -= len(rows)

    async def get_event(self, event_id: UUID) -> Event | None:
        async with read_connection(self._engine) as conn:
            row = (await conn.execute(_SELECT_BY_ID, {"event_id": str(event_id)})).fetchone()
        return self._row_to_event(row) if row else None

    async def get_events_by_correlation(self, correlation_id: UUID) -> list[Event]:
        async with read_connection(self._engine) as conn:
            result = await conn.execute(
                _SELECT_BY_CORRELATION, {"correlation_id": str(correlation_id)}
            )
            rows = result.fetchall()
        return [self._row_to_event(row) for row in rows]

    async def current_version(self, stream_id: str) -> int:
        return await self._versions.current_version(stream_id)

    async def get_stream(self, stream_id: str) -> StreamInfo | None:
        return await self._versions.get_stream(stream_id)

    async def get_global_position(self) -> int:
        async with read_connection(self._engine) as conn:
            return int((await conn.execute(_SELECT_HEAD)).scalar_one())

    @staticmethod
    def _row_to_event(row: Any) -> Event:
        return Event(
            event_id=UUID(str(row.event_id)),
            stream_id=row.stream_id,
            stream_type=row.stream_type,
            event_type=row.event_type,
            version=int(row.version),
            payload=load_document(row.payload),
            schema_version=int(row.schema_version),
            metadata=load_document(row.metadata),
            occurred_at=from_db_timestamp(row.occurred_at),
            recorded_at=from_db_timestamp(row.recorded_at),
            global_position=int(row.global_position),
            correlation_id=UUID(str(row.correlation_id)),
            causation_id=UUID(str(row.causation_id)) if row.causation_id else None,
        )


__all__ = ["APPEND_LOCK_KEY", "SQLEventStore"]
