"""
Stream version tracking.

The tracker is the single source of truth for the version a stream is at.
``reserve_next_version`` is the concurrency control point of the ledger: it
compares the caller's expected version with the stream's current version and
increments it in one atomic step, so at most one append can claim any given
version of a stream.

Two implementations are provided:

- InMemoryStreamVersionTracker: a dict guarded by an ``asyncio.Lock``
- SQLStreamVersionTracker: one row per stream in the ``streams`` table,
  advanced with conditional ``INSERT .. ON CONFLICT`` / ``UPDATE .. WHERE``
  statements inside the caller's transaction
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from eventledger.db import (
    backend_name,
    begin_transaction,
    from_db_timestamp,
    read_connection,
    to_db_timestamp,
    utcnow,
)
from eventledger.exceptions import ConcurrencyConflictError, StreamTypeMismatchError


class ExpectedVersion:
    """
    Constants for expected version in append operations.

    - ANY: Don't check version (same as passing None)
    - NO_STREAM: Expect the stream to not exist yet
    - STREAM_EXISTS: Expect the stream to have at least one event

    Any positive integer expects the stream to be at exactly that version.
    """

    ANY: int = -1
    NO_STREAM: int = 0
    STREAM_EXISTS: int = -2


@dataclass(frozen=True)
class StreamInfo:
    """
    Metadata row of a stream.

    Attributes:
        stream_id: Stream identifier
        stream_type: Type fixed by the first append
        current_version: Version of the newest event (equals event_count)
        event_count: Number of events in the stream
        created_at: When the first event was appended
        last_event_at: When the newest event was appended
        is_active: Informational flag stored with the stream row; appends
            do not consult it
    """

    stream_id: str
    stream_type: str
    current_version: int
    event_count: int
    created_at: datetime
    last_event_at: datetime | None = None
    is_active: bool = True


def validate_expected_version(expected_version: int | None) -> None:
    """Reject expected versions that are neither a version nor a constant."""
    if expected_version is None:
        return
    if isinstance(expected_version, bool) or not isinstance(expected_version, int):
        raise TypeError(f"expected_version must be an int or None, got {expected_version!r}")
    if expected_version < ExpectedVersion.STREAM_EXISTS:
        raise ValueError(
            f"expected_version must be >= 0 or an ExpectedVersion constant, got {expected_version}"
        )


def check_expected_version(
    stream_id: str,
    expected_version: int | None,
    current_version: int,
) -> None:
    """
    Compare an expected version with a stream's current version.

    Raises:
        ConcurrencyConflictError: If the expectation does not hold
    """
    if expected_version is None or expected_version == ExpectedVersion.ANY:
        return
    if expected_version == ExpectedVersion.STREAM_EXISTS:
        matches = current_version > 0
    else:
        matches = current_version == expected_version
    if not matches:
        raise ConcurrencyConflictError(stream_id, expected_version, current_version)


class StreamVersionTracker(ABC):
    """Abstract base class for stream version trackers."""

    @abstractmethod
    async def current_version(self, stream_id: str) -> int:
        """Current version of a stream, 0 if the stream is unknown."""
        pass

    @abstractmethod
    async def get_stream(self, stream_id: str) -> StreamInfo | None:
        """Metadata of a stream, None if the stream is unknown."""
        pass

    @abstractmethod
    async def reserve_next_version(
        self,
        stream_id: str,
        stream_type: str,
        expected_version: int | None = None,
    ) -> int:
        """
        Atomically check the expected version and claim the next one.

        Creates the stream on its first reservation.

        Args:
            stream_id: Stream to advance
            stream_type: Stream type, must match the stream's type if it exists
            expected_version: None/ANY, NO_STREAM, STREAM_EXISTS or an exact version

        Returns:
            The reserved version (previous version + 1)

        Raises:
            ConcurrencyConflictError: If expected_version does not match
            StreamTypeMismatchError: If the stream exists with another type
        """
        pass


class InMemoryStreamVersionTracker(StreamVersionTracker):
    """
    In-memory version tracker.

    Reservations are serialized by an ``asyncio.Lock``, which makes them safe
    for concurrent tasks on one event loop.
    """

    def __init__(self) -> None:
        self._streams: dict[str, StreamInfo] = {}
        self._lock = asyncio.Lock()

    async def current_version(self, stream_id: str) -> int:
        info = self._streams.get(stream_id)
        return info.current_version if info else 0

    async def get_stream(self, stream_id: str) -> StreamInfo | None:
        return self._streams.get(stream_id)

    async def reserve_next_version(
        self,
        stream_id: str,
        stream_type: str,
        expected_version: int | None = None,
        *,
        event_type: str = "",
        now: datetime | None = None,
    ) -> int:
        validate_expected_version(expected_version)
        async with self._lock:
            now = now or utcnow()
            info = self._streams.get(stream_id)
            if info is not None and info.stream_type != stream_type:
                raise StreamTypeMismatchError(stream_id, info.stream_type, stream_type, event_type)
            check_expected_version(stream_id, expected_version, info.current_version if info else 0)

            if info is None:
                info = StreamInfo(stream_id, stream_type, 1, 1, now, now)
            else:
                info = replace(
                    info,
                    current_version=info.current_version + 1,
                    event_count=info.event_count + 1,
                    last_event_at=now,
                )
            self._streams[stream_id] = info
            return info.current_version

    def list_streams(self) -> list[StreamInfo]:
        return list(self._streams.values())

    def clear(self) -> None:
        self._streams.clear()


_UPSERT_ANY = text(
    """
    INSERT INTO streams (stream_id, stream_type, current_version, event_count,
                         created_at, last_event_at)
    VALUES (:stream_id, :stream_type, 1, 1, :now, :now)
    ON CONFLICT (stream_id) DO UPDATE SET
        current_version = streams.current_version + 1,
        event_count = streams.event_count + 1,
        last_event_at = excluded.last_event_at
    RETURNING current_version, stream_type
    """
)

_INSERT_NEW = text(
    """
    INSERT INTO streams (stream_id, stream_type, current_version, event_count,
                         created_at, last_event_at)
    VALUES (:stream_id, :stream_type, 1, 1, :now, :now)
    ON CONFLICT (stream_id) DO NOTHING
    RETURNING current_version, stream_type
    """
)

_ADVANCE_IF_AT = text(
    """
    UPDATE streams SET
        current_version = current_version + 1,
        event_count = event_count + 1,
        last_event_at = :now
    WHERE stream_id = :stream_id AND current_version = :expected
    RETURNING current_version, stream_type
    """
)

_ADVANCE_IF_EXISTS = text(
    """
    UPDATE streams SET
        current_version = current_version + 1,
        event_count = event_count + 1,
        last_event_at = :now
    WHERE stream_id = :stream_id AND current_version > 0
    RETURNING current_version, stream_type
    """
)

_SELECT_STREAM = text(
    """
    SELECT stream_id, stream_type, current_version, event_count,
           created_at, last_event_at, is_active
    FROM streams
    WHERE stream_id = :stream_id
    """
)


class SQLStreamVersionTracker(StreamVersionTracker):
    """
    Version tracker backed by the ``streams`` table.

    Each reservation is a single conditional statement. On PostgreSQL the
    row lock taken by the statement serializes concurrent appends to one
    stream, and a waiting ``UPDATE .. WHERE current_version = :expected``
    re-checks its condition after the first writer commits. On SQLite the
    engine from ``eventledger.db.create_engine`` starts write transactions
    with ``BEGIN IMMEDIATE``, so writers are serialized before they read.

    Example:
        >>> tracker = SQLStreamVersionTracker(engine)
        >>> async with begin_transaction(engine) as conn:
        ...     version = await tracker.reserve_in(conn, "u1", "User", expected_version=0)
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._backend = backend_name(engine)

    async def current_version(self, stream_id: str) -> int:
        info = await self.get_stream(stream_id)
        return info.current_version if info else 0

    async def get_stream(self, stream_id: str) -> StreamInfo | None:
        async with read_connection(self._engine) as conn:
            result = await conn.execute(_SELECT_STREAM, {"stream_id": stream_id})
            row = result.fetchone()
        return self._row_to_info(row) if row else None

    async def reserve_next_version(
        self,
        stream_id: str,
        stream_type: str,
        expected_version: int | None = None,
    ) -> int:
        async with begin_transaction(self._engine) as conn:
            return await self.reserve_in(conn, stream_id, stream_type, expected_version)

    async def reserve_in(
        self,
        conn: AsyncConnection,
        stream_id: str,
        stream_type: str,
        expected_version: int | None = None,
        *,
        event_type: str = "",
        now: datetime | None = None,
    ) -> int:
        """
        Reserve the next version inside an open transaction.

        Raising rolls back with the caller's transaction, so a failed append
        never leaves the stream row advanced.
        """
        validate_expected_version(expected_version)
        params: dict[str, Any] = {
            "stream_id": stream_id,
            "stream_type": stream_type,
            "now": to_db_timestamp(now or utcnow(), self._backend),
        }

        if expected_version is None or expected_version == ExpectedVersion.ANY:
            statement = _UPSERT_ANY
        elif expected_version == ExpectedVersion.NO_STREAM:
            statement = _INSERT_NEW
        elif expected_version == ExpectedVersion.STREAM_EXISTS:
            statement = _ADVANCE_IF_EXISTS
        else:
            statement = _ADVANCE_IF_AT
            params["expected"] = expected_version

        row = (await conn.execute(statement, params)).fetchone()
        if row is None:
            await self._raise_rejection(conn, stream_id, stream_type, expected_version, event_type)

        version, existing_type = int(row[0]), row[1]
        if existing_type != stream_type:
            raise StreamTypeMismatchError(stream_id, existing_type, stream_type, event_type)
        return version

    async def _raise_rejection(
        self,
        conn: AsyncConnection,
        stream_id: str,
        stream_type: str,
        expected_version: int | None,
        event_type: str,
    ) -> None:
        row = (await conn.execute(_SELECT_STREAM, {"stream_id": stream_id})).fetchone()
        if row is not None and row.stream_type != stream_type:
            raise StreamTypeMismatchError(stream_id, row.stream_type, stream_type, event_type)
        actual = int(row.current_version) if row is not None else 0
        raise ConcurrencyConflictError(stream_id, expected_version, actual)

    @staticmethod
    def _row_to_info(row: Any) -> StreamInfo:
        return StreamInfo(
            stream_id=row.stream_id,
            stream_type=row.stream_type,
            current_version=int(row.current_version),
            event_count=int(row.event_count),
            created_at=from_db_timestamp(row.created_at),
            last_event_at=from_db_timestamp(row.last_event_at),
            is_active=bool(row.is_active),
        )


__all__ = [
    "ExpectedVersion",
    "InMemoryStreamVersionTracker",
    "SQLStreamVersionTracker",
    "StreamInfo",
    "StreamVersionTracker",
    "check_expected_version",
    "validate_expected_version",
]
