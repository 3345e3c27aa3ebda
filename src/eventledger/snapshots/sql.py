"""
SQL snapshot store on SQLAlchemy's asyncio engine (SQLite or PostgreSQL).
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from eventledger.db import (
    backend_name,
    execute_with_connection,
    from_db_timestamp,
    to_db_timestamp,
)
from eventledger.observability import (
    ATTR_AGGREGATE_TYPE,
    ATTR_DB_SYSTEM,
    ATTR_SNAPSHOT_VERSION,
    ATTR_STREAM_ID,
    Tracer,
    create_tracer,
)
from eventledger.serialization import json_dumps, load_document
from eventledger.snapshots.interface import Snapshot, SnapshotStore, check_retain

logger = logging.getLogger(__name__)

_COLUMNS = "aggregate_id, aggregate_type, version, schema_version, state, created_at"

_UPSERT_SNAPSHOT = text(
    """
    INSERT INTO snapshots
        (aggregate_id, aggregate_type, version, schema_version, state, created_at)
    VALUES (:aggregate_id, :aggregate_type, :version, :schema_version, :state, :created_at)
    ON CONFLICT (aggregate_id, aggregate_type, version) DO UPDATE SET
        schema_version = excluded.schema_version,
        state = excluded.state,
        created_at = excluded.created_at
    """
)

_SELECT_LATEST = text(
    f"""
    SELECT {_COLUMNS}
    FROM snapshots
    WHERE aggregate_id = :aggregate_id AND aggregate_type = :aggregate_type
        AND version <= :max_version
    ORDER BY version DESC
    LIMIT 1
    """
)

_SELECT_ALL = text(
    f"""
    SELECT {_COLUMNS}
    FROM snapshots
    WHERE aggregate_id = :aggregate_id AND aggregate_type = :aggregate_type
    ORDER BY version
    """
)

_DELETE_ALL = text(
    """
    DELETE FROM snapshots
    WHERE aggregate_id = :aggregate_id AND aggregate_type = :aggregate_type
    """
)

_PRUNE = text(
    """
    DELETE FROM snapshots
    WHERE aggregate_id = :aggregate_id AND aggregate_type = :aggregate_type
        AND version NOT IN (
            SELECT version FROM snapshots
            WHERE aggregate_id = :aggregate_id AND aggregate_type = :aggregate_type
            ORDER BY version DESC
            LIMIT :retain
        )
    """
)

# stands in for "no upper bound" in _SELECT_LATEST
_MAX_VERSION = 2**31 - 1


class SQLSnapshotStore(SnapshotStore):
    """
    Snapshot store backed by the ``snapshots`` table.

    Example:
        >>> store = SQLSnapshotStore(engine)
        >>> await store.save_snapshot(snapshot)
        >>> [s.version for s in await store.list_snapshots("u1", "User")]
        [100, 200]
    """

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._engine = engine
        self._backend = backend_name(engine)
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def save_snapshot(self, snapshot: Snapshot) -> None:
        with self._tracer.span(
            "eventledger.snapshot_store.save",
            {
                ATTR_STREAM_ID: snapshot.aggregate_id,
                ATTR_AGGREGATE_TYPE: snapshot.aggregate_type,
                ATTR_SNAPSHOT_VERSION: snapshot.version,
                ATTR_DB_SYSTEM: self._backend,
            },
        ):
            async with execute_with_connection(self._engine) as conn:
                await conn.execute(
                    _UPSERT_SNAPSHOT,
                    {
                        "aggregate_id": snapshot.aggregate_id,
                        "aggregate_type": snapshot.aggregate_type,
                        "version": snapshot.version,
                        "schema_version": snapshot.schema_version,
                        "state": json_dumps(snapshot.state),
                        "created_at": to_db_timestamp(snapshot.created_at, self._backend),
                    },
                )
        logger.debug(
            "Saved snapshot %s",
            snapshot,
            extra={
                "aggregate_id": snapshot.aggregate_id,
                "aggregate_type": snapshot.aggregate_type,
                "version": snapshot.version,
            },
        )

    async def get_snapshot(
        self,
        aggregate_id: str,
        aggregate_type: str,
        *,
        max_version: int | None = None,
    ) -> Snapshot | None:
        async with execute_with_connection(self._engine, transactional=False) as conn:
            result = await conn.execute(
                _SELECT_LATEST,
                {
                    "aggregate_id": aggregate_id,
                    "aggregate_type": aggregate_type,
                    "max_version": _MAX_VERSION if max_version is None else max_version,
                },
            )
            row = result.fetchone()
        return self._row_to_snapshot(row) if row is not None else None

    async def list_snapshots(self, aggregate_id: str, aggregate_type: str) -> list[Snapshot]:
        async with execute_with_connection(self._engine, transactional=False) as conn:
            result = await conn.execute(
                _SELECT_ALL,
                {"aggregate_id": aggregate_id, "aggregate_type": aggregate_type},
            )
            rows = result.fetchall()
        return [self._row_to_snapshot(row) for row in rows]

    async def delete_snapshots(self, aggregate_id: str, aggregate_type: str) -> int:
        async with execute_with_connection(self._engine) as conn:
            result = await conn.execute(
                _DELETE_ALL,
                {"aggregate_id": aggregate_id, "aggregate_type": aggregate_type},
            )
        return result.rowcount or 0

    async def prune(self, aggregate_id: str, aggregate_type: str, retain: int) -> int:
        check_retain(retain)
        async with execute_with_connection(self._engine) as conn:
            result = await conn.execute(
                _PRUNE,
                {"aggregate_id": aggregate_id, "aggregate_type": aggregate_type, "retain": retain},
            )
        deleted = result.rowcount or 0
        if deleted:
            logger.debug(
                "Pruned %d snapshots of %s/%s",
                deleted,
                aggregate_type,
                aggregate_id,
                extra={"aggregate_id": aggregate_id, "retain": retain},
            )
        return deleted

    @staticmethod
    def _row_to_snapshot(row: Any) -> Snapshot:
        created_at = from_db_timestamp(row.created_at)
        if created_at is None:
            raise ValueError(
                f"Snapshot {row.aggregate_type}/{row.aggregate_id} v{row.version} has no created_at"
            )
        return Snapshot(
            aggregate_id=row.aggregate_id,
            aggregate_type=row.aggregate_type,
            version=int(row.version),
            state=load_document(row.state),
            schema_version=int(row.schema_version),
            created_at=created_at,
        )


__all__ = ["SQLSnapshotStore"]
