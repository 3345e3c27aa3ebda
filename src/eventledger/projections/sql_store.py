"""
SQL projection store.

Rows live in ``projection_rows`` and checkpoints in
``projection_checkpoints``. ``commit`` upserts a batch of rows and the
checkpoint in one transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any
from uuid import UUID

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncEngine

from eventledger.db import (
    backend_name,
    execute_with_connection,
    from_db_timestamp,
    to_db_timestamp,
    utcnow,
)
from eventledger.observability import (
    ATTR_DB_SYSTEM,
    ATTR_EVENT_COUNT,
    ATTR_POSITION,
    ATTR_PROJECTION_NAME,
    Tracer,
    create_tracer,
)
from eventledger.projections.store import CheckpointData, ProjectionRow, ProjectionStore
from eventledger.serialization import json_dumps, load_document

logger = logging.getLogger(__name__)

_SELECT_CHECKPOINT = text(
    """
    SELECT projection_name, global_position, last_event_id, events_processed, updated_at
    FROM projection_checkpoints
    WHERE projection_name = :projection_name
    """
)

_SELECT_ALL_CHECKPOINTS = text(
    """
    SELECT projection_name, global_position, last_event_id, events_processed, updated_at
    FROM projection_checkpoints
    ORDER BY projection_name
    """
)

_UPSERT_CHECKPOINT = text(
    """
    INSERT INTO projection_checkpoints
        (projection_name, global_position, last_event_id, events_processed, updated_at)
    VALUES (:projection_name, :global_position, :last_event_id, :events_processed, :updated_at)
    ON CONFLICT (projection_name) DO UPDATE SET
        global_position = excluded.global_position,
        last_event_id = excluded.last_event_id,
        events_processed = excluded.events_processed,
        updated_at = excluded.updated_at
    """
)

_SELECT_ROWS = text(
    """
    SELECT row_key, state, last_position, updated_at
    FROM projection_rows
    WHERE projection_name = :projection_name AND row_key IN :keys
    """
).bindparams(bindparam("keys", expanding=True))

_SELECT_ALL_ROWS = text(
    """
    SELECT row_key, state, last_position, updated_at
    FROM projection_rows
    WHERE projection_name = :projection_name
    ORDER BY row_key
    """
)

_UPSERT_ROW = text(
    """
    INSERT INTO projection_rows (projection_name, row_key, state, last_position, updated_at)
    VALUES (:projection_name, :row_key, :state, :last_position, :updated_at)
    ON CONFLICT (projection_name, row_key) DO UPDATE SET
        state = excluded.state,
        last_position = excluded.last_position,
        updated_at = excluded.updated_at
    """
)


class SQLProjectionStore(ProjectionStore):
    """
    Projection store on SQLAlchemy's asyncio engine.

    Example:
        >>> store = SQLProjectionStore(engine)
        >>> checkpoint = await store.get_checkpoint("UserProfileProjection")
        >>> checkpoint.global_position
        0
    """

    # keys per IN (...) query, well below SQLite's bound parameter limit
    _KEY_CHUNK = 500

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

    async def get_checkpoint(self, projection_name: str) -> CheckpointData:
        async with execute_with_connection(self._engine, transactional=False) as conn:
            result = await conn.execute(_SELECT_CHECKPOINT, {"projection_name": projection_name})
            row = result.fetchone()
        if row is None:
            return CheckpointData(projection_name)
        return self._row_to_checkpoint(row)

    async def get_all_checkpoints(self) -> list[CheckpointData]:
        async with execute_with_connection(self._engine, transactional=False) as conn:
            rows = (await conn.execute(_SELECT_ALL_CHECKPOINTS)).fetchall()
        return [self._row_to_checkpoint(row) for row in rows]

    async def get_rows(self, projection_name: str, keys: Iterable[str]) -> dict[str, ProjectionRow]:
        wanted = list(dict.fromkeys(keys))
        found: dict[str, ProjectionRow] = {}
        if not wanted:
            return found
        async with execute_with_connection(self._engine, transactional=False) as conn:
            for start in range(0, len(wanted), self._KEY_CHUNK):
                chunk = wanted[start : start + self._KEY_CHUNK]
                result = await conn.execute(
                    _SELECT_ROWS, {"projection_name": projection_name, "keys": chunk}
                )
                for row in result.fetchall():
                    found[row.row_key] = self._row_to_projection_row(row)
        return found

    async def list_rows(self, projection_name: str) -> list[ProjectionRow]:
        async with execute_with_connection(self._engine, transactional=False) as conn:
            result = await conn.execute(_SELECT_ALL_ROWS, {"projection_name": projection_name})
            rows = result.fetchall()
        return [self._row_to_projection_row(row) for row in rows]

    async def commit(
        self,
        projection_name: str,
        rows: list[ProjectionRow],
        checkpoint: CheckpointData,
    ) -> None:
        now = to_db_timestamp(utcnow(), self._backend)
        with self._tracer.span(
            "eventledger.projection_store.commit",
            {
                ATTR_PROJECTION_NAME: projection_name,
                ATTR_EVENT_COUNT: len(rows),
                ATTR_POSITION: checkpoint.global_position,
                ATTR_DB_SYSTEM: self._backend,
            },
        ):
            async with execute_with_connection(self._engine) as conn:
                if rows:
                    await conn.execute(
                        _UPSERT_ROW,
                        [
                            {
                                "projection_name": projection_name,
                                "row_key": row.key,
                                "state": json_dumps(row.state),
                                "last_position": row.last_position,
                                "updated_at": to_db_timestamp(row.updated_at, self._backend)
                                or now,
                            }
                            for row in rows
                        ],
                    )
                await conn.execute(
                    _UPSERT_CHECKPOINT,
                    {
                        "projection_name": projection_name,
                        "global_position": checkpoint.global_position,
                        "last_event_id": (
                            str(checkpoint.last_event_id) if checkpoint.last_event_id else None
                        ),
                        "events_processed": checkpoint.events_processed,
                        "updated_at": to_db_timestamp(checkpoint.updated_at, self._backend) or now,
                    },
                )

    async def reset(self, projection_name: str) -> None:
        async with execute_with_connection(self._engine) as conn:
            params = {"projection_name": projection_name}
            await conn.execute(
                text("DELETE FROM projection_rows WHERE projection_name = :projection_name"),
                params,
            )
            await conn.execute(
                text("DELETE FROM projection_checkpoints WHERE projection_name = :projection_name"),
                params,
            )
        logger.info(
            "Reset projection %s",
            projection_name,
            extra={"projection": projection_name},
        )

    @staticmethod
    def _row_to_checkpoint(row: Any) -> CheckpointData:
        return CheckpointData(
            projection_name=row.projection_name,
            global_position=int(row.global_position),
            last_event_id=UUID(str(row.last_event_id)) if row.last_event_id else None,
            events_processed=int(row.events_processed),
            updated_at=from_db_timestamp(row.updated_at),
        )

    @staticmethod
    def _row_to_projection_row(row: Any) -> ProjectionRow:
        return ProjectionRow(
            key=row.row_key,
            state=load_document(row.state),
            last_position=int(row.last_position),
            updated_at=from_db_timestamp(row.updated_at),
        )


__all__ = ["SQLProjectionStore"]
