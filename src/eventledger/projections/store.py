"""
Projection storage: rows, checkpoints and lag.

A projection store keeps, per projection, one row per key and a checkpoint
holding the global position of the last processed event. ``commit`` writes
a batch of rows together with the new checkpoint as one unit. After a crash
the projector resumes from the last committed checkpoint, and rows record
the position of the last event applied to them, so an event is never
counted twice.
"""

from __future__ import annotations

import asyncio
import copy
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID


@dataclass(frozen=True)
class ProjectionRow:
    """
    One row of a projection.

    Attributes:
        key: Row key (the stream id unless the projection overrides key_for)
        state: Current state of the row
        last_position: Global position of the last event applied to the row
        updated_at: When the row was last written
    """

    key: str
    state: dict[str, Any] = field(default_factory=dict)
    last_position: int = 0
    updated_at: datetime | None = None


@dataclass(frozen=True)
class CheckpointData:
    """
    Checkpoint of a projection.

    Attributes:
        projection_name: Name of the projection
        global_position: Global position of the last processed event (0: none)
        last_event_id: Id of the last processed event
        events_processed: Total count of events processed
        updated_at: When the checkpoint was last written
    """

    projection_name: str
    global_position: int = 0
    last_event_id: UUID | None = None
    events_processed: int = 0
    updated_at: datetime | None = None


@dataclass(frozen=True)
class LagMetrics:
    """
    How far a projection is behind the ledger.

    Attributes:
        projection_name: Name of the projection
        position: Checkpoint position of the projection
        head_position: Global position of the newest event in the ledger
        events_processed: Total events processed by this projection
        updated_at: When the checkpoint was last written
    """

    projection_name: str
    position: int
    head_position: int
    events_processed: int = 0
    updated_at: datetime | None = None

    @property
    def lag_events(self) -> int:
        """Events recorded after the checkpoint."""
        return max(0, self.head_position - self.position)

    @property
    def is_caught_up(self) -> bool:
        return self.lag_events == 0


class ProjectionStore(ABC):
    """Abstract base class for projection stores."""

    @abstractmethod
    async def get_checkpoint(self, projection_name: str) -> CheckpointData:
        """Checkpoint of a projection; position 0 if it never committed."""
        pass

    @abstractmethod
    async def get_all_checkpoints(self) -> list[CheckpointData]:
        pass

    @abstractmethod
    async def get_rows(self, projection_name: str, keys: Iterable[str]) -> dict[str, ProjectionRow]:
        """Rows for the given keys; missing keys are left out."""
        pass

    async def get_row(self, projection_name: str, key: str) -> ProjectionRow | None:
        rows = await self.get_rows(projection_name, [key])
        return rows.get(key)

    @abstractmethod
    async def list_rows(self, projection_name: str) -> list[ProjectionRow]:
        """All rows of a projection, ordered by key."""
        pass

    @abstractmethod
    async def commit(
        self,
        projection_name: str,
        rows: list[ProjectionRow],
        checkpoint: CheckpointData,
    ) -> None:
        """Write rows and the checkpoint atomically."""
        pass

    @abstractmethod
    async def reset(self, projection_name: str) -> None:
        """Delete all rows and the checkpoint of a projection."""
        pass


class InMemoryProjectionStore(ProjectionStore):
    """
    In-memory projection store.

    States are deep-copied on the way in and out, so callers can't alter
    stored rows by mutating what they got back.
    """

    def __init__(self) -> None:
        self._rows: dict[str, dict[str, ProjectionRow]] = {}
        self._checkpoints: dict[str, CheckpointData] = {}
        self._lock = asyncio.Lock()

    async def get_checkpoint(self, projection_name: str) -> CheckpointData:
        return self._checkpoints.get(projection_name) or CheckpointData(projection_name)

    async def get_all_checkpoints(self) -> list[CheckpointData]:
        return [self._checkpoints[name] for name in sorted(self._checkpoints)]

    async def get_rows(self, projection_name: str, keys: Iterable[str]) -> dict[str, ProjectionRow]:
        rows = self._rows.get(projection_name, {})
        return {key: _copy_row(rows[key]) for key in keys if key in rows}

    async def list_rows(self, projection_name: str) -> list[ProjectionRow]:
        rows = self._rows.get(projection_name, {})
        return [_copy_row(rows[key]) for key in sorted(rows)]

    async def commit(
        self,
        projection_name: str,
        rows: list[ProjectionRow],
        checkpoint: CheckpointData,
    ) -> None:
        async with self._lock:
            target = self._rows.setdefault(projection_name, {})
            for row in rows:
                target[row.key] = _copy_row(row)
            self._checkpoints[projection_name] = checkpoint

    async def reset(self, projection_name: str) -> None:
        async with self._lock:
            self._rows.pop(projection_name, None)
            self._checkpoints.pop(projection_name, None)


def _copy_row(row: ProjectionRow) -> ProjectionRow:
    return ProjectionRow(row.key, copy.deepcopy(row.state), row.last_position, row.updated_at)


__all__ = [
    "CheckpointData",
    "InMemoryProjectionStore",
    "LagMetrics",
    "ProjectionRow",
    "ProjectionStore",
]
