"""
Snapshot store interface and the Snapshot record.

A snapshot is the materialized state of one stream at a version, computed
by a projection. Snapshots are caches: the events stay the source of truth,
and any snapshot can be deleted and recomputed from them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class Snapshot:
    """
    State of a stream at a version.

    Attributes:
        aggregate_id: Stream the state belongs to
        aggregate_type: Stream type (e.g. "User")
        version: Stream version folded into the state; events with a
                 version at or below it are included
        state: JSON-compatible state
        schema_version: Version of the state schema. A mismatch with the
                        registered projection forces a full replay.
        created_at: When the snapshot was taken
    """

    aggregate_id: str
    aggregate_type: str
    version: int
    state: dict[str, Any]
    schema_version: int
    created_at: datetime

    def __str__(self) -> str:
        return (
            f"Snapshot({self.aggregate_type}/{self.aggregate_id}, "
            f"v{self.version}, schema_v{self.schema_version})"
        )


class SnapshotStore(ABC):
    """
    Abstract base class for snapshot storage.

    Snapshots are keyed by (aggregate_id, aggregate_type, version). Saving
    the same key again replaces it; saving a newer version keeps the older
    ones until ``prune`` removes them.
    """

    @abstractmethod
    async def save_snapshot(self, snapshot: Snapshot) -> None:
        pass

    @abstractmethod
    async def get_snapshot(
        self,
        aggregate_id: str,
        aggregate_type: str,
        *,
        max_version: int | None = None,
    ) -> Snapshot | None:
        """
        Latest snapshot of a stream.

        Args:
            aggregate_id: Stream identifier
            aggregate_type: Stream type
            max_version: Only consider snapshots at or below this version

        Returns:
            The snapshot with the highest version, None if there is none
        """
        pass

    @abstractmethod
    async def list_snapshots(self, aggregate_id: str, aggregate_type: str) -> list[Snapshot]:
        """All snapshots of a stream, oldest version first."""
        pass

    @abstractmethod
    async def delete_snapshots(self, aggregate_id: str, aggregate_type: str) -> int:
        """Delete every snapshot of a stream; returns how many were removed."""
        pass

    @abstractmethod
    async def prune(self, aggregate_id: str, aggregate_type: str, retain: int) -> int:
        """
        Keep only the ``retain`` newest snapshots of a stream.

        Returns:
            Number of snapshots deleted
        """
        pass

    async def snapshot_exists(self, aggregate_id: str, aggregate_type: str) -> bool:
        return await self.get_snapshot(aggregate_id, aggregate_type) is not None


def check_retain(retain: int) -> None:
    if retain < 1:
        raise ValueError(f"retain must be >= 1, got {retain}")


__all__ = ["Snapshot", "SnapshotStore", "check_retain"]
