"""
In-memory snapshot store for tests and development.
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import replace

from eventledger.snapshots.interface import Snapshot, SnapshotStore, check_retain


class InMemorySnapshotStore(SnapshotStore):
    """
    Snapshot store backed by dictionaries.

    States are deep-copied on save and on read.

    Example:
        >>> store = InMemorySnapshotStore()
        >>> await store.save_snapshot(snapshot)
        >>> (await store.get_snapshot("u1", "User")).version
        100
    """

    def __init__(self) -> None:
        self._snapshots: dict[tuple[str, str], dict[int, Snapshot]] = {}
        self._lock = asyncio.Lock()

    async def save_snapshot(self, snapshot: Snapshot) -> None:
        async with self._lock:
            versions = self._snapshots.setdefault(
                (snapshot.aggregate_id, snapshot.aggregate_type), {}
            )
            versions[snapshot.version] = _copy(snapshot)

    async def get_snapshot(
        self,
        aggregate_id: str,
        aggregate_type: str,
        *,
        max_version: int | None = None,
    ) -> Snapshot | None:
        versions = self._snapshots.get((aggregate_id, aggregate_type), {})
        candidates = [v for v in versions if max_version is None or v <= max_version]
        if not candidates:
            return None
        return _copy(versions[max(candidates)])

    async def list_snapshots(self, aggregate_id: str, aggregate_type: str) -> list[Snapshot]:
        versions = self._snapshots.get((aggregate_id, aggregate_type), {})
        return [_copy(versions[v]) for v in sorted(versions)]

    async def delete_snapshots(self, aggregate_id: str, aggregate_type: str) -> int:
        async with self._lock:
            removed = self._snapshots.pop((aggregate_id, aggregate_type), {})
            return len(removed)

    async def prune(self, aggregate_id: str, aggregate_type: str, retain: int) -> int:
        check_retain(retain)
        async with self._lock:
            versions = self._snapshots.get((aggregate_id, aggregate_type), {})
            stale = sorted(versions)[:-retain]
            for version in stale:
                del versions[version]
            return len(stale)

    async def clear(self) -> None:
        async with self._lock:
            self._snapshots.clear()

    @property
    def snapshot_count(self) -> int:
        return sum(len(versions) for versions in self._snapshots.values())


def _copy(snapshot: Snapshot) -> Snapshot:
    return replace(snapshot, state=copy.deepcopy(snapshot.state))


__all__ = ["InMemorySnapshotStore"]
