"""
Snapshots: materialized stream state at a version.

- Snapshot / SnapshotStore: record and storage interface
- InMemorySnapshotStore / SQLSnapshotStore: implementations
- SnapshotManager: interval-based snapshotting and snapshot-aware loading
"""

from eventledger.snapshots.in_memory import InMemorySnapshotStore
from eventledger.snapshots.interface import Snapshot, SnapshotStore
from eventledger.snapshots.manager import LoadedState, SnapshotManager
from eventledger.snapshots.sql import SQLSnapshotStore

__all__ = [
    "InMemorySnapshotStore",
    "LoadedState",
    "SQLSnapshotStore",
    "Snapshot",
    "SnapshotManager",
    "SnapshotStore",
]
