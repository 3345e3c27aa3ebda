"""
Projections: derived, rebuildable read models.

- Projection: pure, handler-dispatched state function
- Projector: incremental, idempotent catch-up with lag reporting
- ProjectionRunner: background polling loop
- InMemoryProjectionStore / SQLProjectionStore: rows and checkpoints
"""

from eventledger.projections.base import Projection
from eventledger.projections.projector import CatchUpResult, Projector
from eventledger.projections.runner import ProjectionRunner
from eventledger.projections.sql_store import SQLProjectionStore
from eventledger.projections.store import (
    CheckpointData,
    InMemoryProjectionStore,
    LagMetrics,
    ProjectionRow,
    ProjectionStore,
)

__all__ = [
    "CatchUpResult",
    "CheckpointData",
    "InMemoryProjectionStore",
    "LagMetrics",
    "Projection",
    "ProjectionRow",
    "ProjectionRunner",
    "ProjectionStore",
    "Projector",
    "SQLProjectionStore",
]
