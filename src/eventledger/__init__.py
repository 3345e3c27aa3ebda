"""
eventledger - Event-sourced, append-only ledger for Python.

This library provides:
- Append-only event store with optimistic concurrency, on SQLite,
  PostgreSQL or in memory
- Event type registry validating payloads with Pydantic models
- Incremental, idempotent projections with checkpoints and lag reporting
- Interval-based snapshots of stream state
- Correlation and causation tracking across events
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("eventledger")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from eventledger.config import LedgerConfig
from eventledger.correlation import CorrelationContext, CorrelationTracker
from eventledger.events import (
    Event,
    EventTypeRegistry,
    EventTypeSpec,
    default_registry,
    register_event_type,
)
from eventledger.exceptions import (
    CausationReferenceWarning,
    ConcurrencyConflictError,
    DuplicateEventTypeError,
    EventLedgerError,
    EventNotFoundError,
    EventValidationError,
    ProjectionError,
    ProjectionNotFoundError,
    SnapshotFailureError,
    StreamTypeMismatchError,
    UnknownEventTypeError,
    UnregisteredEventTypeError,
)
from eventledger.handlers import handles
from eventledger.ledger import EventLedger
from eventledger.projections import (
    CatchUpResult,
    CheckpointData,
    InMemoryProjectionStore,
    LagMetrics,
    Projection,
    ProjectionRunner,
    ProjectionStore,
    Projector,
    SQLProjectionStore,
)
from eventledger.snapshots import (
    InMemorySnapshotStore,
    LoadedState,
    Snapshot,
    SnapshotManager,
    SnapshotStore,
    SQLSnapshotStore,
)
from eventledger.stores import (
    AppendResult,
    EventStore,
    ExpectedVersion,
    InMemoryEventStore,
    SQLEventStore,
    StreamInfo,
)

__all__ = [
    "__version__",
    # Ledger
    "EventLedger",
    "LedgerConfig",
    # Events
    "Event",
    "EventTypeRegistry",
    "EventTypeSpec",
    "default_registry",
    "register_event_type",
    # Stores
    "AppendResult",
    "EventStore",
    "ExpectedVersion",
    "InMemoryEventStore",
    "SQLEventStore",
    "StreamInfo",
    # Correlation
    "CorrelationContext",
    "CorrelationTracker",
    # Projections
    "CatchUpResult",
    "CheckpointData",
    "InMemoryProjectionStore",
    "LagMetrics",
    "Projection",
    "ProjectionRunner",
    "ProjectionStore",
    "Projector",
    "SQLProjectionStore",
    "handles",
    # Snapshots
    "InMemorySnapshotStore",
    "LoadedState",
    "SQLSnapshotStore",
    "Snapshot",
    "SnapshotManager",
    "SnapshotStore",
    # Exceptions
    "CausationReferenceWarning",
    "ConcurrencyConflictError",
    "DuplicateEventTypeError",
    "EventLedgerError",
    "EventNotFoundError",
    "EventValidationError",
    "ProjectionError",
    "ProjectionNotFoundError",
    "SnapshotFailureError",
    "StreamTypeMismatchError",
    "UnknownEventTypeError",
    "UnregisteredEventTypeError",
]
