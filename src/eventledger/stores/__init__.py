"""
Event store implementations.

- EventStore: abstract interface
- InMemoryEventStore: in-process store for tests and development
- SQLEventStore: SQLite/PostgreSQL store on SQLAlchemy's asyncio engine
"""

from eventledger.stores.in_memory import InMemoryEventStore
from eventledger.stores.interface import AppendResult, EventStore, PendingEvent
from eventledger.stores.sql import SQLEventStore
from eventledger.stores.versions import (
    ExpectedVersion,
    InMemoryStreamVersionTracker,
    SQLStreamVersionTracker,
    StreamInfo,
    StreamVersionTracker,
)

__all__ = [
    "AppendResult",
    "EventStore",
    "ExpectedVersion",
    "InMemoryEventStore",
    "InMemoryStreamVersionTracker",
    "PendingEvent",
    "SQLEventStore",
    "SQLStreamVersionTracker",
    "StreamInfo",
    "StreamVersionTracker",
]
