"""
Standard span attributes for eventledger.

Attribute names are shared by every component so spans from the store,
the projector and the snapshot manager can be filtered together.

Example:
    >>> from eventledger.observability.attributes import ATTR_STREAM_ID
    >>> with tracer.span("eventledger.event_store.append", {ATTR_STREAM_ID: "u1"}):
    ...     pass
"""

# =============================================================================
# Stream Attributes
# =============================================================================

ATTR_STREAM_ID = "eventledger.stream.id"
"""Identifier of the stream (string)."""

ATTR_STREAM_TYPE = "eventledger.stream.type"
"""Type or category of the stream (e.g. 'User', 'Account')."""

# =============================================================================
# Event Attributes
# =============================================================================

ATTR_EVENT_ID = "eventledger.event.id"
"""Unique identifier for the event (UUID string)."""

ATTR_EVENT_TYPE = "eventledger.event.type"
"""Type name of the event (e.g. 'UserRegistered')."""

ATTR_EVENT_COUNT = "eventledger.event.count"
"""Number of events in an operation (integer)."""

ATTR_CORRELATION_ID = "eventledger.correlation.id"
"""Correlation id grouping events of one logical operation."""

ATTR_CAUSATION_ID = "eventledger.causation.id"
"""Id of the event that caused this one."""

# =============================================================================
# Version and Position Attributes
# =============================================================================

ATTR_VERSION = "eventledger.version"
"""Stream version (integer)."""

ATTR_EXPECTED_VERSION = "eventledger.expected_version"
"""Expected version for optimistic concurrency (integer)."""

ATTR_FROM_VERSION = "eventledger.from_version"
"""Starting version for stream reads (integer)."""

ATTR_POSITION = "eventledger.position"
"""Global position in the ledger (integer)."""

ATTR_FROM_POSITION = "eventledger.from_position"
"""Exclusive starting global position for ledger reads (integer)."""

ATTR_HEAD_POSITION = "eventledger.head_position"
"""Global position of the newest event when an operation started (integer)."""

# =============================================================================
# Projection Attributes
# =============================================================================

ATTR_PROJECTION_NAME = "eventledger.projection.name"
"""Name of the projection."""

ATTR_EVENTS_PROCESSED = "eventledger.events.processed"
"""Events applied by a catch-up run (integer)."""

ATTR_LAG = "eventledger.projection.lag"
"""Events between a projection's checkpoint and the ledger head (integer)."""

# =============================================================================
# Snapshot Attributes
# =============================================================================

ATTR_AGGREGATE_TYPE = "eventledger.aggregate.type"
"""Aggregate type a snapshot belongs to."""

ATTR_SNAPSHOT_VERSION = "eventledger.snapshot.version"
"""Stream version captured by a snapshot (integer)."""

ATTR_SNAPSHOT_INTERVAL = "eventledger.snapshot.interval"
"""Configured snapshot interval (integer)."""

# =============================================================================
# Database Attributes (OpenTelemetry semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system (e.g. 'sqlite', 'postgresql')."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation name (e.g. 'INSERT', 'SELECT')."""

ATTR_ERROR_TYPE = "error.type"
"""Exception class name when an operation fails."""


__all__ = [
    "ATTR_STREAM_ID",
    "ATTR_STREAM_TYPE",
    "ATTR_EVENT_ID",
    "ATTR_EVENT_TYPE",
    "ATTR_EVENT_COUNT",
    "ATTR_CORRELATION_ID",
    "ATTR_CAUSATION_ID",
    "ATTR_VERSION",
    "ATTR_EXPECTED_VERSION",
    "ATTR_FROM_VERSION",
    "ATTR_POSITION",
    "ATTR_FROM_POSITION",
    "ATTR_HEAD_POSITION",
    "ATTR_PROJECTION_NAME",
    "ATTR_EVENTS_PROCESSED",
    "ATTR_LAG",
    "ATTR_AGGREGATE_TYPE",
    "ATTR_SNAPSHOT_VERSION",
    "ATTR_SNAPSHOT_INTERVAL",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
    "ATTR_ERROR_TYPE",
]
