"""
Observability utilities for eventledger.

Provides the composition-based tracer and the standard span attribute
names used across the store, projector and snapshot manager.
"""

from eventledger.observability.attributes import (
    ATTR_AGGREGATE_TYPE,
    ATTR_CAUSATION_ID,
    ATTR_CORRELATION_ID,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_ERROR_TYPE,
    ATTR_EVENT_COUNT,
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_EVENTS_PROCESSED,
    ATTR_EXPECTED_VERSION,
    ATTR_FROM_POSITION,
    ATTR_FROM_VERSION,
    ATTR_HEAD_POSITION,
    ATTR_LAG,
    ATTR_POSITION,
    ATTR_PROJECTION_NAME,
    ATTR_SNAPSHOT_INTERVAL,
    ATTR_SNAPSHOT_VERSION,
    ATTR_STREAM_ID,
    ATTR_STREAM_TYPE,
    ATTR_VERSION,
)
from eventledger.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    RecordedSpan,
    SpanLike,
    Tracer,
    create_tracer,
)

__all__ = [
    # Tracers
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "RecordedSpan",
    "SpanLike",
    "create_tracer",
    # Attributes
    "ATTR_AGGREGATE_TYPE",
    "ATTR_CAUSATION_ID",
    "ATTR_CORRELATION_ID",
    "ATTR_DB_OPERATION",
    "ATTR_DB_SYSTEM",
    "ATTR_ERROR_TYPE",
    "ATTR_EVENT_COUNT",
    "ATTR_EVENT_ID",
    "ATTR_EVENT_TYPE",
    "ATTR_EVENTS_PROCESSED",
    "ATTR_EXPECTED_VERSION",
    "ATTR_FROM_POSITION",
    "ATTR_FROM_VERSION",
    "ATTR_HEAD_POSITION",
    "ATTR_LAG",
    "ATTR_POSITION",
    "ATTR_PROJECTION_NAME",
    "ATTR_SNAPSHOT_INTERVAL",
    "ATTR_SNAPSHOT_VERSION",
    "ATTR_STREAM_ID",
    "ATTR_STREAM_TYPE",
    "ATTR_VERSION",
]
