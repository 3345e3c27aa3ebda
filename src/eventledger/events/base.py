"""
The stored event record.

Events are immutable facts. Once appended they are never updated or
deleted; every read returns the same record, including the version and
global position assigned at append time.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Self
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class Event(BaseModel):
    """
    An event as persisted in the ledger.

    Attributes:
        event_id: Unique identifier for this event
        stream_id: Identifier of the stream the event belongs to
        stream_type: Category of the stream (e.g. 'User')
        event_type: Registered event type name (e.g. 'UserRegistered')
        version: Position of the event within its stream, starting at 1
        payload: Validated event body
        schema_version: Version of the payload schema at append time
        metadata: Free-form key/value metadata
        occurred_at: When the fact happened, as reported by the caller (UTC)
        recorded_at: When the ledger stored the event (UTC)
        global_position: Recording sequence across all streams, starting at 1
        correlation_id: Groups events of one logical operation across streams
        causation_id: The event that caused this one, if any

    Example:
        >>> event = await store.get_event(result.event_id)
        >>> event.version, event.payload["email"]
        (1, 'a@b.com')
    """

    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(default_factory=uuid4)
    stream_id: str = Field(..., min_length=1)
    stream_type: str = Field(..., min_length=1)
    event_type: str = Field(..., min_length=1)
    version: int = Field(..., ge=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    schema_version: int = Field(default=1, ge=1)
    metadata: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    global_position: int = Field(..., ge=1)
    correlation_id: UUID = Field(default_factory=uuid4)
    causation_id: UUID | None = None

    def __str__(self) -> str:
        return (
            f"{self.event_type}(event_id={self.event_id}, "
            f"stream_id={self.stream_id}, version={self.version})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert event to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create an event from a dictionary produced by to_dict()."""
        return cls.model_validate(data)

    def is_caused_by(self, event: Event) -> bool:
        """True if this event's causation_id is the other event's id."""
        return self.causation_id == event.event_id

    def is_correlated_with(self, event: Event) -> bool:
        """True if both events belong to the same logical operation."""
        return self.correlation_id == event.correlation_id


__all__ = ["Event"]
