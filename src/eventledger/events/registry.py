"""
Event type registry and payload validation.

Every event type must be registered before it can be appended. A
registration optionally carries a payload schema: a pydantic model class or
any callable that takes the raw payload and returns the normalized one (or
raises). The registry is thread-safe and can be used through the
module-level ``default_registry`` or instantiated per ledger for isolation.

Usage:
    # Option 1: Explicit registration without a schema
    registry = EventTypeRegistry()
    registry.register("UserEmailVerified")

    # Option 2: Explicit registration with a pydantic model
    registry.register("UserRegistered", UserRegisteredPayload, schema_version=2)

    # Option 3: Decorator on the payload model
    @registry.event_type("AccountDeposited")
    class AccountDeposited(BaseModel):
        amount: int

    # Validation (used by the event store on append)
    payload, schema_version = registry.validate("UserRegistered", raw_payload)
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from eventledger.exceptions import (
    DuplicateEventTypeError,
    EventValidationError,
    UnregisteredEventTypeError,
)

logger = logging.getLogger(__name__)

TModel = TypeVar("TModel", bound=type[BaseModel])


@runtime_checkable
class PayloadValidator(Protocol):
    """Callable that validates a raw payload and returns the normalized one."""

    def __call__(self, payload: dict[str, Any]) -> dict[str, Any]: ...


PayloadSchema = type[BaseModel] | PayloadValidator


@dataclass(frozen=True)
class EventTypeSpec:
    """
    A registered event type.

    Attributes:
        event_type: Registered name
        schema: Pydantic model or validator callable, None to accept any dict
        schema_version: Version stamped on events appended with this type
    """

    event_type: str
    schema: PayloadSchema | None = None
    schema_version: int = 1

    def validate(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Validate a payload against this type's schema."""
        if not isinstance(payload, dict):
            raise EventValidationError(
                self.event_type,
                f"payload must be a mapping, got {type(payload).__name__}",
            )
        if self.schema is None:
            return copy.deepcopy(payload)
        if isinstance(self.schema, type) and issubclass(self.schema, BaseModel):
            try:
                return self.schema.model_validate(payload).model_dump(mode="json")
            except PydanticValidationError as e:
                raise EventValidationError(
                    self.event_type,
                    f"payload failed schema validation ({e.error_count()} errors)",
                    errors=[dict(err) for err in e.errors(include_url=False)],
                ) from e
        try:
            return dict(self.schema(payload))
        except (ValueError, TypeError, KeyError) as e:
            raise EventValidationError(self.event_type, str(e)) from e


class EventTypeRegistry:
    """
    Registry mapping event type names to their payload schemas.

    Thread-Safety:
        All operations are thread-safe and use internal locking.

    Example:
        >>> registry = EventTypeRegistry()
        >>> registry.register("UserRegistered", UserRegisteredPayload)
        >>> registry.is_registered("UserRegistered")
        True
    """

    def __init__(self) -> None:
        self._registry: dict[str, EventTypeSpec] = {}
        self._lock = threading.RLock()

    def register(
        self,
        event_type: str,
        schema: PayloadSchema | None = None,
        *,
        schema_version: int = 1,
    ) -> EventTypeSpec:
        """
        Register an event type.

        Registering the same name again with the same schema and version is
        a no-op.

        Args:
            event_type: Event type name
            schema: Optional pydantic model class or validator callable
            schema_version: Schema version stamped on appended events

        Returns:
            The registered EventTypeSpec

        Raises:
            DuplicateEventTypeError: If the name is registered with another schema
            ValueError: If the name is empty or schema_version < 1
        """
        if not event_type:
            raise ValueError("event_type must be a non-empty string")
        if schema_version < 1:
            raise ValueError(f"schema_version must be >= 1, got {schema_version}")

        spec = EventTypeSpec(event_type, schema, schema_version)
        with self._lock:
            existing = self._registry.get(event_type)
            if existing is not None:
                if existing != spec:
                    raise DuplicateEventTypeError(event_type)
                return existing
            self._registry[event_type] = spec
            logger.debug(
                "Registered event type '%s' (schema_version=%d)",
                event_type,
                schema_version,
                extra={"event_type": event_type, "schema_version": schema_version},
            )
            return spec

    def event_type(
        self,
        name: str | None = None,
        *,
        schema_version: int = 1,
    ) -> Callable[[TModel], TModel]:
        """
        Decorator registering a pydantic model as the schema of an event type.

        The event type name defaults to the model's class name.
        """

        def decorator(model: TModel) -> TModel:
            self.register(name or model.__name__, model, schema_version=schema_version)
            return model

        return decorator

    def get(self, event_type: str) -> EventTypeSpec:
        """
        Get the spec for an event type.

        Raises:
            UnregisteredEventTypeError: If event type is not registered
        """
        with self._lock:
            spec = self._registry.get(event_type)
            if spec is None:
                raise UnregisteredEventTypeError(event_type, list(self._registry))
            return spec

    def is_registered(self, event_type: str) -> bool:
        with self._lock:
            return event_type in self._registry

    def list_event_types(self) -> list[str]:
        """Sorted list of registered event type names."""
        with self._lock:
            return sorted(self._registry)

    def validate(self, event_type: str, payload: dict[str, Any]) -> tuple[dict[str, Any], int]:
        """
        Validate a payload for an event type.

        Returns:
            Tuple of (normalized payload, schema version)

        Raises:
            UnregisteredEventTypeError: If the event type is not registered
            EventValidationError: If the payload fails the schema
        """
        spec = self.get(event_type)
        return spec.validate(payload), spec.schema_version

    def unregister(self, event_type: str) -> bool:
        """Remove an event type. Returns False if it was not registered."""
        with self._lock:
            if self._registry.pop(event_type, None) is None:
                return False
            logger.debug(
                "Unregistered event type '%s'",
                event_type,
                extra={"event_type": event_type},
            )
            return True

    def clear(self) -> None:
        """Clear all registered event types (mainly for tests)."""
        with self._lock:
            self._registry.clear()
            logger.debug("Event type registry cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._registry)

    def __bool__(self) -> bool:
        """Registry is always truthy, even when empty."""
        return True

    def __contains__(self, event_type: object) -> bool:
        with self._lock:
            return event_type in self._registry

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._registry))


# Module-level default registry instance
default_registry = EventTypeRegistry()


def register_event_type(
    event_type: str,
    schema: PayloadSchema | None = None,
    *,
    schema_version: int = 1,
    registry: EventTypeRegistry | None = None,
) -> EventTypeSpec:
    """Register an event type in the given registry (default: default_registry)."""
    target = registry or default_registry
    return target.register(event_type, schema, schema_version=schema_version)


__all__ = [
    "EventTypeRegistry",
    "EventTypeSpec",
    "PayloadSchema",
    "PayloadValidator",
    "default_registry",
    "register_event_type",
]
