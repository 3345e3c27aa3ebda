"""
Tracers for the ledger components.

Every component receives a ``Tracer`` in its constructor, or builds one with
``create_tracer(__name__, enable_tracing)``, and wraps its operations in
``tracer.span(name, attributes)``. The span handed to the ``with`` block is
None when tracing is off; components add result attributes with
``span.set_attribute`` only when they got a span back.

- NullTracer: tracing off
- OpenTelemetryTracer: spans through ``opentelemetry-api``
- MockTracer: keeps RecordedSpan objects for assertions in tests
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from opentelemetry import trace


class SpanLike(Protocol):
    def set_attribute(self, key: str, value: Any) -> Any: ...


@runtime_checkable
class Tracer(Protocol):
    """Creates spans around ledger operations."""

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[SpanLike | None]: ...

    @property
    def enabled(self) -> bool: ...


class NullTracer:
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[None]:
        return contextlib.nullcontext()

    @property
    def enabled(self) -> bool:
        return False


class OpenTelemetryTracer:
    """
    Spans through the OpenTelemetry API.

    Without an SDK configured the API returns non-recording spans, so this is
    safe to use as the default.

    Args:
        tracer_name: Instrumentation scope, normally the module's __name__
        tracer_provider: Provider to use instead of the global one
    """

    def __init__(
        self,
        tracer_name: str,
        tracer_provider: trace.TracerProvider | None = None,
    ) -> None:
        self._tracer = trace.get_tracer(tracer_name, tracer_provider=tracer_provider)

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[trace.Span]:
        return self._tracer.start_as_current_span(name, attributes=attributes or {})

    @property
    def enabled(self) -> bool:
        return True


@dataclass
class RecordedSpan:
    """A span kept by MockTracer: its name and every attribute it received."""

    name: str
    attributes: dict[str, Any] = field(default_factory=dict)

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value


class MockTracer:
    """
    Tracer for tests.

    Attributes set inside the span (such as the number of events a
    catch-up processed) are recorded along with the initial ones.

    Example:
        >>> tracer = MockTracer()
        >>> projector = Projector(store, tracer=tracer)
        >>> await projector.catch_up("user_profiles")
        >>> tracer.span_names
        ['eventledger.projector.catch_up']
    """

    def __init__(self) -> None:
        self.spans: list[RecordedSpan] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Iterator[RecordedSpan]:
        recorded = RecordedSpan(name, dict(attributes or {}))
        self.spans.append(recorded)
        yield recorded

    @property
    def enabled(self) -> bool:
        return True

    @property
    def span_names(self) -> list[str]:
        return [span.name for span in self.spans]

    def attributes_for(self, name: str) -> list[dict[str, Any]]:
        """Attributes of each span called ``name``, in recording order."""
        return [span.attributes for span in self.spans if span.name == name]

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """OpenTelemetryTracer named ``name``, or a NullTracer when tracing is off."""
    if enable_tracing:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "MockTracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "RecordedSpan",
    "SpanLike",
    "Tracer",
    "create_tracer",
]
