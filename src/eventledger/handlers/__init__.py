"""Declarative event handler support for projections."""

from eventledger.handlers.decorators import (
    get_handled_event_types,
    handles,
    is_event_handler,
)
from eventledger.handlers.registry import (
    HandlerInfo,
    HandlerRegistry,
    HandlerSignatureError,
    UnregisteredEventHandling,
)

__all__ = [
    "handles",
    "get_handled_event_types",
    "is_event_handler",
    "HandlerInfo",
    "HandlerRegistry",
    "HandlerSignatureError",
    "UnregisteredEventHandling",
]
