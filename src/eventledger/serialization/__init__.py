"""Serialization helpers for eventledger."""

from eventledger.serialization.json import (
    LedgerJSONEncoder,
    json_dumps,
    json_loads,
    load_document,
)

__all__ = ["LedgerJSONEncoder", "json_dumps", "json_loads", "load_document"]
