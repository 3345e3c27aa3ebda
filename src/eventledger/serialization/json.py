"""
JSON helpers for the document columns of the SQL backends.

Payloads, metadata, projection rows and snapshot states are stored as JSON
text (JSONB on PostgreSQL). The encoder accepts the few non-JSON values that
handlers commonly put into state dicts.

Example:
    >>> from eventledger.serialization import json_dumps, json_loads
    >>> from uuid import uuid4
    >>> parsed = json_loads(json_dumps({"id": uuid4()}))
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID


class LedgerJSONEncoder(json.JSONEncoder):
    """
    JSON encoder for UUID, datetime, date and Decimal values.

    UUIDs become strings, dates become ISO 8601 strings and Decimals become
    strings so no precision is lost.
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        return super().default(obj)


def json_dumps(obj: Any) -> str:
    """Serialize object to a compact, key-sorted JSON string."""
    return json.dumps(obj, cls=LedgerJSONEncoder, sort_keys=True, separators=(",", ":"))


def json_loads(s: str) -> Any:
    """Deserialize a JSON string."""
    return json.loads(s)


def load_document(value: Any) -> dict[str, Any]:
    """
    Normalize a JSON column value to a dict.

    SQLite returns the stored text while asyncpg may already have decoded a
    JSONB value, so both shapes are accepted. NULL becomes an empty dict.
    """
    if value is None:
        return {}
    if isinstance(value, (str, bytes, bytearray)):
        return dict(json.loads(value))
    return dict(value)


__all__ = ["LedgerJSONEncoder", "json_dumps", "json_loads", "load_document"]
