"""
Ledger configuration.

Example:
    >>> config = LedgerConfig(database_url="sqlite+aiosqlite:///ledger.db")
    >>> ledger = await EventLedger.from_config(config)

    >>> LedgerConfig.from_mapping({"database_url": "sqlite+aiosqlite:///:memory:",
    ...                            "snapshot_interval": "50"})
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class LedgerConfig:
    """
    Settings of an EventLedger.

    Attributes:
        database_url: SQLAlchemy async URL (``sqlite+aiosqlite:///...`` or
            ``postgresql+asyncpg://...``)
        snapshot_interval: Versions between automatic snapshots of a stream
        snapshot_retain: Newest snapshots kept per stream, None keeps all
        projection_batch_size: Events read and committed per projection batch
        poll_interval: Seconds between polling rounds of the projection runner
        sync_projections: Catch up all projections after every append
        validate_causation: Warn about causation ids that match no stored event
        enable_tracing: Emit OpenTelemetry spans
        sqlite_busy_timeout: Seconds SQLite waits for the write lock
    """

    database_url: str = DEFAULT_DATABASE_URL
    snapshot_interval: int = 100
    snapshot_retain: int | None = None
    projection_batch_size: int = 100
    poll_interval: float = 1.0
    sync_projections: bool = False
    validate_causation: bool = True
    enable_tracing: bool = True
    sqlite_busy_timeout: float = 30.0

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not self.database_url:
            raise ValueError("database_url must not be empty")

        if self.snapshot_interval < 1:
            raise ValueError(
                f"snapshot_interval must be positive, got {self.snapshot_interval}. "
                "Use a value like 100 (default)."
            )

        if self.snapshot_retain is not None and self.snapshot_retain < 1:
            raise ValueError(
                f"snapshot_retain must be positive or None, got {self.snapshot_retain}. "
                "Use None to keep every snapshot."
            )

        if self.projection_batch_size < 1:
            raise ValueError(
                f"projection_batch_size must be positive, got {self.projection_batch_size}."
            )

        if self.poll_interval <= 0:
            raise ValueError(
                f"poll_interval must be positive, got {self.poll_interval}. "
                "Use a value like 1.0 (default) seconds."
            )

        if self.sqlite_busy_timeout < 0:
            raise ValueError(
                f"sqlite_busy_timeout must be >= 0, got {self.sqlite_busy_timeout}."
            )

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> LedgerConfig:
        """
        Build a config from plain settings, such as a parsed TOML table or
        environment variables. Unknown keys are ignored and string values
        are converted to the field's type.

        Raises:
            ValueError: If a value cannot be converted or fails validation
        """
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in values:
                continue
            kwargs[f.name] = _coerce(f.name, values[f.name], _DEFAULTS[f.name])
        return cls(**kwargs)


_DEFAULTS: dict[str, Any] = {f.name: f.default for f in fields(LedgerConfig)}


def _coerce(name: str, value: Any, default: Any) -> Any:
    if not isinstance(value, str):
        return value
    text = value.strip()
    if name == "snapshot_retain":
        return None if text.lower() in ("", "none", "null") else int(text)
    if isinstance(default, bool):
        lowered = text.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ValueError(f"{name} must be a boolean, got {value!r}")
    if isinstance(default, int):
        return int(text)
    if isinstance(default, float):
        return float(text)
    return text


__all__ = ["DEFAULT_DATABASE_URL", "LedgerConfig"]
