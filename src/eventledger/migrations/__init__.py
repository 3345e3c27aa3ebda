"""
SQL schema templates for the eventledger tables.

Tables:
    - streams / events: stream metadata and the append-only event log
    - snapshots: materialized stream state at a version
    - projection_checkpoints / projection_rows: projection state

Supported backends:
    - postgresql (default)
    - sqlite

Usage:
    from eventledger.migrations import get_schema, get_all_schemas, split_statements

    events_sql = get_schema("events", backend="sqlite")
    for statement in split_statements(get_all_schemas(backend="sqlite")):
        await conn.execute(text(statement))
"""

from pathlib import Path
from typing import Literal

SchemaName = Literal["events", "snapshots", "projections"]

BackendName = Literal["postgresql", "sqlite"]

SCHEMA_NAMES: tuple[SchemaName, ...] = ("events", "snapshots", "projections")

_TEMPLATES_DIR = Path(__file__).parent / "templates"


def list_backends() -> list[str]:
    """Backends that ship schema templates."""
    return sorted(p.name for p in _TEMPLATES_DIR.iterdir() if p.is_dir())


def list_schemas(backend: BackendName = "postgresql") -> list[str]:
    """Schema names available for a backend."""
    return sorted(p.stem for p in (_TEMPLATES_DIR / backend).glob("*.sql"))


def get_template_path(name: SchemaName, backend: BackendName = "postgresql") -> Path:
    """
    Get the path to a SQL template file.

    Raises:
        ValueError: If the backend or schema is unknown
    """
    if backend not in list_backends():
        raise ValueError(f"Unknown backend '{backend}'. Available backends: {list_backends()}")
    path = _TEMPLATES_DIR / backend / f"{name}.sql"
    if not path.exists():
        raise ValueError(
            f"Schema '{name}' is not available for backend '{backend}'. "
            f"Available schemas: {list_schemas(backend)}"
        )
    return path


def get_schema(name: SchemaName, backend: BackendName = "postgresql") -> str:
    """
    Load a SQL schema template by name and backend.

    Example:
        >>> from eventledger.migrations import get_schema
        >>> events_sql = get_schema("events", backend="sqlite")
    """
    return get_template_path(name, backend).read_text(encoding="utf-8")


def get_all_schemas(backend: BackendName = "postgresql") -> str:
    """All schemas for a backend, in dependency order."""
    return "\n\n".join(get_schema(name, backend) for name in SCHEMA_NAMES)


def split_statements(sql: str) -> list[str]:
    """
    Split a schema script into individual statements.

    Drivers such as asyncpg and aiosqlite execute one statement per call.
    Full-line ``--`` comments are dropped; the templates contain no
    semicolons inside literals.
    """
    lines = [line for line in sql.splitlines() if not line.lstrip().startswith("--")]
    return [stmt.strip() for stmt in "\n".join(lines).split(";") if stmt.strip()]


__all__ = [
    "BackendName",
    "SchemaName",
    "SCHEMA_NAMES",
    "get_all_schemas",
    "get_schema",
    "get_template_path",
    "list_backends",
    "list_schemas",
    "split_statements",
]
