"""
Shared pytest fixtures for the eventledger tests.

This module provides:
- Registry fixtures (registry)
- In-memory fixtures (store, projection_store, projector, snapshot_store)
- SQLite fixtures (sqlite_url, sqlite_engine, sql_store)
- Tracing fixtures (mock_tracer)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine

from eventledger.db import create_engine, initialize_schema
from eventledger.events.registry import EventTypeRegistry
from eventledger.observability import MockTracer
from eventledger.projections import InMemoryProjectionStore, Projector
from eventledger.snapshots import InMemorySnapshotStore
from eventledger.stores import InMemoryEventStore, SQLEventStore
from tests.fixtures import build_registry

# =============================================================================
# Registry Fixtures
# =============================================================================


@pytest.fixture
def registry() -> EventTypeRegistry:
    """A fresh registry with the test user and account event types."""
    return build_registry()


# =============================================================================
# In-Memory Fixtures
# =============================================================================


@pytest.fixture
def store(registry: EventTypeRegistry) -> InMemoryEventStore:
    """Create a fresh InMemoryEventStore for each test."""
    return InMemoryEventStore(registry, enable_tracing=False)


@pytest.fixture
def projection_store() -> InMemoryProjectionStore:
    return InMemoryProjectionStore()


@pytest.fixture
def projector(store: InMemoryEventStore, projection_store: InMemoryProjectionStore) -> Projector:
    """Projector with a small batch size, so multi-batch paths get exercised."""
    return Projector(store, projection_store, batch_size=10, enable_tracing=False)


@pytest.fixture
def snapshot_store() -> InMemorySnapshotStore:
    return InMemorySnapshotStore()


# =============================================================================
# SQLite Fixtures
# =============================================================================


@pytest.fixture
def sqlite_url(tmp_path: Path) -> str:
    """URL of a SQLite database file unique to the test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"


@pytest_asyncio.fixture
async def sqlite_engine(sqlite_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """Engine on a fresh SQLite file with the ledger schema installed."""
    engine = create_engine(sqlite_url)
    await initialize_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sql_store(sqlite_engine: AsyncEngine, registry: EventTypeRegistry) -> SQLEventStore:
    return SQLEventStore(sqlite_engine, registry, enable_tracing=False, page_size=7)


# =============================================================================
# Tracing Fixtures
# =============================================================================


@pytest.fixture
def mock_tracer() -> MockTracer:
    return MockTracer()
