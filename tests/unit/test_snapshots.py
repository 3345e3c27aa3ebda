"""
Unit tests for snapshots: InMemorySnapshotStore and SnapshotManager.

Tests cover:
- Interval-based snapshotting and retention
- Loading from the newest snapshot and equivalence with full replay
- Schema version mismatch fallback
- Non-fatal automatic snapshots and failing explicit snapshots
"""

import logging
from datetime import UTC, datetime
from typing import Any

import pytest

from eventledger.exceptions import SnapshotFailureError
from eventledger.observability import MockTracer
from eventledger.snapshots import (
    InMemorySnapshotStore,
    LoadedState,
    Snapshot,
    SnapshotManager,
)
from eventledger.stores import InMemoryEventStore
from tests.fixtures import AccountBalanceProjection, deposit, open_account, register_user


def snapshot(version: int, state: dict[str, Any] | None = None) -> Snapshot:
    return Snapshot(
        aggregate_id="a1",
        aggregate_type="Account",
        version=version,
        state=state or {"v": version},
        schema_version=1,
        created_at=datetime.now(UTC),
    )


async def fill_account(
    store: InMemoryEventStore,
    count: int,
    manager: SnapshotManager | None = None,
) -> None:
    """Append ``count`` events to a1, checking for snapshots after each one."""
    for n in range(count):
        if n == 0:
            await open_account(store, "a1")
        else:
            await deposit(store, "a1", n)
        if manager is not None:
            await manager.maybe_snapshot("a1")


async def fill_account_more(store: InMemoryEventStore, count: int) -> None:
    for n in range(count):
        await deposit(store, "a1", 100 + n)


@pytest.fixture
def manager(store: InMemoryEventStore, snapshot_store: InMemorySnapshotStore) -> SnapshotManager:
    manager = SnapshotManager(store, snapshot_store, interval=100, enable_tracing=False)
    manager.register("Account", AccountBalanceProjection())
    return manager


class FailingSnapshotStore(InMemorySnapshotStore):
    async def save_snapshot(self, snapshot: Snapshot) -> None:
        raise OSError("disk full")


class TestInMemorySnapshotStore:
    @pytest.mark.asyncio
    async def test_latest_wins(self, snapshot_store: InMemorySnapshotStore) -> None:
        await snapshot_store.save_snapshot(snapshot(100))
        await snapshot_store.save_snapshot(snapshot(200))

        latest = await snapshot_store.get_snapshot("a1", "Account")
        assert latest is not None and latest.version == 200
        capped = await snapshot_store.get_snapshot("a1", "Account", max_version=150)
        assert capped is not None and capped.version == 100
        assert await snapshot_store.get_snapshot("a1", "User") is None

    @pytest.mark.asyncio
    async def test_same_version_is_replaced(self, snapshot_store: InMemorySnapshotStore) -> None:
        await snapshot_store.save_snapshot(snapshot(100, {"old": True}))
        await snapshot_store.save_snapshot(snapshot(100, {"new": True}))

        snapshots = await snapshot_store.list_snapshots("a1", "Account")
        assert [s.state for s in snapshots] == [{"new": True}]

    @pytest.mark.asyncio
    async def test_prune_keeps_newest(self, snapshot_store: InMemorySnapshotStore) -> None:
        for version in (100, 200, 300):
            await snapshot_store.save_snapshot(snapshot(version))

        assert await snapshot_store.prune("a1", "Account", retain=2) == 1
        assert [s.version for s in await snapshot_store.list_snapshots("a1", "Account")] == [
            200,
            300,
        ]
        with pytest.raises(ValueError):
            await snapshot_store.prune("a1", "Account", retain=0)

    @pytest.mark.asyncio
    async def test_delete(self, snapshot_store: InMemorySnapshotStore) -> None:
        await snapshot_store.save_snapshot(snapshot(100))
        await snapshot_store.save_snapshot(snapshot(200))

        assert await snapshot_store.delete_snapshots("a1", "Account") == 2
        assert not await snapshot_store.snapshot_exists("a1", "Account")
        assert snapshot_store.snapshot_count == 0

    @pytest.mark.asyncio
    async def test_states_are_copied(self, snapshot_store: InMemorySnapshotStore) -> None:
        await snapshot_store.save_snapshot(snapshot(1, {"items": [1]}))
        loaded = await snapshot_store.get_snapshot("a1", "Account")
        assert loaded is not None
        loaded.state["items"].append(2)

        again = await snapshot_store.get_snapshot("a1", "Account")
        assert again is not None and again.state == {"items": [1]}

    def test_str(self) -> None:
        assert str(snapshot(100)) == "Snapshot(Account/a1, v100, schema_v1)"


class TestMaybeSnapshot:
    @pytest.mark.asyncio
    async def test_250_events_yield_two_snapshots(
        self,
        store: InMemoryEventStore,
        snapshot_store: InMemorySnapshotStore,
        manager: SnapshotManager,
    ) -> None:
        await fill_account(store, 250, manager)

        snapshots = await snapshot_store.list_snapshots("a1", "Account")
        assert [s.version for s in snapshots] == [100, 200]

        loaded = await manager.load_with_snapshot("a1")
        assert loaded.snapshot_version == 200
        assert loaded.events_replayed == 50
        assert loaded.version == 250
        assert loaded.state["balance"] == sum(range(1, 250))

    @pytest.mark.asyncio
    async def test_below_interval_does_nothing(
        self, store: InMemoryEventStore, manager: SnapshotManager
    ) -> None:
        await fill_account(store, 99)

        assert await manager.maybe_snapshot("a1") is None

    @pytest.mark.asyncio
    async def test_interval_override(
        self, store: InMemoryEventStore, manager: SnapshotManager
    ) -> None:
        await fill_account(store, 10)

        created = await manager.maybe_snapshot("a1", interval=5)
        assert created is not None and created.version == 10
        assert await manager.maybe_snapshot("a1", interval=5) is None

    @pytest.mark.asyncio
    async def test_snapshot_state_builds_on_previous_snapshot(
        self, store: InMemoryEventStore, manager: SnapshotManager
    ) -> None:
        await fill_account(store, 4)
        first = await manager.maybe_snapshot("a1", interval=4)
        await fill_account_more(store, 4)
        second = await manager.maybe_snapshot("a1", interval=4)

        assert first is not None and second is not None
        assert second.version == 8
        assert second.state == (await manager.load_with_snapshot("a1")).state

    @pytest.mark.asyncio
    async def test_unknown_stream_and_unregistered_type(
        self, store: InMemoryEventStore, manager: SnapshotManager
    ) -> None:
        assert await manager.maybe_snapshot("nope") is None
        await register_user(store, "u1")
        assert await manager.maybe_snapshot("u1", interval=1) is None
        assert manager.failure_count == 0

    @pytest.mark.asyncio
    async def test_failure_is_logged_and_counted(
        self, store: InMemoryEventStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        manager = SnapshotManager(store, FailingSnapshotStore(), interval=2, enable_tracing=False)
        manager.register("Account", AccountBalanceProjection())
        await fill_account(store, 2)

        with caplog.at_level(logging.WARNING):
            assert await manager.maybe_snapshot("a1") is None

        assert manager.failure_count == 1
        assert isinstance(manager.last_failure, OSError)
        assert "Automatic snapshot of stream a1 failed" in caplog.text

    @pytest.mark.asyncio
    async def test_retain_prunes_history(self, store: InMemoryEventStore) -> None:
        snapshot_store = InMemorySnapshotStore()
        manager = SnapshotManager(
            store, snapshot_store, interval=10, retain=1, enable_tracing=False
        )
        manager.register("Account", AccountBalanceProjection())

        await fill_account(store, 35, manager)

        assert [s.version for s in await snapshot_store.list_snapshots("a1", "Account")] == [30]

    @pytest.mark.asyncio
    async def test_span(self, store: InMemoryEventStore, mock_tracer: MockTracer) -> None:
        manager = SnapshotManager(store, interval=1, tracer=mock_tracer)
        manager.register("Account", AccountBalanceProjection())
        await open_account(store, "a1")

        await manager.maybe_snapshot("a1")

        attrs = mock_tracer.attributes_for("eventledger.snapshot_manager.maybe_snapshot")[0]
        assert attrs is not None
        assert attrs["eventledger.snapshot.interval"] == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("interval", [0, -5])
    async def test_invalid_interval_override(
        self, store: InMemoryEventStore, interval: int
    ) -> None:
        manager = SnapshotManager(store, interval=1, enable_tracing=False)
        manager.register("Account", AccountBalanceProjection())
        await open_account(store, "a1")

        with pytest.raises(ValueError):
            await manager.maybe_snapshot("a1", interval=interval)

        assert manager.failure_count == 0
        assert not await manager.snapshot_store.snapshot_exists("a1", "Account")

    def test_invalid_settings(self, store: InMemoryEventStore) -> None:
        with pytest.raises(ValueError):
            SnapshotManager(store, interval=0, enable_tracing=False)
        with pytest.raises(ValueError):
            SnapshotManager(store, retain=0, enable_tracing=False)


class TestCreateSnapshot:
    @pytest.mark.asyncio
    async def test_explicit_snapshot_ignores_interval(
        self, store: InMemoryEventStore, manager: SnapshotManager
    ) -> None:
        await fill_account(store, 3)

        created = await manager.create_snapshot("a1")

        assert created.version == 3
        assert created.aggregate_type == "Account"
        assert created.state["balance"] == 3

    @pytest.mark.asyncio
    async def test_unknown_stream(self, manager: SnapshotManager) -> None:
        with pytest.raises(SnapshotFailureError, match="does not exist"):
            await manager.create_snapshot("nope")

    @pytest.mark.asyncio
    async def test_unregistered_type(
        self, store: InMemoryEventStore, manager: SnapshotManager
    ) -> None:
        await register_user(store, "u1")

        with pytest.raises(SnapshotFailureError, match="no state function"):
            await manager.create_snapshot("u1")

    @pytest.mark.asyncio
    async def test_store_error_is_wrapped(self, store: InMemoryEventStore) -> None:
        manager = SnapshotManager(store, FailingSnapshotStore(), enable_tracing=False)
        manager.register("Account", AccountBalanceProjection())
        await fill_account(store, 1)

        with pytest.raises(SnapshotFailureError) as exc_info:
            await manager.create_snapshot("a1")

        assert isinstance(exc_info.value.original_error, OSError)
        assert exc_info.value.stream_id == "a1"


class TestLoadWithSnapshot:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("interval", [1, 3, 7, 100])
    @pytest.mark.parametrize("length", [1, 2, 10, 23])
    async def test_equals_full_replay(
        self, store: InMemoryEventStore, interval: int, length: int
    ) -> None:
        manager = SnapshotManager(store, interval=interval, enable_tracing=False)
        projection = manager.register("Account", AccountBalanceProjection())
        await fill_account(store, length, manager)

        loaded = await manager.load_with_snapshot("a1")
        full = projection.replay([event async for event in store.read_stream("a1")])

        assert loaded.state == full
        assert loaded.version == length
        assert (loaded.snapshot_version or 0) + loaded.events_replayed == length

    @pytest.mark.asyncio
    async def test_empty_stream(self, manager: SnapshotManager) -> None:
        loaded = await manager.load_with_snapshot("a1", "Account")

        assert loaded == LoadedState("a1", "Account", 0, AccountBalanceProjection().initial_state())

    @pytest.mark.asyncio
    async def test_unknown_stream_without_type(self, manager: SnapshotManager) -> None:
        with pytest.raises(ValueError):
            await manager.load_with_snapshot("a1")

    @pytest.mark.asyncio
    async def test_unregistered_type(
        self, store: InMemoryEventStore, manager: SnapshotManager
    ) -> None:
        await register_user(store, "u1")

        with pytest.raises(ValueError, match="No state function"):
            await manager.load_with_snapshot("u1")

    @pytest.mark.asyncio
    async def test_stale_schema_version_forces_full_replay(
        self,
        store: InMemoryEventStore,
        snapshot_store: InMemorySnapshotStore,
    ) -> None:
        class BalanceV2(AccountBalanceProjection):
            schema_version = 2

        await fill_account(store, 5)
        await snapshot_store.save_snapshot(
            Snapshot("a1", "Account", 4, {"bogus": True}, 1, datetime.now(UTC))
        )
        manager = SnapshotManager(store, snapshot_store, enable_tracing=False)
        manager.register("Account", BalanceV2())

        loaded = await manager.load_with_snapshot("a1")

        assert loaded.snapshot_version is None
        assert loaded.events_replayed == 5
        assert loaded.state["balance"] == 10

    @pytest.mark.asyncio
    async def test_store_read_error_falls_back_to_replay(
        self, store: InMemoryEventStore
    ) -> None:
        class BrokenStore(InMemorySnapshotStore):
            async def get_snapshot(self, *args: Any, **kwargs: Any) -> Snapshot | None:
                raise OSError("unreachable")

        manager = SnapshotManager(store, BrokenStore(), enable_tracing=False)
        manager.register("Account", AccountBalanceProjection())
        await fill_account(store, 3)

        loaded = await manager.load_with_snapshot("a1")
        assert loaded.events_replayed == 3
