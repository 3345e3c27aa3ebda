"""
Integration tests for projections on SQLProjectionStore.
"""

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from eventledger.exceptions import ProjectionError
from eventledger.projections import (
    CheckpointData,
    ProjectionRow,
    Projector,
    SQLProjectionStore,
)
from eventledger.stores import SQLEventStore
from tests.fixtures import (
    AccountBalanceProjection,
    FailingDepositProjection,
    UserProfileProjection,
    deposit,
    open_account,
    register_user,
    verify_user,
)

pytestmark = pytest.mark.integration


@pytest.fixture
def projection_store(sqlite_engine: AsyncEngine) -> SQLProjectionStore:
    return SQLProjectionStore(sqlite_engine, enable_tracing=False)


@pytest.fixture
def projector(sql_store: SQLEventStore, projection_store: SQLProjectionStore) -> Projector:
    return Projector(sql_store, projection_store, batch_size=4, enable_tracing=False)


class TestSQLProjectionStore:
    @pytest.mark.asyncio
    async def test_empty_checkpoint(self, projection_store: SQLProjectionStore) -> None:
        checkpoint = await projection_store.get_checkpoint("user_profiles")

        assert checkpoint.global_position == 0
        assert checkpoint.last_event_id is None
        assert await projection_store.get_all_checkpoints() == []

    @pytest.mark.asyncio
    async def test_commit_and_read_back(self, projection_store: SQLProjectionStore) -> None:
        rows = [ProjectionRow(f"k{n}", {"n": n, "tags": ["a"]}, n) for n in range(1, 4)]

        await projection_store.commit(
            "counts", rows, CheckpointData("counts", global_position=3, events_processed=3)
        )

        checkpoint = await projection_store.get_checkpoint("counts")
        assert checkpoint.global_position == 3
        assert checkpoint.updated_at is not None
        found = await projection_store.get_rows("counts", ["k1", "k3", "missing"])
        assert sorted(found) == ["k1", "k3"]
        assert found["k3"].state == {"n": 3, "tags": ["a"]}
        assert [row.key for row in await projection_store.list_rows("counts")] == [
            "k1",
            "k2",
            "k3",
        ]

    @pytest.mark.asyncio
    async def test_get_rows_spans_key_chunks(self, projection_store: SQLProjectionStore) -> None:
        keys = [f"k{n:04d}" for n in range(1200)]
        await projection_store.commit(
            "wide",
            [ProjectionRow(key, {}, 1) for key in keys],
            CheckpointData("wide", global_position=1),
        )

        assert len(await projection_store.get_rows("wide", keys)) == 1200

    @pytest.mark.asyncio
    async def test_reset(self, projection_store: SQLProjectionStore) -> None:
        await projection_store.commit(
            "counts", [ProjectionRow("k", {}, 1)], CheckpointData("counts", global_position=1)
        )

        await projection_store.reset("counts")

        assert await projection_store.list_rows("counts") == []
        assert (await projection_store.get_checkpoint("counts")).global_position == 0


class TestProjectorOnSQL:
    @pytest.mark.asyncio
    async def test_user_profiles(self, sql_store: SQLEventStore, projector: Projector) -> None:
        projector.register(UserProfileProjection())
        for n in range(5):
            await register_user(sql_store, f"u{n}")
        await verify_user(sql_store, "u2", "u2@example.com")

        assert await projector.catch_up("user_profiles") == 6

        state = await projector.get_state("user_profiles", "u2")
        assert state is not None and state["status"] == "active"
        assert len(await projector.list_states("user_profiles")) == 5
        assert (await projector.get_lag("user_profiles")).is_caught_up

    @pytest.mark.asyncio
    async def test_catch_up_is_idempotent(
        self, sql_store: SQLEventStore, projector: Projector
    ) -> None:
        projector.register(AccountBalanceProjection())
        await open_account(sql_store, "a1")
        for amount in (10, 20, 30):
            await deposit(sql_store, "a1", amount)

        await projector.catch_up("account_balances")
        assert await projector.catch_up("account_balances") == 0

        state = await projector.get_state("account_balances", "a1")
        assert state is not None and state["balance"] == 60

    @pytest.mark.asyncio
    async def test_progress_survives_a_new_projector(
        self,
        sql_store: SQLEventStore,
        sqlite_engine: AsyncEngine,
        projector: Projector,
    ) -> None:
        projector.register(AccountBalanceProjection())
        await open_account(sql_store, "a1")
        await deposit(sql_store, "a1", 5)
        await projector.catch_up("account_balances")
        await deposit(sql_store, "a1", 6)

        restarted = Projector(
            sql_store, SQLProjectionStore(sqlite_engine, enable_tracing=False), enable_tracing=False
        )
        restarted.register(AccountBalanceProjection())

        assert await restarted.catch_up("account_balances") == 1
        state = await restarted.get_state("account_balances", "a1")
        assert state is not None and state["balance"] == 11

    @pytest.mark.asyncio
    async def test_failure_commits_prefix(
        self, sql_store: SQLEventStore, projector: Projector
    ) -> None:
        projector.register(FailingDepositProjection())
        await open_account(sql_store, "a1")
        await deposit(sql_store, "a1", 2)
        await deposit(sql_store, "a1", 13)
        await deposit(sql_store, "a1", 4)

        with pytest.raises(ProjectionError):
            await projector.catch_up("failing_balances")

        lag = await projector.get_lag("failing_balances")
        assert lag.position == 2
        assert lag.lag_events == 2
        state = await projector.get_state("failing_balances", "a1")
        assert state is not None and state["balance"] == 2

    @pytest.mark.asyncio
    async def test_rebuild(self, sql_store: SQLEventStore, projector: Projector) -> None:
        projector.register(AccountBalanceProjection())
        await open_account(sql_store, "a1")
        await deposit(sql_store, "a1", 9)
        await projector.catch_up("account_balances")

        assert await projector.rebuild("account_balances") == 2
        state = await projector.get_state("account_balances", "a1")
        assert state is not None and state["balance"] == 9
