"""
Unit tests for the Projector.

Tests cover:
- Catch-up and lag reporting
- Idempotent re-runs and checkpoint resume
- Failure handling: prefix commit, strict projections, isolation
- Cancellation, rebuild, reset and replay
"""

import asyncio
from uuid import uuid4

import pytest

from eventledger.exceptions import (
    ProjectionError,
    ProjectionNotFoundError,
    UnknownEventTypeError,
)
from eventledger.observability import MockTracer
from eventledger.projections import (
    CheckpointData,
    InMemoryProjectionStore,
    Projector,
)
from eventledger.stores import InMemoryEventStore
from tests.fixtures import (
    AccountBalanceProjection,
    EventCountProjection,
    FailingDepositProjection,
    StrictUserProfileProjection,
    UnavailableProjectionStore,
    UserProfileProjection,
    deposit,
    open_account,
    register_user,
    verify_user,
)


class TestRegistration:
    def test_register_and_get(self, projector: Projector) -> None:
        projection = projector.register(UserProfileProjection())

        assert projector.get("user_profiles") is projection
        assert projector.projection_names == ["user_profiles"]

    def test_register_same_instance_twice(self, projector: Projector) -> None:
        projection = UserProfileProjection()
        projector.register(projection)
        projector.register(projection)

        assert projector.projection_names == ["user_profiles"]

    def test_register_name_clash(self, projector: Projector) -> None:
        projector.register(UserProfileProjection())

        with pytest.raises(ValueError, match="already registered"):
            projector.register(UserProfileProjection())

    def test_unknown_projection(self, projector: Projector) -> None:
        with pytest.raises(ProjectionNotFoundError):
            projector.get("nope")

    def test_unregister(self, projector: Projector) -> None:
        projector.register(UserProfileProjection())

        assert projector.unregister("user_profiles") is True
        assert projector.unregister("user_profiles") is False

    def test_batch_size_validated(self, store: InMemoryEventStore) -> None:
        with pytest.raises(ValueError):
            Projector(store, batch_size=0, enable_tracing=False)


class TestCatchUp:
    @pytest.mark.asyncio
    async def test_user_becomes_active(
        self, store: InMemoryEventStore, projector: Projector
    ) -> None:
        projector.register(UserProfileProjection())
        await store.append("u1", "User", "UserRegistered", {"email": "a@b.com", "username": "ab"})
        await store.append(
            "u1", "User", "UserEmailVerified", {"email": "a@b.com"}, expected_version=1
        )

        applied = await projector.catch_up("user_profiles")

        assert applied == 2
        state = await projector.get_state("user_profiles", "u1")
        assert state is not None
        assert state["status"] == "active"
        assert state["email"] == "a@b.com"

    @pytest.mark.asyncio
    async def test_pending_until_verified(
        self, store: InMemoryEventStore, projector: Projector
    ) -> None:
        projector.register(UserProfileProjection())
        await register_user(store, "u1", "a@b.com")
        await projector.catch_up("user_profiles")

        state = await projector.get_state("user_profiles", "u1")
        assert state is not None and state["status"] == "pending"

        await verify_user(store, "u1", "a@b.com")
        assert await projector.catch_up("user_profiles") == 1
        state = await projector.get_state("user_profiles", "u1")
        assert state is not None and state["status"] == "active"

    @pytest.mark.asyncio
    async def test_second_run_changes_nothing(
        self, store: InMemoryEventStore, projector: Projector
    ) -> None:
        projector.register(AccountBalanceProjection())
        await open_account(store, "a1")
        for amount in range(1, 26):
            await deposit(store, "a1", amount)

        await projector.catch_up("account_balances")
        state = await projector.list_states("account_balances")
        checkpoint = await projector.projection_store.get_checkpoint("account_balances")

        assert await projector.catch_up("account_balances") == 0
        assert await projector.list_states("account_balances") == state
        assert await projector.projection_store.get_checkpoint("account_balances") == checkpoint
        assert state["a1"]["balance"] == sum(range(1, 26))

    @pytest.mark.asyncio
    async def test_spans_multiple_batches(
        self, store: InMemoryEventStore, projector: Projector
    ) -> None:
        projector.register(EventCountProjection())
        await open_account(store, "a1")
        for amount in range(1, 35):
            await deposit(store, "a1", amount)

        assert await projector.catch_up("event_counts") == 35
        state = await projector.get_state("event_counts", "all")
        assert state == {"count": 35, "by_type": {"AccountOpened": 1, "FundsDeposited": 34}}

    @pytest.mark.asyncio
    async def test_skipped_stream_types_advance_checkpoint(
        self, store: InMemoryEventStore, projector: Projector
    ) -> None:
        projector.register(AccountBalanceProjection())
        await register_user(store, "u1")
        await register_user(store, "u2")

        assert await projector.catch_up("account_balances") == 0
        lag = await projector.get_lag("account_balances")
        assert lag.position == 2
        assert lag.is_caught_up
        assert await projector.list_states("account_balances") == {}

    @pytest.mark.asyncio
    async def test_rows_already_past_event_are_not_reapplied(
        self, store: InMemoryEventStore, projection_store: InMemoryProjectionStore
    ) -> None:
        projector = Projector(store, projection_store, batch_size=10, enable_tracing=False)
        projector.register(AccountBalanceProjection())
        await open_account(store, "a1")
        await deposit(store, "a1", 5)
        await projector.catch_up("account_balances")

        # Simulate a crash between row write and checkpoint write
        await projection_store.commit(
            "account_balances", [], CheckpointData("account_balances", global_position=0)
        )
        await deposit(store, "a1", 7)
        await projector.catch_up("account_balances")

        state = await projector.get_state("account_balances", "a1")
        assert state is not None
        assert state["balance"] == 12
        assert state["transactions"] == 2


class TestLag:
    @pytest.mark.asyncio
    async def test_lag_reports_unprocessed_events(
        self, store: InMemoryEventStore, projector: Projector
    ) -> None:
        projector.register(UserProfileProjection())
        await register_user(store, "u1")
        await register_user(store, "u2")

        lag = await projector.get_lag("user_profiles")
        assert (lag.position, lag.head_position, lag.lag_events) == (0, 2, 2)
        assert not lag.is_caught_up

        await projector.catch_up("user_profiles")
        lag = await projector.get_lag("user_profiles")
        assert lag.lag_events == 0
        assert lag.events_processed == 2

    @pytest.mark.asyncio
    async def test_get_all_lag(self, store: InMemoryEventStore, projector: Projector) -> None:
        projector.register(UserProfileProjection())
        projector.register(AccountBalanceProjection())
        await register_user(store, "u1")

        lags = await projector.get_all_lag()
        assert set(lags) == {"user_profiles", "account_balances"}
        assert all(lag.lag_events == 1 for lag in lags.values())


class TestFailures:
    @pytest.mark.asyncio
    async def test_failing_handler_commits_prefix(
        self, store: InMemoryEventStore, projector: Projector
    ) -> None:
        projector.register(FailingDepositProjection())
        await open_account(store, "a1")
        await deposit(store, "a1", 5)
        failing = await deposit(store, "a1", 13)
        await deposit(store, "a1", 2)

        with pytest.raises(ProjectionError) as exc_info:
            await projector.catch_up("failing_balances")

        assert exc_info.value.event_id == failing.event_id
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        lag = await projector.get_lag("failing_balances")
        assert lag.position == 2
        state = await projector.get_state("failing_balances", "a1")
        assert state is not None and state["balance"] == 5

        # The failing event is retried, not skipped
        with pytest.raises(ProjectionError):
            await projector.catch_up("failing_balances")
        assert (await projector.get_lag("failing_balances")).position == 2

    @pytest.mark.asyncio
    async def test_strict_projection_halts_on_unknown_type(
        self, store: InMemoryEventStore, projector: Projector
    ) -> None:
        projector.register(StrictUserProfileProjection())
        await register_user(store, "u1")
        await open_account(store, "a1")

        with pytest.raises(UnknownEventTypeError) as exc_info:
            await projector.catch_up("strict_user_profiles")

        assert exc_info.value.event_type == "AccountOpened"
        assert (await projector.get_lag("strict_user_profiles")).position == 1

    @pytest.mark.asyncio
    async def test_ignore_mode_skips_unknown_types(
        self, store: InMemoryEventStore, projector: Projector
    ) -> None:
        projector.register(UserProfileProjection())
        await register_user(store, "u1")
        await store.append("u1", "User", "AuditNote", {"text": "hello"})

        assert await projector.catch_up("user_profiles") == 2
        assert (await projector.get_lag("user_profiles")).is_caught_up

    @pytest.mark.asyncio
    async def test_catch_up_all_isolates_failures(
        self, store: InMemoryEventStore, projector: Projector
    ) -> None:
        projector.register(FailingDepositProjection())
        projector.register(AccountBalanceProjection())
        await open_account(store, "a1")
        await deposit(store, "a1", 13)

        results = await projector.catch_up_all()

        assert results["failing_balances"].success is False
        assert isinstance(results["failing_balances"].error, ProjectionError)
        assert results["account_balances"].success is True
        assert results["account_balances"].events_processed == 2
        state = await projector.get_state("account_balances", "a1")
        assert state is not None and state["balance"] == 13

    @pytest.mark.asyncio
    async def test_catch_up_all_survives_unreadable_checkpoints(
        self, store: InMemoryEventStore
    ) -> None:
        projector = Projector(store, UnavailableProjectionStore(), enable_tracing=False)
        projector.register(UserProfileProjection())
        await register_user(store, "u1")

        results = await projector.catch_up_all()

        result = results["user_profiles"]
        assert isinstance(result.error, RuntimeError)
        assert result.completed is False
        assert result.final_position == -1


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_before_start(
        self, store: InMemoryEventStore, projector: Projector
    ) -> None:
        projector.register(EventCountProjection())
        await register_user(store, "u1")
        cancel = asyncio.Event()
        cancel.set()

        assert await projector.catch_up("event_counts", cancel_event=cancel) == 0
        assert (await projector.get_lag("event_counts")).position == 0

    @pytest.mark.asyncio
    async def test_cancel_between_events_commits_progress(
        self, store: InMemoryEventStore
    ) -> None:
        class CancellingCount(EventCountProjection):
            name = "cancelling_counts"

            def __init__(self, cancel: asyncio.Event) -> None:
                super().__init__()
                self.cancel = cancel

            def apply(self, event, state):  # type: ignore[no-untyped-def]
                new_state = super().apply(event, state)
                if new_state["count"] == 3:
                    self.cancel.set()
                return new_state

        cancel = asyncio.Event()
        projector = Projector(store, batch_size=100, enable_tracing=False)
        projector.register(CancellingCount(cancel))
        for n in range(6):
            await register_user(store, f"u{n}")

        assert await projector.catch_up("cancelling_counts", cancel_event=cancel) == 3
        assert (await projector.get_lag("cancelling_counts")).position == 3


class TestRebuildAndReplay:
    @pytest.mark.asyncio
    async def test_rebuild_recomputes_from_scratch(
        self, store: InMemoryEventStore, projector: Projector
    ) -> None:
        projector.register(AccountBalanceProjection())
        await open_account(store, "a1")
        await deposit(store, "a1", 4)
        await projector.catch_up("account_balances")
        before = await projector.list_states("account_balances")

        assert await projector.rebuild("account_balances") == 2
        assert await projector.list_states("account_balances") == before

    @pytest.mark.asyncio
    async def test_reset_drops_rows_and_checkpoint(
        self, store: InMemoryEventStore, projector: Projector
    ) -> None:
        projector.register(UserProfileProjection())
        await register_user(store, "u1")
        await projector.catch_up("user_profiles")

        await projector.reset("user_profiles")

        assert await projector.get_state("user_profiles", "u1") is None
        assert (await projector.get_lag("user_profiles")).position == 0

    @pytest.mark.asyncio
    async def test_replay_stream_is_deterministic(
        self, store: InMemoryEventStore, projector: Projector
    ) -> None:
        projector.register(UserProfileProjection())
        await register_user(store, "u1", "a@b.com")
        await verify_user(store, "u1", "a@b.com")

        first = await projector.replay_stream("user_profiles", "u1")
        second = await projector.replay_stream("user_profiles", "u1")

        assert first == second
        assert first["status"] == "active"
        assert await projector.get_state("user_profiles", "u1") is None

    @pytest.mark.asyncio
    async def test_replay_matches_catch_up(
        self, store: InMemoryEventStore, projector: Projector
    ) -> None:
        projector.register(AccountBalanceProjection())
        await open_account(store, "a1")
        for amount in (3, 9, 27):
            await deposit(store, "a1", amount)
        await store.append("a1", "Account", "FundsWithdrawn", {"amount": 4})
        await projector.catch_up("account_balances")

        assert await projector.replay_stream("account_balances", "a1") == (
            await projector.get_state("account_balances", "a1")
        )

    @pytest.mark.asyncio
    async def test_unknown_stream_replays_to_initial_state(self, projector: Projector) -> None:
        projector.register(AccountBalanceProjection())

        state = await projector.replay_stream("account_balances", str(uuid4()))
        assert state == {"owner": None, "balance": 0, "transactions": 0}


class TestTracing:
    @pytest.mark.asyncio
    async def test_catch_up_span(self, store: InMemoryEventStore, mock_tracer: MockTracer) -> None:
        projector = Projector(store, tracer=mock_tracer)
        projector.register(UserProfileProjection())
        await register_user(store, "u1")

        await projector.catch_up("user_profiles")

        attrs = mock_tracer.attributes_for("eventledger.projector.catch_up")[0]
        assert attrs["eventledger.projection.name"] == "user_profiles"
        assert attrs["eventledger.head_position"] == 1
        assert attrs["eventledger.events.processed"] == 1
