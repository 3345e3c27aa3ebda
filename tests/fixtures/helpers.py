"""
Append helpers shared by the tests.

Each helper takes anything with the ``EventStore.append`` signature, so they
work against a store and against an EventLedger alike.
"""

from typing import Any
from uuid import UUID

from eventledger.stores.interface import AppendResult


async def register_user(
    store: Any,
    stream_id: str,
    email: str | None = None,
    **kwargs: Any,
) -> AppendResult:
    return await store.append(
        stream_id,
        "User",
        "UserRegistered",
        {"email": email or f"{stream_id}@example.com", "username": stream_id},
        **kwargs,
    )


async def verify_user(store: Any, stream_id: str, email: str, **kwargs: Any) -> AppendResult:
    return await store.append(stream_id, "User", "UserEmailVerified", {"email": email}, **kwargs)


async def open_account(
    store: Any,
    stream_id: str,
    owner: str = "alice",
    **kwargs: Any,
) -> AppendResult:
    return await store.append(stream_id, "Account", "AccountOpened", {"owner": owner}, **kwargs)


async def deposit(
    store: Any,
    stream_id: str,
    amount: int,
    *,
    causation_id: UUID | None = None,
    **kwargs: Any,
) -> AppendResult:
    return await store.append(
        stream_id,
        "Account",
        "FundsDeposited",
        {"amount": amount},
        causation_id=causation_id,
        **kwargs,
    )
