"""
Shared test fixtures for the eventledger library.

Usage:
    from tests.fixtures import (
        AccountBalanceProjection,
        UserProfileProjection,
        build_registry,
        open_account,
        register_user,
    )
"""

from tests.fixtures.helpers import deposit, open_account, register_user, verify_user
from tests.fixtures.payloads import (
    ACCOUNT_EVENT_TYPES,
    USER_EVENT_TYPES,
    AccountOpened,
    FundsDeposited,
    FundsWithdrawn,
    UserEmailVerified,
    UserProfileUpdated,
    UserRegistered,
    build_registry,
)
from tests.fixtures.projections import (
    AccountBalanceProjection,
    EventCountProjection,
    FailingDepositProjection,
    StrictUserProfileProjection,
    UserProfileProjection,
)
from tests.fixtures.stores import UnavailableProjectionStore

__all__ = [
    "ACCOUNT_EVENT_TYPES",
    "USER_EVENT_TYPES",
    "AccountBalanceProjection",
    "AccountOpened",
    "EventCountProjection",
    "FailingDepositProjection",
    "FundsDeposited",
    "FundsWithdrawn",
    "StrictUserProfileProjection",
    "UnavailableProjectionStore",
    "UserEmailVerified",
    "UserProfileProjection",
    "UserProfileUpdated",
    "UserRegistered",
    "build_registry",
    "deposit",
    "open_account",
    "register_user",
    "verify_user",
]
