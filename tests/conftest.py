"""Shared test fixtures.

Provides:
- A controllable epoch-millis clock
- In-memory storage and a PersistentAuthCache bound to both
- Sample users for each role family
- seed_auth for planting aged cache entries
"""

from __future__ import annotations

import pytest

from src.salesboost.auth.cache import DEFAULT_CACHE_KEY, PersistentAuthCache
from src.salesboost.auth.schemas import CachedAuth, User
from src.salesboost.auth.storage import InMemoryStorage

# 2026-10-19T12:00:00Z in epoch milliseconds
NOW_MS = 1_792_411_200_000


class FakeClock:
    """Callable clock returning a settable epoch-millis value."""

    def __init__(self, now: int = NOW_MS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def cache(storage: InMemoryStorage, clock: FakeClock) -> PersistentAuthCache:
    return PersistentAuthCache(storage, clock=clock)


@pytest.fixture
def admin_user() -> User:
    return User(id=1, username="admin", name="Ada Admin", role="Admin")


@pytest.fixture
def manager_user() -> User:
    return User(id=2, username="mgr", name="Max Manager", role="manager")


@pytest.fixture
def rep_user() -> User:
    return User(id=3, username="rep", name="Rae Rep", role="sales_rep")


@pytest.fixture
def seed_auth(storage: InMemoryStorage, clock: FakeClock):
    """Write a cached auth entry aged age_ms straight into storage."""

    def seed(user: User | None, age_ms: int = 1000) -> None:
        entry = CachedAuth(user=user, timestamp=clock.now - age_ms)
        storage.set(DEFAULT_CACHE_KEY, entry.model_dump_json())

    return seed
