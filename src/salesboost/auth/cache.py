"""Persistent auth cache -- the durable {user, timestamp} slot.

Survives process restarts through a KeyValueStorage backend and applies an
age-based validity rule: an entry is valid only if it holds a user and was
written less than max_age_ms ago. Anything else reads as "no user".

Failure handling:
- Absent, corrupt, or unreadable entries read as CachedAuth.empty(). A corrupt
  entry is logged and its key removed. Nothing here raises on bad data.
- A failed write or clear is logged and the intended entry is kept in memory
  for the rest of the process, so the caller still observes its own write.
"""

from __future__ import annotations

import time
from collections.abc import Callable

import structlog
from pydantic import ValidationError

from src.salesboost.auth.schemas import CachedAuth, User
from src.salesboost.auth.storage import KeyValueStorage

logger = structlog.get_logger(__name__)

DEFAULT_CACHE_KEY = "salesSpark_auth"
DEFAULT_MAX_AGE_MS = 24 * 60 * 60 * 1000


def epoch_millis() -> int:
    return int(time.time() * 1000)


class PersistentAuthCache:
    """Injectable store for the cached auth entry.

    Args:
        storage: Durable backend the entry is persisted to.
        key: Storage key holding the serialized CachedAuth.
        max_age_ms: Entries older than this are treated as absent.
        clock: Returns the current time in epoch milliseconds.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        *,
        key: str = DEFAULT_CACHE_KEY,
        max_age_ms: int = DEFAULT_MAX_AGE_MS,
        clock: Callable[[], int] = epoch_millis,
    ) -> None:
        self._storage = storage
        self._key = key
        self._max_age_ms = max_age_ms
        self._clock = clock
        # Set when the backend refused a write; shadows storage until a
        # later write succeeds.
        self._unpersisted: CachedAuth | None = None

    @property
    def max_age_ms(self) -> int:
        return self._max_age_ms

    def read(self) -> CachedAuth:
        """Return the stored entry, or an empty entry if none can be read."""
        if self._unpersisted is not None:
            return self._unpersisted

        try:
            raw = self._storage.get(self._key)
        except (OSError, ValueError) as exc:
            logger.error("auth_cache.read_failed", key=self._key, error=str(exc))
            return CachedAuth.empty()

        if raw is None:
            return CachedAuth.empty()

        try:
            return CachedAuth.model_validate_json(raw)
        except ValidationError as exc:
            logger.error(
                "auth_cache.corrupt_entry",
                key=self._key,
                error_count=exc.error_count(),
            )
            self._remove()
            return CachedAuth.empty()

    def write(self, user: User | None) -> None:
        """Store user with a fresh timestamp. None clears the entry instead."""
        if user is None:
            self.clear()
            return

        entry = CachedAuth(user=user, timestamp=self._clock())
        try:
            self._storage.set(self._key, entry.model_dump_json())
        except (OSError, ValueError) as exc:
            logger.error(
                "auth_cache.persist_failed",
                key=self._key,
                operation="write",
                error=str(exc),
            )
            self._unpersisted = entry
            return
        self._unpersisted = None
        logger.debug("auth_cache.written", user_id=user.id)

    def clear(self) -> None:
        """Remove the entry. Safe to call when nothing is stored."""
        if not self._remove():
            self._unpersisted = CachedAuth.empty()
            return
        self._unpersisted = None

    def is_valid(self) -> bool:
        return self.is_entry_valid(self.read())

    def is_entry_valid(self, entry: CachedAuth) -> bool:
        """Validity rule applied to an arbitrary entry at the current time."""
        return entry.user is not None and self._clock() - entry.timestamp < self._max_age_ms

    def current_user(self) -> User | None:
        entry = self.read()
        return entry.user if self.is_entry_valid(entry) else None

    def _remove(self) -> bool:
        try:
            self._storage.delete(self._key)
        except (OSError, ValueError) as exc:
            logger.error(
                "auth_cache.persist_failed",
                key=self._key,
                operation="clear",
                error=str(exc),
            )
            return False
        return True
