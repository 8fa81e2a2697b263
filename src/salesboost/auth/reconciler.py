"""Auth reconciler -- one authoritative "current user or None" for the client.

Combines the persistent auth cache with the live auth service:

- A valid cache entry answers immediately (provisional result) while a
  one-shot background check refreshes the cache. The background task only
  ever writes the cache; consumers re-read current_user() to observe it.
- Without a valid entry the server check is awaited. An authoritative
  "not authenticated" clears the cache; a transport failure falls back to
  whatever entry is stored, expired or not, instead of logging the user out.
- login confirms with the server before caching; logout clears the cache
  before telling the server.

IMPORTANT: only an authoritative "not authenticated" answer clears the
cache. Transient failures never force a logout.
"""

from __future__ import annotations

import asyncio

import structlog

from src.salesboost.auth.cache import PersistentAuthCache
from src.salesboost.auth.guard import role_matches
from src.salesboost.auth.schemas import User
from src.salesboost.auth.service import AuthService, AuthServiceError
from src.salesboost.core.mutations import apply_then_confirm, confirm_then_apply

logger = structlog.get_logger(__name__)


class AuthReconciler:
    """Resolves and tracks the current user.

    Args:
        cache: Persistent auth cache (injected, never global).
        service: Server-side auth collaborator.
        verify_delay: Seconds to wait before the post-login session check.
    """

    def __init__(
        self,
        cache: PersistentAuthCache,
        service: AuthService,
        *,
        verify_delay: float = 0.1,
    ) -> None:
        self._cache = cache
        self._service = service
        self._verify_delay = verify_delay
        self._user: User | None = None
        self._background: set[asyncio.Task] = set()
        # Bumped on login/logout so a background check started under an
        # earlier session cannot write into the cache of a later one.
        self._session_epoch = 0
        self.last_error: str | None = None

    @property
    def user(self) -> User | None:
        """User as of the last resolve/login/logout/refresh (what was rendered)."""
        return self._user

    def current_user(self) -> User | None:
        """Re-read the cache. Reflects background refreshes; pull, not push."""
        return self._cache.current_user()

    # ── Resolution ──────────────────────────────────────────────────────────

    async def resolve(self) -> User | None:
        """Determine the current user, preferring a valid cache entry."""
        cached = self._cache.current_user()
        if cached is not None:
            logger.debug("auth.provisional_from_cache", user_id=cached.id)
            self._schedule_background_check()
            self._user = cached
            return cached

        try:
            user = await self._service.check()
        except Exception as exc:
            self.last_error = str(exc) or "Authentication failed"
            fallback = self._cache.read().user
            logger.warning(
                "auth.check_failed",
                error=self.last_error,
                fallback_user_id=fallback.id if fallback else None,
            )
            self._user = fallback
            return fallback

        if user is None:
            logger.info("auth.not_authenticated")
            self._cache.clear()
            self._user = None
            return None

        logger.info("auth.authenticated", user_id=user.id)
        self._cache.write(user)
        self._user = user
        return user

    async def refresh_user(self) -> User | None:
        """Force an authoritative check, bypassing the provisional cache path.

        Transient failures keep both the cache and the resolved user as they
        were.
        """
        try:
            user = await self._service.check()
        except Exception as exc:
            self.last_error = str(exc) or "Authentication failed"
            logger.warning("auth.refresh_failed", error=self.last_error)
            return self._user

        if user is None:
            self._cache.clear()
        else:
            self._cache.write(user)
        self._user = user
        return user

    def _schedule_background_check(self) -> None:
        task = asyncio.get_running_loop().create_task(
            self._background_check(self._session_epoch)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _background_check(self, epoch: int) -> None:
        try:
            user = await self._service.check()
        except Exception as exc:
            logger.warning("auth.background_check_failed", error=str(exc))
            return

        if user is None:
            # Provisional value stands until refresh_user() says otherwise.
            logger.info("auth.background_check_unauthenticated")
            return
        if epoch != self._session_epoch:
            logger.debug("auth.background_check_stale", user_id=user.id)
            return

        self._cache.write(user)
        logger.debug("auth.background_check_refreshed", user_id=user.id)

    async def wait_for_background(self) -> None:
        """Wait for in-flight background checks to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Login / logout ──────────────────────────────────────────────────────

    async def login(self, username: str, password: str) -> User:
        """Log in and cache the user.

        Raises:
            LoginError / AuthServiceError: The server refused or could not be
                reached. The cache is left untouched.
        """
        self.last_error = None
        try:
            user = await confirm_then_apply(
                lambda: self._service.login(username, password),
                self._accept_login,
                operation="login",
            )
        except AuthServiceError as exc:
            self.last_error = str(exc)
            raise

        await self._verify_session(user)
        logger.info("auth.login_succeeded", user_id=user.id)
        return user

    def _accept_login(self, user: User) -> User:
        self._session_epoch += 1
        self._cache.write(user)
        self._user = user
        return user

    async def _verify_session(self, user: User) -> None:
        """One extra round-trip confirming the server session exists.

        Failure is logged only; the cached login stands.
        """
        if self._verify_delay > 0:
            await asyncio.sleep(self._verify_delay)
        try:
            verified = await self._service.check()
        except Exception as exc:
            logger.warning("auth.session_verify_error", user_id=user.id, error=str(exc))
            return
        if verified is None:
            logger.warning("auth.session_unverified", user_id=user.id)
        else:
            logger.debug("auth.session_verified", user_id=verified.id)

    async def logout(self) -> None:
        """Drop the local session immediately, then tell the server. Never raises."""
        confirmed, server_ok = await apply_then_confirm(
            self._drop_local_session,
            self._service.logout,
            operation="logout",
        )
        if confirmed and not server_ok:
            logger.warning("auth.server_logout_failed")

    def _drop_local_session(self) -> None:
        self._session_epoch += 1
        self._cache.clear()
        self._user = None

    # ── Authorization ───────────────────────────────────────────────────────

    def has_role(self, required: str) -> bool:
        """True if the resolved user satisfies required (admin-equivalents widen "admin")."""
        if self._user is None:
            return False
        return role_matches(self._user, required)

    async def aclose(self) -> None:
        await self.wait_for_background()
        await self._service.aclose()
