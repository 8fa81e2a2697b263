"""Auth service collaborator -- abstract interface plus the HTTP implementation.

AuthService is the narrow contract the reconciler depends on. HttpAuthService
speaks the session-cookie JSON API:

- POST /api/auth/login   {username, password} -> {success, user}
- POST /api/auth/logout                       -> {success}
- GET  /api/auth/check                        -> {isAuthenticated, user} or 401

One httpx.AsyncClient is held per service instance so the session cookie set
by login is sent on every later call. Idempotent reads are retried on
connection errors and timeouts (tenacity, exponential backoff); login is not.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog
from pydantic import ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.salesboost.auth.schemas import User

logger = structlog.get_logger(__name__)

LOGIN_PATH = "/api/auth/login"
LOGOUT_PATH = "/api/auth/logout"
CHECK_PATH = "/api/auth/check"

_NO_CACHE_HEADERS = {"Cache-Control": "no-cache, no-store, must-revalidate"}

_transport_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
    reraise=True,
)


class AuthServiceError(Exception):
    """Auth service could not give an answer (network, 5xx, unreadable body)."""


class LoginError(AuthServiceError):
    """Login was refused or did not produce a user."""


class AuthService(ABC):
    """Abstract interface for the server-side auth collaborator.

    Methods:
        login: Exchange credentials for a user, or raise LoginError.
        logout: Best-effort session teardown; True if the server confirmed.
        check: Current session user, None if not authenticated, raises
            AuthServiceError when no authoritative answer was obtained.
    """

    @abstractmethod
    async def login(self, username: str, password: str) -> User:
        ...

    @abstractmethod
    async def logout(self) -> bool:
        ...

    @abstractmethod
    async def check(self) -> User | None:
        ...

    async def aclose(self) -> None:
        """Release transport resources. No-op by default."""


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or default)
    return default


class HttpAuthService(AuthService):
    """AuthService over HTTP+JSON with cookie-based sessions.

    Args:
        base_url: Server root, e.g. http://localhost:5000.
        timeout: Per-request timeout in seconds.
        client: Pre-built httpx.AsyncClient (tests inject one with a
            MockTransport). Owned by the caller when given.
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )

    async def login(self, username: str, password: str) -> User:
        try:
            response = await self._client.post(
                LOGIN_PATH,
                json={"username": username, "password": password},
            )
        except httpx.HTTPError as exc:
            logger.warning("auth_service.login_transport_error", error=str(exc))
            raise LoginError(f"Login request failed: {exc}") from exc

        if response.is_error:
            message = _error_message(response, "Login failed")
            logger.info(
                "auth_service.login_refused",
                username=username,
                status_code=response.status_code,
            )
            raise LoginError(message)

        try:
            body: Any = response.json()
        except ValueError as exc:
            raise LoginError("Invalid JSON response from login") from exc

        if not isinstance(body, dict) or not body.get("user"):
            raise LoginError(_error_message(response, "Login response did not include a user"))

        try:
            user = User.model_validate(body["user"])
        except ValidationError as exc:
            raise LoginError("Login response user is malformed") from exc

        logger.info("auth_service.login_succeeded", user_id=user.id)
        return user

    async def logout(self) -> bool:
        try:
            response = await self._client.post(LOGOUT_PATH)
        except httpx.HTTPError as exc:
            logger.warning("auth_service.logout_transport_error", error=str(exc))
            return False
        if response.is_error:
            logger.warning(
                "auth_service.logout_failed",
                status_code=response.status_code,
                error=_error_message(response, "Unknown error"),
            )
            return False
        return True

    async def check(self) -> User | None:
        try:
            response = await self._get_check()
        except httpx.HTTPError as exc:
            raise AuthServiceError(f"Auth check failed: {exc}") from exc

        if response.status_code in (401, 403):
            logger.debug("auth_service.not_authenticated", status_code=response.status_code)
            return None
        if response.is_error:
            raise AuthServiceError(f"Auth check failed with status {response.status_code}")

        try:
            body: Any = response.json()
        except ValueError as exc:
            raise AuthServiceError("Invalid JSON response from auth check") from exc

        if not isinstance(body, dict) or not body.get("isAuthenticated") or not body.get("user"):
            return None

        try:
            return User.model_validate(body["user"])
        except ValidationError as exc:
            raise AuthServiceError("Auth check returned a malformed user") from exc

    @_transport_retry
    async def _get_check(self) -> httpx.Response:
        return await self._client.get(CHECK_PATH, headers=_NO_CACHE_HEADERS)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
