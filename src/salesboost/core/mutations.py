"""Local-state update strategies for server-backed mutations.

Two strategies:

- apply_then_confirm: change local state first, then notify the server.
  A server failure is logged and reported but never rolls the local change
  back. Used for logout.
- confirm_then_apply: wait for the server acknowledgement, then change local
  state from the server's answer. A server failure propagates and local state
  is left untouched. Used for login and deal stage changes.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def apply_then_confirm(
    apply: Callable[[], None],
    confirm: Callable[[], Awaitable[T]],
    *,
    operation: str,
) -> tuple[bool, T | None]:
    """Apply a local change, then best-effort confirm it with the server.

    Args:
        apply: Synchronous local mutation. Runs before any await, so callers
            observe the new state even while the server call is pending.
        confirm: Async server call.
        operation: Name used in log events.

    Returns:
        Tuple of (confirmed, server_result). confirmed is False when the
        server call raised; the local change stands either way.
    """
    apply()
    try:
        result = await confirm()
    except Exception as exc:
        logger.warning(
            "mutation.confirm_failed",
            operation=operation,
            strategy="apply_then_confirm",
            error=str(exc),
        )
        return False, None
    return True, result


async def confirm_then_apply(
    confirm: Callable[[], Awaitable[T]],
    apply: Callable[[T], R],
    *,
    operation: str,
) -> R:
    """Confirm a change with the server, then apply the server's answer locally.

    Args:
        confirm: Async server call returning the authoritative result.
        apply: Local mutation fed with the server result.
        operation: Name used in log events.

    Returns:
        Whatever apply returns.

    Raises:
        Any exception raised by confirm. Local state is not touched.
    """
    try:
        result = await confirm()
    except Exception as exc:
        logger.warning(
            "mutation.rejected",
            operation=operation,
            strategy="confirm_then_apply",
            error=str(exc),
        )
        raise
    return apply(result)
