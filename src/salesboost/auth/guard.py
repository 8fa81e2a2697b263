"""Role guard -- pure predicates gating routes and deal actions.

No I/O and no state: every function takes the resolved user (or None) and
answers from the user's normalized role. "admin" as a requirement is
satisfied by every admin-equivalent raw role (admin, administrator,
superuser).
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

from src.salesboost.auth.schemas import Role, User
from src.salesboost.deals.schemas import Deal


class RouteDecision(str, Enum):
    """Outcome of guarding a route for the current user."""

    LOADING = "loading"
    REDIRECT_LOGIN = "redirect_login"
    UNAUTHORIZED = "unauthorized"
    ALLOW = "allow"


def role_matches(user: User, required: str) -> bool:
    """True if user satisfies one required role name.

    "admin" is satisfied by every admin-equivalent raw role. Any other name
    must equal the user's normalized role exactly, so aliases such as
    "administrator" and unknown names never match.
    """
    return user.normalized_role.value == required.strip().lower()


def authorize(user: User | None, allowed_roles: Iterable[str]) -> bool:
    """True if user holds any of allowed_roles. None is never authorized."""
    if user is None:
        return False
    return any(role_matches(user, role) for role in allowed_roles)


def is_owner(user: User | None, deal: Deal) -> bool:
    if user is None or deal.user is None:
        return False
    return deal.user.id == user.id


def can_edit_deal(user: User | None, deal: Deal) -> bool:
    """Owners and admins may modify a deal (stage changes included)."""
    return is_owner(user, deal) or authorize(user, {Role.ADMIN.value})


def can_delete_deal(user: User | None, deal: Deal) -> bool:
    """Delete-button visibility: owner or admin."""
    return is_owner(user, deal) or authorize(user, {Role.ADMIN.value})


def guard_route(
    user: User | None,
    allowed_roles: Iterable[str] | None = None,
    *,
    loading: bool = False,
) -> RouteDecision:
    """Decide what a guarded route should render.

    Args:
        user: Resolved user, None when unauthenticated.
        allowed_roles: Roles admitted to the route; None admits any
            authenticated user.
        loading: True while the user is still being resolved. Nothing
            role-gated is decided until resolution finishes.
    """
    if loading:
        return RouteDecision.LOADING
    if user is None:
        return RouteDecision.REDIRECT_LOGIN
    if allowed_roles is not None and not authorize(user, allowed_roles):
        return RouteDecision.UNAUTHORIZED
    return RouteDecision.ALLOW
