"""Pydantic schemas for authenticated identity and the persisted auth entry.

Defines:
- Role: closed set of roles the client reasons about
- normalize_role: raw role string -> Role (unknown values become SALES_REP)
- User: identity returned by the auth service
- CachedAuth: the single persisted {user, timestamp} entry
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# Raw role spellings that all mean "administrator".
ADMIN_EQUIVALENT_ROLES: frozenset[str] = frozenset({"admin", "administrator", "superuser"})


class Role(str, Enum):
    """Normalized user role."""

    ADMIN = "admin"
    MANAGER = "manager"
    SALES_REP = "sales_rep"


_ROLE_ALIASES: dict[str, Role] = {
    **{name: Role.ADMIN for name in ADMIN_EQUIVALENT_ROLES},
    "manager": Role.MANAGER,
    "sales_rep": Role.SALES_REP,
}


def normalize_role(raw: str | None) -> Role:
    """Map a free-form role string to a Role, case-insensitively.

    Absent, empty, and unrecognized values map to SALES_REP.
    """
    if not raw:
        return Role.SALES_REP
    return _ROLE_ALIASES.get(raw.strip().lower(), Role.SALES_REP)


class User(BaseModel):
    """Authenticated identity as returned by the auth service.

    role is kept exactly as received so it round-trips through the cache;
    use normalized_role for any decision.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int
    username: str
    name: str = ""
    role: str = "sales_rep"

    @property
    def normalized_role(self) -> Role:
        return normalize_role(self.role)

    @property
    def is_admin(self) -> bool:
        return self.normalized_role is Role.ADMIN


class CachedAuth(BaseModel):
    """Persisted auth entry. timestamp is epoch milliseconds at write time."""

    model_config = ConfigDict(frozen=True)

    user: User | None = None
    timestamp: int = Field(default=0, ge=0)

    @classmethod
    def empty(cls) -> CachedAuth:
        return cls(user=None, timestamp=0)
