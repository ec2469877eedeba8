"""
auth/models.py -- Domain dataclasses for authentication and RBAC entities.

Pattern: Data class (pure data container, near-zero logic). Stores and
services do the work; these classes only own the domain shape.

Layer rule: no imports from api/, library/ or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass

# Tokens are valid for 24 hours from issue. Not configurable: the claims
# invariant expires_at == issued_at + TOKEN_LIFETIME_SECONDS holds everywhere.
TOKEN_LIFETIME_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class Claims:
    """The signed payload of a session token.

    Carried only inside a token; never persisted on its own. Timestamps are
    Unix seconds.
    """

    user_id: int
    email: str
    username: str | None
    issued_at: int
    expires_at: int

    @classmethod
    def issue(cls, user_id: int, email: str, username: str | None, now: int) -> Claims:
        return cls(
            user_id=user_id,
            email=email,
            username=username,
            issued_at=now,
            expires_at=now + TOKEN_LIFETIME_SECONDS,
        )


@dataclass
class User:
    """A library account.

    hashed_password is a bcrypt hash; only its pass/fail check matters to the
    authorization core. username is optional and, when set, unique.
    """

    email: str
    username: str | None = None
    hashed_password: str | None = None
    id: int | None = None
    is_active: bool = True
    created_at: str | None = None


@dataclass
class Session:
    """Server-side record of an issued token, keyed by the raw token string.

    Deleting it is how logout revokes a token before its expiry.
    """

    token: str
    user_id: int
    expires_at: int  # Unix seconds, same as the token's exp claim
    created_at: str | None = None


@dataclass
class Role:
    name: str
    description: str | None = None
    id: int | None = None
    created_at: str | None = None


@dataclass
class Permission:
    """A grantable capability, named "<resource>.<action>" (e.g. books.read)."""

    name: str
    resource: str
    action: str
    description: str | None = None
    id: int | None = None
    created_at: str | None = None


@dataclass
class UserPermission:
    """A direct grant of one permission to one user, optionally scoped to a resource.

    Stored and listable, but not part of effective-permission resolution,
    which only unions role grants.
    """

    user_id: int
    permission_id: int
    resource_id: int | None = None
    granted_at: str | None = None
