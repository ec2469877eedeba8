"""
auth/errors.py -- Typed errors raised by the authorization core.

Every failure leaves the core as one of these classes (or as an unchanged
SQLAlchemyError from a store). Route adapters map them to HTTP responses;
nothing in this package formats user-facing messages or retries.

  AuthenticationError -> 401 (token problems, bad credentials, no session)
  NotFoundError       -> 404
  GateConfigError     -> configuration problem in content gating, reported
                         separately from a user-caused access denial
"""

from __future__ import annotations

from typing import Any


class FolioError(Exception):
    """Base exception for all Folio authorization errors."""

    code = "error"

    def __init__(self, message: str = "An error occurred", details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


# =============================================================================
# Authentication errors (401)
# =============================================================================


class AuthenticationError(FolioError):
    """Base class for anything that must end as an authentication failure."""

    code = "unauthorized"


class TokenError(AuthenticationError):
    """Base class for session token failures."""

    code = "invalid_token"


class MalformedEncodingError(TokenError):
    """A token segment is not valid unpadded base64url."""

    code = "malformed_encoding"

    def __init__(self, message: str = "Malformed base64url encoding") -> None:
        super().__init__(message)


class InvalidTokenError(TokenError):
    """The token does not have exactly three non-empty segments."""

    code = "invalid_token"

    def __init__(self, message: str = "Invalid token format") -> None:
        super().__init__(message)


class InvalidSignatureError(TokenError):
    code = "invalid_signature"

    def __init__(self, message: str = "Invalid token signature") -> None:
        super().__init__(message)


class MalformedPayloadError(TokenError):
    """The payload is not a JSON object with the required claim fields."""

    code = "malformed_payload"

    def __init__(self, message: str = "Malformed token payload") -> None:
        super().__init__(message)


class TokenExpiredError(TokenError):
    code = "token_expired"

    def __init__(self, expires_at: int | None = None) -> None:
        details = {"expires_at": expires_at} if expires_at is not None else {}
        super().__init__("Token has expired", details)


class InvalidCredentialsError(AuthenticationError):
    """Wrong email, wrong password or inactive account -- deliberately indistinguishable."""

    code = "bad_credentials"

    def __init__(self) -> None:
        super().__init__("Invalid email or password")


class SessionNotFoundError(AuthenticationError):
    """The token is valid but its server-side session was deleted (logout)."""

    code = "session_revoked"

    def __init__(self) -> None:
        super().__init__("Session has been revoked")


# =============================================================================
# Not found errors (404)
# =============================================================================


class NotFoundError(FolioError):
    code = "not_found"


class RoleNotFoundError(NotFoundError):
    code = "role_not_found"

    def __init__(self, role_id: int | None = None, role_name: str | None = None) -> None:
        details: dict[str, Any] = {}
        if role_id is not None:
            details["role_id"] = role_id
        if role_name:
            details["role_name"] = role_name
        super().__init__("Role not found", details)


# =============================================================================
# Gate configuration errors
# =============================================================================


class GateConfigError(FolioError):
    """A gate refers to a tag or permission that does not exist."""

    code = "gate_config_error"


class TagNotFoundError(GateConfigError):
    code = "tag_not_found"

    def __init__(self, tag_name: str) -> None:
        super().__init__("tag not found", {"tag_name": tag_name})


class UnknownPermissionError(GateConfigError):
    code = "unknown_permission"

    def __init__(self, permission_name: str) -> None:
        super().__init__("unknown permission", {"permission_name": permission_name})
