"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and RBAC.

Authentication is bearer-only:
  Authorization: Bearer <token>

get_current_claims() verifies the token (and, with REQUIRE_SESSION=true, its
session row) and returns the Claims. get_current_user() additionally loads
the account and rejects deleted or inactive users. require_permission(name)
builds on get_current_claims().

Status mapping:
  401 -- missing/garbled header or any AuthenticationError
  403 -- authenticated but the permission is not held
  500 -- the permission lookup itself failed (permission_check_failed).
         A failed lookup is never treated as a grant.

Services are read from request.app.state (sessions, permissions, user_store),
wired by the lifespan in api/main.py.

Layer rule: no imports from library/ or cache/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError

from auth.errors import AuthenticationError
from auth.models import Claims, User

logger = logging.getLogger("folio.auth")

_BEARER_PREFIX = "Bearer "


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_bearer_token(request: Request) -> str:
    """Extract the raw token from the Authorization header or raise HTTP 401."""
    header = request.headers.get("Authorization")
    if not header:
        raise _unauthorized("unauthorized", "Authorization header missing")
    if not header.startswith(_BEARER_PREFIX) or not header[len(_BEARER_PREFIX) :].strip():
        raise _unauthorized("unauthorized", "Invalid authorization format. Expected: Bearer <token>")
    return header[len(_BEARER_PREFIX) :].strip()


def get_current_claims(request: Request) -> Claims:
    """Require a valid bearer token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(claims: Claims = Depends(get_current_claims)): ...
    """
    token = get_bearer_token(request)
    state = request.app.state
    try:
        return state.sessions.authenticate(token, require_session=state.require_session)
    except AuthenticationError as e:
        # Never log the token itself.
        logger.warning("Rejected bearer token on %s: %s", request.url.path, e.code)
        raise _unauthorized(e.code, e.message) from e


def get_current_user(request: Request, claims: Claims = Depends(get_current_claims)) -> User:
    """Require a valid token for an existing, active account.

    Tokens stay valid until exp, so this is what stops a deleted or
    deactivated account from using one it already holds.
    """
    user = request.app.state.user_store.get_by_id(claims.user_id)
    if user is None or not user.is_active:
        raise _unauthorized("unauthorized", "Account is not active.")
    return user


def _check(request: Request, claims: Claims, check: Callable[[], bool], label: str) -> Claims:
    try:
        allowed = check()
    except SQLAlchemyError as e:
        logger.exception("Permission check for user %d failed on %s", claims.user_id, request.url.path)
        raise HTTPException(
            status_code=500,
            detail={"code": "permission_check_failed", "message": "Could not verify permissions."},
        ) from e
    if not allowed:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": f"Missing permission: {label}"},
        )
    return claims


def require_permission(name: str) -> Callable[[Request], Claims]:
    """Build a dependency that requires the caller to hold permission name.

    Use as a FastAPI dependency:
        @router.get("/books/{book_id}/access")
        def route(claims: Claims = Depends(require_permission("books.read"))): ...
    """

    def dependency(request: Request) -> Claims:
        claims = get_current_claims(request)
        permissions = request.app.state.permissions
        return _check(request, claims, lambda: permissions.has_permission(claims.user_id, name), name)

    return dependency

