"""
api/routes/v1/auth.py -- Login, logout and identity endpoints.

Routes:
  POST /api/v1/auth/login    -- email/password login; returns a bearer token
  POST /api/v1/auth/logout   -- closes the caller's session
  GET  /api/v1/auth/me       -- identity, roles and permissions of the caller

Security:
  POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT).
  SessionManager.login() goes through authenticate_user(), which equalizes
  timing between unknown emails and wrong passwords.
  Wrong email, wrong password and inactive account share one error code.
  Cache-Control: no-store on login responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import LoginRequest, LoginResponse, MeResponse, MessageResponse
from auth.dependencies import get_bearer_token, get_current_claims, get_current_user
from auth.errors import InvalidCredentialsError
from auth.models import TOKEN_LIFETIME_SECONDS, Claims, User
from auth.permissions import PermissionService
from auth.sessions import SessionManager

# Auth policy:
# - POST /api/v1/auth/login:   public
# - POST /api/v1/auth/logout:  requires a valid token (get_current_claims)
# - GET  /api/v1/auth/me:      requires a valid token for an active account (get_current_user)
router = APIRouter()


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(login_rate_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password and return a bearer token."""
    sessions: SessionManager = request.app.state.sessions
    try:
        token, claims = sessions.login(body.email, body.password)
    except InvalidCredentialsError as e:
        resp = JSONResponse(status_code=401, content={"error": {"code": e.code, "message": e.message}})
        resp.headers["Cache-Control"] = "no-store"
        return resp

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=TOKEN_LIFETIME_SECONDS,
            expires_at=claims.expires_at,
            user_id=claims.user_id,
            username=claims.username,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, claims: Claims = Depends(get_current_claims)) -> MessageResponse:
    """Delete the caller's session row. The token stops working at once
    when REQUIRE_SESSION is on, otherwise at its expiry."""
    sessions: SessionManager = request.app.state.sessions
    sessions.logout(get_bearer_token(request))
    return MessageResponse(message="Logged out.")


@router.get("/auth/me", response_model=MeResponse)
def me(
    request: Request,
    claims: Claims = Depends(get_current_claims),
    user: User = Depends(get_current_user),
) -> MeResponse:
    """Identity of the caller. Deleted or deactivated accounts get 401."""
    permissions: PermissionService = request.app.state.permissions
    return MeResponse(
        user_id=user.id,
        email=user.email,
        username=user.username,
        expires_at=claims.expires_at,
        roles=[r.name for r in permissions.get_user_roles(user.id)],
        permissions=sorted(permissions.get_permission_names(user.id)),
    )
