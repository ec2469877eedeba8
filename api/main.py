"""
api/main.py -- FastAPI application entry point for Folio.

Exposes the authorization core over HTTP: login/logout, role management and
tag-gated book access.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Route handlers are plain `def` functions, so FastAPI runs each request on its
worker thread pool. The permission cache inside PermissionService is the only
state those threads share.

Lifespan handles startup (stores, seeding, services, purge task) and
shutdown (cancel purge task, dispose engines) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.books import router as books_router
from api.routes.v1.roles import router as roles_router
from auth.dependencies import get_current_claims
from auth.errors import AuthenticationError, FolioError, GateConfigError, NotFoundError, UnknownPermissionError
from auth.models import Claims
from auth.permission_store import PermissionStore
from auth.permissions import PermissionService
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import Settings, get_settings
from library.gate import ContentGate
from library.store import TagStore

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("folio.api")

_PURGE_INTERVAL_SECONDS = 10 * 60

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def init_state(app: FastAPI, settings: Settings) -> None:
    """Create the stores and services and attach them to app.state.

    All stores share settings.database_url, so the foreign keys between
    users, roles, permissions and tags resolve inside one database.
    """
    app.state.user_store = UserStore(settings.database_url)
    app.state.permission_store = PermissionStore(settings.database_url)
    app.state.tag_store = TagStore(settings.database_url)
    if settings.seed_defaults:
        app.state.permission_store.seed_defaults()
        app.state.tag_store.seed_default_tags()

    app.state.tokens = TokenService(settings.secret_key)
    app.state.sessions = SessionManager(app.state.user_store, app.state.tokens)
    app.state.permissions = PermissionService(app.state.permission_store, ttl=settings.permission_cache_ttl)
    app.state.gate = ContentGate(app.state.permissions, app.state.tag_store)
    app.state.require_session = settings.require_session


def close_state(app: FastAPI) -> None:
    app.state.tag_store.close()
    app.state.permission_store.close()
    app.state.user_store.close()


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Trim stale permission cache entries and expired sessions periodically.

    The session purge is a blocking DB call, so it runs on a worker thread.
    CancelledError from task.cancel() during shutdown unwinds the loop.
    """
    while True:
        await asyncio.sleep(_PURGE_INTERVAL_SECONDS)
        app.state.permissions.cache.purge_expired()
        await asyncio.to_thread(app.state.sessions.purge_expired)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Everything before yield runs on startup; everything after on shutdown."""
    settings = get_settings()
    logger.info("Folio API starting up")
    init_state(app, settings)
    logger.info(
        "Auth initialized (cache_ttl=%ss, require_session=%s)",
        settings.permission_cache_ttl,
        settings.require_session,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    close_state(app)
    logger.info("Folio API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Folio API",
    description="Authentication, role-based permissions and tag-gated access for a self-hosted library.",
    version=__version__,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced by auth-protected routes below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order the request should encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=get_settings().allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(roles_router, prefix="/api/v1", tags=["Roles"])
app.include_router(books_router, prefix="/api/v1", tags=["Books"])


@app.get("/docs", include_in_schema=False)
async def docs(claims: Claims = Depends(get_current_claims)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Folio API")


@app.get("/redoc", include_in_schema=False)
async def redoc(claims: Claims = Depends(get_current_claims)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="Folio API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a Retry-After header when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field; str(dict) would produce a Python repr, not JSON.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(FolioError)
async def folio_error_handler(request: Request, exc: FolioError) -> JSONResponse:
    """Map domain errors that escape a route handler to HTTP statuses."""
    if isinstance(exc, AuthenticationError):
        status_code = 401
    elif isinstance(exc, UnknownPermissionError):
        status_code = 400
    elif isinstance(exc, (NotFoundError, GateConfigError)):
        status_code = 404
    else:
        status_code = 400
    code = getattr(exc, "code", "error")
    detail = ", ".join(f"{k}={v}" for k, v in exc.details.items()) or None
    return _error(status_code, code, exc.message, detail)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit and no auth: load balancers must reach it.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=__version__)
