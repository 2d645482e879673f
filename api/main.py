"""
api/main.py -- FastAPI application entry point for TaskFlow.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
                              (credentials allowed so the refresh cookie flows)
  3. SlowAPIMiddleware     -- enforces the shared auth rate limit from api.limiter

Lifespan handles startup (credential store, first-run admin, token purge
task) and shutdown (cancel purge task, close DB connection) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, FieldError, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.users import router as users_router
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from core.errors import AppError

VERSION = "1.0.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("taskflow.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired refresh-token rows every hour.

    Tokens whose owner was deleted are removed with the owner; this loop
    catches the ones nobody presented again before they expired.
    """
    while True:
        await asyncio.sleep(60 * 60)
        await asyncio.to_thread(_purge_once, app.state.user_store)


def _purge_once(store: UserStore) -> int:
    """Run one purge. A failure is logged and the next hourly run still happens."""
    try:
        removed = store.purge_expired_refresh_tokens()
    except Exception:
        logger.exception("Purging expired refresh tokens failed")
        return 0
    if removed:
        logger.info("Purged %d expired refresh tokens", removed)
    return removed


def _bootstrap_admin(store: UserStore) -> None:
    """Seed the first ADMIN account when the store is empty and a password is configured."""
    if store.has_users():
        return
    if not _settings.bootstrap_admin_password:
        logger.warning("No users exist and BOOTSTRAP_ADMIN_PASSWORD is not set; no admin account was created")
        return
    try:
        store.create_user(
            User(
                email=_settings.bootstrap_admin_email,
                username=_settings.bootstrap_admin_username,
                hashed_password=hash_password(_settings.bootstrap_admin_password),
                first_name="System",
                last_name="Admin",
                role=Role.ADMIN,
            )
        )
    except IntegrityError:
        # Another worker seeded it first.
        return
    logger.info("Created bootstrap admin account %s", _settings.bootstrap_admin_email)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The store must exist before the purge task references it.
    """
    logger.info("TaskFlow API starting up")
    app.state.user_store = UserStore(_settings.database_url)
    _bootstrap_admin(app.state.user_store)
    logger.info("Credential store initialized")
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.user_store.close()
    logger.info("TaskFlow API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="TaskFlow API",
    description="Task tracking for admins and members.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
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

app.include_router(auth_router, tags=["Auth"])
app.include_router(users_router, tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so clients can parse
# errors uniformly. Nothing internal (tracebacks, SQL, ids) reaches the body.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, detail: ErrorDetail, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=detail).model_dump(exclude_none=True),
        headers=headers,
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render domain errors raised by routes and auth dependencies."""
    message = exc.message
    if exc.status_code >= 500:
        logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc.message)
        message = AppError.default_message
    fields = [FieldError(**f) for f in getattr(exc, "fields", None) or []] or None
    return _error_response(
        exc.status_code,
        ErrorDetail(code=exc.code, message=message, fields=fields),
        headers=exc.headers,
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a fixed message when the auth rate limit is exceeded.

    Retry-After is the time left in the window that was hit, read back from
    the limiter the same way slowapi computes its own rate-limit headers.
    """
    headers = None
    view_limit = getattr(request.state, "view_rate_limit", None)
    if view_limit is not None:
        window_stats = request.app.state.limiter.limiter.get_window_stats(view_limit[0], *view_limit[1])
        headers = {"Retry-After": str(max(math.ceil(window_stats[0] - time.time()), 1))}
    return _error_response(
        429,
        ErrorDetail(code="rate_limited", message="Too many requests, please try again later"),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with one entry per invalid field."""
    fields = [
        FieldError(
            field=".".join(str(part) for part in err.get("loc", ())[1:]) or "body",
            message=err.get("msg", "Invalid value"),
        )
        for err in exc.errors()
    ]
    return _error_response(400, ErrorDetail(code="validation_error", message="Validation error", fields=fields))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions (404 routes, 405, ...)."""
    return _error_response(
        exc.status_code,
        ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors. Detail goes to the log only."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, ErrorDetail(code="internal_error", message="Internal server error"))


# ---------------------------------------------------------------------------
# Health endpoint
#
# No auth, no rate limit: load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and database reachability."""
    store = getattr(request.app.state, "user_store", None)
    database = "ok" if store is not None and store.ping() else "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})
