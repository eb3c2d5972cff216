"""
api/main.py -- FastAPI application entry point for the Fragrance Collect auth service.

Run with:      python main.py serve
               uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware   -- credentialed CORS for the storefront origins
  2. security_headers -- CSP, HSTS, nosniff, frame denial on every response
  3. log_requests     -- one log line per request with latency

Rate limits are applied per route by the @limiter.limit decorators in
api/routes/auth.py. The shared Limiter is attached to app.state.limiter.

Lifespan builds the object graph once and tears it down symmetrically:
  UserStore -> KeyRing -> IdentityVerifier -> SessionManager -> AccountService
All of them live on app.state; tests swap the lifespan to inject isolated stores
and a fake certificate endpoint.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ComponentHealth, ErrorDetail, ErrorResponse, HealthResponse
from api.routes.account import router as account_router
from api.routes.auth import router as auth_router
from auth.accounts import AccountService
from auth.dependencies import clear_session_cookie, cookie_token
from auth.sessions import SessionManager
from auth.store import UserStore
from core.config import get_settings
from core.errors import (
    AuthError,
    RateLimitedError,
    SessionSecurityViolationError,
    StoreUnavailableError,
    UnauthenticatedError,
)
from identity.keyring import KeyRing
from identity.service import IdentityVerifier

API_VERSION = "1.0.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("fragrancecollect.api")


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the auth object graph on startup; release it on shutdown.

    Startup order matters: the store and key ring have no dependencies; the
    verifier needs the key ring; the session manager needs the store; the
    account service needs all three.
    """
    settings = get_settings()
    logger.info("Fragrance Collect auth API starting up")

    store = UserStore(settings.database_url)
    keyring = KeyRing(
        settings.google_certs_url,
        ttl_seconds=settings.key_cache_ttl_seconds,
        timeout_seconds=settings.key_fetch_timeout_seconds,
    )
    verifier = IdentityVerifier(keyring, audience=settings.google_client_id, issuers=settings.google_issuers)
    session_manager = SessionManager(store, ttl_seconds=settings.session_ttl_seconds)

    app.state.user_store = store
    app.state.keyring = keyring
    app.state.verifier = verifier
    app.state.session_manager = session_manager
    app.state.accounts = AccountService(store, session_manager, verifier)
    logger.info("Auth initialized (certs=%s)", settings.google_certs_url)

    yield

    await keyring.close()
    store.close()
    logger.info("Fragrance Collect auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Fragrance Collect Auth API",
    description="Google sign-in verification, email accounts, and first-party sessions.",
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs" if _settings.debug else None,
    redoc_url=None,
)

app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Middleware stack
#
# @app.middleware("http") functions registered later wrap the earlier ones, and
# add_middleware() wraps everything registered before it. CORS is added last
# so it is outermost and also decorates error responses.
# ---------------------------------------------------------------------------

_SECURITY_HEADERS = {
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'; base-uri 'none'",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
}


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


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in _SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=86400,
)

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(account_router, prefix="/api", tags=["Account"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, details: object = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, details=details)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render any AuthError with its own status and code.

    A 401 for a missing/expired/hijacked session also clears the session
    cookie so the browser stops presenting a dead token.
    """
    if isinstance(exc, StoreUnavailableError):
        logger.error("Store unavailable on %s %s", request.method, request.url.path)
        message = exc.public_message
    else:
        message = exc.message

    response = _error(exc.http_status, exc.code, message, exc.details)
    if isinstance(exc, (UnauthenticatedError, SessionSecurityViolationError)) and cookie_token(request):
        clear_session_cookie(response)
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After is the length of the limit's window in seconds -- with a
    moving window the oldest counted request leaves it no later than that.
    """
    logger.warning("Rate limit exceeded on %s for %s", request.url.path, request.client.host if request.client else "?")
    rate_item = getattr(getattr(exc, "limit", None), "limit", None)
    retry_after = rate_item.get_expiry() if rate_item is not None else 60
    err = RateLimitedError(details=str(exc.detail))
    response = _error(err.http_status, err.code, err.message, err.details)
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with a structured error when the body or params fail validation."""
    details = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    return _error(400, "validation_error", "Request validation failed.", details)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it -- str(dict) produces a Python repr,
    not JSON.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and whether the auth store answers."""
    db_ok = await asyncio.to_thread(request.app.state.user_store.ping)
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=API_VERSION,
        components=ComponentHealth(database="ok" if db_ok else "unavailable"),
    )
