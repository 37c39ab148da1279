"""
api/main.py -- FastAPI application entry point for hostgate.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. SessionMiddleware  -- signed session cookie; holds the user's session key
                           and the OAuth state authlib checks on callback
  2. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter
  3. request logging    -- method, path, status and latency of every request

Lifespan wires the collaborators once at startup (store, provider registry,
state codec, policy, authenticator) and closes the store on shutdown. The
provider registry is read-only afterwards.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from auth.authenticator import Authenticator
from auth.dependencies import SessionCodec
from auth.models import AuthRequest
from auth.oauth import build_registry
from auth.policy import PermissionPolicy
from auth.state import SignInStateCodec
from auth.store import AuthStore
from core.config import get_settings
from core.urls import HostUrl

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("hostgate.api")

_settings = get_settings()


def report_request_error(exc: BaseException, request: AuthRequest) -> None:
    """Central error channel for failures that are also answered with a redirect."""
    path = request.transport.url.path if request.transport is not None else "?"
    logger.error("Request error on %s: %s", path, exc, exc_info=exc)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Wire collaborators on startup; release the store on shutdown."""
    settings = get_settings()
    logger.info("hostgate starting up")
    store = AuthStore(settings.database_url)
    urls = HostUrl.from_settings(settings)
    codec = SignInStateCodec(settings.secret_key, settings.state_expire_seconds)
    registry = build_registry(settings, store, codec, urls)
    policy = PermissionPolicy(store, allow_dynamic_providers=not settings.disable_dynamic_auth_provider_login)

    app.state.store = store
    app.state.registry = registry
    app.state.session_codec = SessionCodec(store)
    app.state.authenticator = Authenticator(
        registry=registry,
        policy=policy,
        codec=codec,
        tokens=store,
        users=store,
        urls=urls,
        on_error=report_request_error,
    )
    logger.info("Auth initialized (%d providers)", len(registry))

    yield

    store.close()
    logger.info("hostgate shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="hostgate",
    description="Sign-in and scope authorization through external identity providers.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


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


# Registered after the logging middleware so they wrap it: Starlette puts the
# most recently added middleware outermost.
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.secret_key,
    max_age=_settings.session_max_age_seconds,
    same_site="lax",
    https_only=_settings.secure_cookies,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope. Auth decisions never
# reach them -- those are always redirects.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version and the number of configured providers."""
    registry = request.app.state.registry
    return HealthResponse(version=VERSION, components={"app": "ok"}, providers=len(registry))
