"""
api/main.py -- FastAPI application entry point for the Check-In API.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the stores and the credential verifier on app.state at
startup and disposes of the engines on shutdown. Nothing is a module-level
singleton: tests swap the lifespan to inject in-memory stores.

Every error leaves as {"error": {"code", "message", ...}}. ApiError subclasses
(core/errors.py) carry their own status and code; driver exceptions never
reach the response body.
"""

from __future__ import annotations

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
from api.routes.v1.allocations import router as allocations_router
from api.routes.v1.checkins import router as checkins_router
from api.routes.v1.forum import router as forum_router
from api.routes.v1.reports import router as reports_router
from auth.dependencies import get_current_principal
from auth.models import AuthenticatedPrincipal
from auth.store import CredentialStore
from auth.tokens import CredentialVerifier
from cache.store import CachedCredentialStore
from core.config import get_settings
from core.errors import ApiError, DataAccessError, ValidationError
from listing.builder import PageDefaults
from records.store import RecordStore

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("checkin.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create stores and the verifier on startup; dispose of them on shutdown.

    The credential store is wrapped in the TTL cache unless
    CREDENTIAL_CACHE_TTL is 0.
    """
    logger.info("Check-In API starting up")
    credentials = CredentialStore(_settings.database_url)
    if _settings.credential_cache_ttl > 0:
        credentials = CachedCredentialStore(credentials, ttl=_settings.credential_cache_ttl)
    app.state.credentials = credentials
    app.state.verifier = CredentialVerifier(credentials)
    app.state.records = RecordStore(_settings.database_url)
    app.state.page_defaults = PageDefaults(
        limit=_settings.default_page_size,
        max_limit=_settings.max_page_size,
    )
    logger.info(
        "Stores initialized (credential_cache_ttl=%ds, page_size=%d/%d)",
        _settings.credential_cache_ttl,
        _settings.default_page_size,
        _settings.max_page_size,
    )

    yield

    app.state.records.close()
    app.state.credentials.close()
    logger.info("Check-In API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Check-In API",
    description="API-key protected access to budget allocations and forum posts.",
    version=__version__,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced below by key-protected routes.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# The key id is logged when the request authenticated, never the key itself.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    principal = getattr(request.state, "principal", None)
    logger.info(
        "%s %s %d %.1fms %s key=%s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
        principal.credential_id if principal is not None else "-",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(allocations_router, prefix="/api/v1", tags=["Allocations"])
app.include_router(forum_router, prefix="/api/v1", tags=["Forum"])
app.include_router(checkins_router, prefix="/api/v1", tags=["Check-ins"])
app.include_router(reports_router, prefix="/api/v1", tags=["Reports"])


# ---------------------------------------------------------------------------
# Key-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(principal: AuthenticatedPrincipal = Depends(get_current_principal)):
    """Swagger UI -- requires a valid API key."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Check-In API")


@app.get("/redoc", include_in_schema=False)
async def redoc(principal: AuthenticatedPrincipal = Depends(get_current_principal)):
    """ReDoc UI -- requires a valid API key."""
    return get_redoc_html(openapi_url="/openapi.json", title="Check-In API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Render the core error taxonomy.

    DataAccessError was logged with the driver exception where it was raised;
    only a one-line summary is added here.
    """
    if isinstance(exc, DataAccessError):
        logger.error("Data access failure on %s %s", request.method, request.url.path)
    elif isinstance(exc, ValidationError):
        logger.info("Rejected %s %s: invalid %s", request.method, request.url.path, exc.field)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(**exc.to_detail())).model_dump(),
    )


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
    """Return 422 with structured error when the request body fails validation."""
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

    Route handlers raise HTTPException with detail=ErrorDetail(...).model_dump()
    (a dict). When detail is already a structured dict, use it directly as the
    error field rather than stringifying it.
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
#
# Defined directly in main.py so it is always reachable. No auth and no rate
# limit -- load balancers and monitors must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    database_ok = request.app.state.records.ping()
    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        version=__version__,
        components={"app": "ok", "database": "ok" if database_ok else "error"},
    )
