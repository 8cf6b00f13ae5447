"""
api/main.py -- FastAPI application entry point for InsightShield.

Exposes instances, runs, report views and the upload flow over HTTP. The web
UI (web/routes.py) is mounted on the same app by asgi.py.

Run with:      uvicorn asgi:app --reload

Middleware (registration order; Starlette wraps the last-registered outermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. SessionMiddleware     -- signed cookie holding the selected instance/run

Lifespan handles startup (stores, cache, analysis client, purge task) and
shutdown (cancel purge task, close connections) symmetrically.
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
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.instances import router as instances_router
from api.routes.v1.reports import router as reports_router
from api.routes.v1.uploads import router as uploads_router
from auth.dependencies import get_current_user
from auth.session import SessionState
from auth.store import UserStore
from auth.tokens import clear_auth_cookie
from cache.store import ReportCache
from core.analysis import AnalysisClient
from core.config import get_settings
from reports.scope import clear_scope
from reports.store import ReportStore

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("insightshield.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------

_PURGE_INTERVAL_SECONDS = 10 * 60


async def _purge_loop(app: FastAPI) -> None:
    """Purge expired report cache entries every 10 minutes.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(_PURGE_INTERVAL_SECONDS)
        purged = app.state.cache.purge_expired()
        if purged:
            logger.info("Purged %d expired cache entries", purged)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Wire the stores into app.state, then flip auth_ready.

    Until auth_ready is True every guarded page renders the loading screen
    and every guarded API route answers 503, so no request is judged against
    a half-initialised user store.
    """
    app.state.auth_ready = False
    logger.info("InsightShield starting up")
    app.state.user_store = UserStore(_settings.auth_database_url) if _settings.auth_database_url else UserStore()
    app.state.reports = ReportStore(_settings.database_url) if _settings.database_url else ReportStore()
    app.state.cache = ReportCache(ttl=_settings.cache_ttl_seconds)
    app.state.analysis = AnalysisClient(_settings.analysis_base_url, _settings.analysis_timeout_seconds)
    logger.info("Analysis backend: %s", _settings.analysis_base_url)
    if not app.state.user_store.has_users():
        logger.warning("No user accounts yet -- run `python main.py users set-password <email>`")
    app.state.auth_ready = True
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.analysis.close()
    app.state.cache.close()
    app.state.reports.close()
    app.state.user_store.close()
    logger.info("InsightShield shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="InsightShield API",
    description="Vulnerability analytics per instance and run: uploads, report views, workbook downloads.",
    version=VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced by auth-protected routes below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the existing stack, so SessionMiddleware (last) is
# outermost and request.session is available to every layer inside it.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# Holds currentInstanceId / currentRunId / analysisResults. Signed with the
# same SECRET_KEY as the JWT.
app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.secret_key,
    session_cookie="insightshield_session",
    same_site="lax",
    https_only=_settings.secure_cookies,
)

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
app.include_router(instances_router, prefix="/api/v1", tags=["Instances"])
app.include_router(reports_router, prefix="/api/v1", tags=["Reports"])
app.include_router(uploads_router, prefix="/api/v1", tags=["Uploads"])
# Web UI router is mounted by asgi.py, not here.
# api/ and web/ are independent layers -- only the top-level asgi.py imports both.


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(session: SessionState = Depends(get_current_user)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="InsightShield API")


@app.get("/redoc", include_in_schema=False)
async def redoc(session: SessionState = Depends(get_current_user)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="InsightShield API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly.
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

    Route handlers raise HTTPException with a dict detail; it becomes the
    error field as-is. Plain string details are wrapped. A revoked identity
    (request.state.sign_out) also loses its auth cookie and session scope.
    """
    if isinstance(exc.detail, dict):
        content = {"error": exc.detail}
    else:
        content = ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump()
    response = JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))
    if getattr(request.state, "sign_out", False):
        clear_scope(request.session)
        clear_auth_cookie(response)
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The stack trace goes to the log only, never to the response body.
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
# Defined directly in main.py so it is reachable regardless of router
# registration. No rate limit: load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Liveness, version, and whether the report database answers."""
    reports = getattr(request.app.state, "reports", None)
    database = "ok" if reports is not None and reports.ping() else "error"
    ready = getattr(request.app.state, "auth_ready", False)
    return HealthResponse(
        status="healthy" if database == "ok" and ready else "degraded",
        version=VERSION,
        components={"app": "ok" if ready else "starting", "database": database},
    )
