"""
api/main.py -- FastAPI application entry point for Tourbook.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces the default and per-route rate limits

Lifespan is the composition root: it turns Settings into the document store,
the credential store, the mail sender and AuthFlow, and stores them on
app.state. Shutdown disposes the engine.

Error boundary: every core.errors.AppError is rendered here, and nowhere else,
as {"error": {"code", "message", "detail"}} with the error's status.
Non-operational errors and unexpected exceptions are masked unless DEBUG=true.
"""

from __future__ import annotations

import logging
import time
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from http import HTTPStatus

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.reviews import router as reviews_router
from api.routes.v1.tours import router as tours_router
from api.routes.v1.users import router as users_router
from auth.dependencies import protect
from auth.flow import AuthConfig, AuthFlow
from auth.models import User
from auth.store import UserStore
from auth.tokens import PasswordHasher, TokenSigner
from core.config import get_settings
from core.errors import AppError
from core.mailer import build_mail_sender
from docstore.store import DocumentStore

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tourbook.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build every long-lived collaborator once and tear it down on shutdown.

    Startup order matters:
      1. Document store first -- it creates the tables.
      2. UserStore shares the document store's engine.
      3. AuthFlow last -- it needs the user store, hasher, signer and mailer.
    """
    settings = get_settings()
    logger.info("Tourbook API starting up")
    app.state.settings = settings
    app.state.debug = settings.debug
    app.state.store = DocumentStore(settings.database_url)
    logger.info("Document store initialized")
    app.state.auth_flow = AuthFlow(
        users=UserStore(app.state.store.engine),
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        signer=TokenSigner(settings.secret_key, settings.token_expire_seconds),
        mailer=build_mail_sender(settings),
        config=AuthConfig(
            reset_token_ttl_seconds=settings.password_reset_expire_seconds,
            mask_unknown_reset_email=settings.mask_unknown_reset_email,
        ),
    )
    logger.info("Auth initialized")

    yield

    # Shutdown
    app.state.store.close()
    logger.info("Tourbook API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Tourbook API",
    description="Tours, reviews and users with JWT authentication and role-based access.",
    version=API_VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced below with auth-protected routes.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


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


# ---------------------------------------------------------------------------
# Router registration
#
# auth_router goes first: its /users/... literals must win over the
# /users/{user_id} routes in users_router.
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(tours_router, prefix="/api/v1", tags=["Tours"])
app.include_router(reviews_router, prefix="/api/v1", tags=["Reviews"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(protect)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Tourbook API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(protect)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="Tourbook API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status: int, code: str, message: str, detail=None) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


def _debug_detail(exc: BaseException) -> dict:
    return {
        "exception": f"{type(exc).__name__}: {exc}",
        "traceback": traceback.format_exception(type(exc), exc, exc.__traceback__),
    }


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render a typed error from any layer.

    Operational errors show their own code and message. Non-operational ones
    are logged with a traceback and masked unless DEBUG is on.
    """
    debug = getattr(request.app.state, "debug", False)
    if exc.is_operational:
        detail = exc.context
        if debug:
            detail = {**(exc.context or {}), **_debug_detail(exc)}
        return _error_response(exc.status, exc.code, exc.message, detail)

    logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    if debug:
        return _error_response(exc.status, exc.code, exc.message, _debug_detail(exc))
    return _error_response(HTTPStatus.INTERNAL_SERVER_ERROR, "internal_error", "Something went wrong.")


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    slowapi stores the wait time on the exception as exc.retry_after (int seconds).
    """
    retry_after = int(getattr(exc, "retry_after", 60) or 60)
    response = _error_response(429, "rate_limited", "Too many requests from this IP, please try again later.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed path, query or body input -- same 400 as any other ValidationError."""
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        messages.append(f"{loc}: {err.get('msg', 'invalid')}" if loc else str(err.get("msg", "invalid")))
    return _error_response(
        400,
        "validation_error",
        "Invalid input data. " + ". ".join(messages) + ".",
        {"fields": [m.split(":", 1)[0] for m in messages]},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Routing-level errors (unknown path, wrong method) in the standard envelope."""
    if exc.status_code == 404:
        return _error_response(404, "not_found", f"Can't find {request.url.path} on this server.")
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body, unless
    DEBUG is on.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    if getattr(request.app.state, "debug", False):
        return _error_response(500, "internal_error", str(exc), _debug_detail(exc))
    return _error_response(500, "internal_error", "Something went wrong.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. Exempt from the default rate
# limit so monitoring is never throttled.
# ---------------------------------------------------------------------------


@limiter.exempt
@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    store = getattr(request.app.state, "store", None)
    database = "ok" if store is not None and store.ping() else "error"
    status = "healthy" if database == "ok" else "degraded"
    return HealthResponse(status=status, version=API_VERSION, components={"app": "ok", "database": database})
