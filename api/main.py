"""
api/main.py -- FastAPI application entry point for the reimbursement service.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- allows the configured frontend origin only
  3. SlowAPIMiddleware     -- enforces the application-wide API_RATE_LIMIT

Lifespan builds the stores and the session manager and puts them on
app.state; shutdown clears the session table and disposes the engines.

Errors: route code raises core.errors types. One AppError handler renders
them, so no route carries its own try/except. Anything else reaches the
catch-all handler, which logs the stack and returns a generic 500.
"""

from __future__ import annotations

import logging
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

from api.limiter import limiter
from api.models import ErrorResponse, FieldError, HealthResponse
from api.routes.audit import router as audit_router
from api.routes.auth import router as auth_router
from api.routes.expenses import router as expenses_router
from auth.audit import AuditLogger
from auth.sessions import InMemorySessionStore, SessionManager
from auth.store import UserStore
from core.config import get_settings
from core.errors import AppError, InternalError, ValidationError
from expenses.store import ExpenseStore

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("reimburse.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def build_state(
    app: FastAPI,
    user_store: UserStore,
    audit: AuditLogger,
    expenses: ExpenseStore,
    session_store: InMemorySessionStore | None = None,
    **manager_kwargs,
) -> None:
    """Wire stores and the session manager onto app.state.

    Shared by the real lifespan and the test lifespan so both assemble the
    application the same way.
    """
    app.state.user_store = user_store
    app.state.audit = audit
    app.state.expenses = expenses
    manager_kwargs.setdefault("secret_key", _settings.secret_key)
    manager_kwargs.setdefault("token_ttl_seconds", _settings.token_expire_seconds)
    manager_kwargs.setdefault("idle_timeout_seconds", _settings.session_idle_timeout_seconds)
    app.state.sessions = SessionManager(
        session_store if session_store is not None else InMemorySessionStore(),
        user_store,
        audit,
        **manager_kwargs,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create stores on startup; tear them down symmetrically on shutdown.

    The session table is process-local: it starts empty and is cleared on
    shutdown, so a restart logs every user out.
    """
    logger.info("Reimbursement API starting up")
    build_state(app, UserStore(), AuditLogger(), ExpenseStore())
    logger.info(
        "Auth initialized (token_ttl=%ss idle_timeout=%ss)",
        _settings.token_expire_seconds,
        _settings.session_idle_timeout_seconds,
    )

    yield

    app.state.sessions.store.clear()
    app.state.expenses.close()
    app.state.audit.close()
    app.state.user_store.close()
    logger.info("Reimbursement API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Expense Reimbursement API",
    description="Expense submission and review with session-based authentication and audit logging.",
    version=__version__,
    lifespan=lifespan,
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
    allow_origins=[_settings.frontend_url],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=86400,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
}


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in _SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


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

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(expenses_router, prefix="/api", tags=["Expenses"])
app.include_router(audit_router, prefix="/api", tags=["Audit"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly.
# ---------------------------------------------------------------------------


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an expected failure: status and code come from the error class.

    Authentication failures are logged at INFO with the code only; the
    client gets the same code and message.
    """
    if exc.status_code == 401:
        logger.info("Auth rejected %s %s code=%s", request.method, request.url.path, exc.code)
    errors = None
    if isinstance(exc, ValidationError):
        errors = [FieldError(field=v.field, message=v.message) for v in exc.violations]
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(code=exc.code, message=exc.message, errors=errors).model_dump(exclude_none=True),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            code="rate_limited",
            message="Too many attempts, please try again later.",
            detail=str(exc.detail),
        ).model_dump(exclude_none=True),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 listing every malformed field of the request."""
    errors = [
        FieldError(
            field=".".join(str(p) for p in err.get("loc", ()) if p != "body") or "body",
            message=err.get("msg", "Invalid value"),
        )
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            code="validation_error",
            message="Request validation failed.",
            errors=errors,
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The stack goes to the server log only. In production the client gets a
    generic message; DEBUG=true adds the exception text for local work.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    err = InternalError()
    return JSONResponse(
        status_code=err.status_code,
        content=ErrorResponse(
            code=err.code,
            message=err.message,
            detail=str(exc) if _settings.debug else None,
        ).model_dump(exclude_none=True),
    )


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@limiter.exempt
@app.get("/api/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Liveness plus database reachability. No auth, no rate limit."""
    database = "ok"
    try:
        request.app.state.user_store.ping()
    except Exception:
        logger.exception("Health check: database unreachable")
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=__version__,
        components={"app": "ok", "database": database},
        audit_write_failures=request.app.state.audit.failed_writes,
    )
