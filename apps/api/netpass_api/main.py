"""netpass API - FastAPI Application Entry Point."""

import logging
import os
import time
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from netpass_api.billing.errors import GatewayError, StoreError
from netpass_api.config.env import get_cors_origins
from netpass_api.context import event_kind_var, reference_var, request_id_var
from netpass_api.routers import health, internal, payments, subscriptions, webhooks
from netpass_api.routers.health import VERSION
from netpass_api.schemas import ProblemDetail
from netpass_api.utils import configure_json_logging
from netpass_api.utils.sanitize import sanitize_str

app = FastAPI(
    title="netpass API",
    description="Captive-portal internet subscriptions backed by Paystack, with idempotent webhook reconciliation and RFC 9457 error handling.",
    version=VERSION,
    docs_url="/api-docs",
    redoc_url="/redoc",
)

# Structured JSON logging
# Set NETPASS_JSON_LOGS=false to disable (defaults to true for production)
if os.getenv("NETPASS_JSON_LOGS", "true").lower() != "false":
    configure_json_logging(log_level=os.getenv("LOG_LEVEL", "INFO"))
    logger = logging.getLogger(__name__)
    logger.info("Structured JSON logging enabled")

# CORS: credentials mode CANNOT use wildcard origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID", "Retry-After"],
)


# ============================================================================
# HTTP Completion Logging Middleware
# ============================================================================


@app.middleware("http")
async def http_completion_logging_middleware(request: Request, call_next):
    """Emit one http.request.completed record per request (500 if the app raised).

    Reconciliation context vars are reset on both sides of the call so a
    webhook reference never bleeds into the next request on the worker.
    """
    reference_var.set("")
    event_kind_var.set("")

    start_time = time.perf_counter()
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000

        logging.getLogger(__name__).info(
            "http.request.completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )

        reference_var.set("")
        event_kind_var.set("")


# ============================================================================
# Request ID Middleware (MUST BE OUTERMOST)
# ============================================================================


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Adopt the caller's X-Request-ID (portal or gateway) or mint a UUID4, and echo it back.

    Registered last so it wraps every other middleware.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request_id_var.set(request_id)

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ============================================================================
# RFC 9457 Global Exception Handlers
# ============================================================================


def _instance() -> str:
    request_id = request_id_var.get()
    return f"urn:netpass:trace:{request_id}" if request_id else f"urn:netpass:trace:{uuid.uuid4()}"


def _problem_response(problem: ProblemDetail, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=problem.status,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
        headers=headers,
    )


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """Handle Paystack failures on pass-through routes (502, gateway message)."""
    logging.getLogger(__name__).warning(
        "GATEWAY_ERROR",
        extra={
            "path": request.url.path,
            "gateway_status": exc.status_code,
            "error_msg": sanitize_str(exc.message),
        },
    )
    problem = ProblemDetail(
        type="https://netpass.ng/problems/gateway-error",
        title=_get_title_for_status(502),
        status=502,
        detail=exc.message,
        instance=_instance(),
    )
    return _problem_response(problem)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    """Handle storage failures on read paths (503, retryable)."""
    problem = ProblemDetail(
        type="https://netpass.ng/problems/store-unavailable",
        title=_get_title_for_status(503),
        status=503,
        detail="Subscription store is temporarily unavailable. Please retry.",
        instance=_instance(),
    )
    return _problem_response(problem, headers={"Retry-After": "30"})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with RFC 9457 Problem Details format.

    Preserves dict detail fields for structured error responses.
    """
    detail_value = exc.detail if exc.detail is not None else _get_title_for_status(exc.status_code)

    problem = ProblemDetail(
        type=f"https://netpass.ng/problems/http-{exc.status_code}",
        title=_get_title_for_status(exc.status_code),
        status=exc.status_code,
        detail=detail_value,
        instance=_instance(),
    )
    return _problem_response(problem, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors with RFC 9457 Problem Details format (422)."""
    first_error = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(loc) for loc in first_error.get("loc", []))
    msg = first_error.get("msg", "Validation error")

    problem = ProblemDetail(
        type="https://netpass.ng/problems/validation-error",
        title="Request Validation Failed",
        status=422,
        detail=f"Invalid field '{field}': {msg}",
        instance=_instance(),
    )
    return _problem_response(problem)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions with RFC 9457 Problem Details format (500)."""
    logging.getLogger(__name__).error(
        "UNHANDLED_EXCEPTION",
        extra={"error_type": type(exc).__name__, "path": request.url.path},
        exc_info=True,
    )

    problem = ProblemDetail(
        type="https://netpass.ng/problems/internal-error",
        title="Internal Server Error",
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="An unexpected error occurred. Please try again later.",
        instance=_instance(),
    )
    return _problem_response(problem)


def _get_title_for_status(status_code: int) -> str:
    """Get human-readable title for HTTP status code."""
    titles = {
        400: "Bad Request",
        401: "Unauthorized",
        403: "Forbidden",
        404: "Not Found",
        409: "Conflict",
        422: "Unprocessable Entity",
        500: "Internal Server Error",
        502: "Bad Gateway",
        503: "Service Unavailable",
    }
    return titles.get(status_code, f"HTTP {status_code}")


# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(payments.router)
app.include_router(webhooks.router)
app.include_router(subscriptions.router)
app.include_router(internal.router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": "netpass API",
        "version": VERSION,
        "status": "running",
    }
