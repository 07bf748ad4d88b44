"""
Middleware and exception handlers for the AI chat FastAPI application.

This module contains:
- HTTP middleware for tracing, request logging and security headers
- Centralized exception handlers that turn errors into ErrorResponse JSON

Exception Handling Strategy:
- Every AIChatException subclass carries its own http_status and error_code
- Responses include the trace_id that the chat pipeline also uses as the
  correlation id of the answer
- Unhandled exceptions become a generic 500 with no internal details

Usage in main.py:
    from .api.middleware import register_exception_handlers
    register_exception_handlers(app)
"""

from datetime import datetime, timezone
from typing import Callable, Dict

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..domain.errors import AIChatException
from ..domain.responses import ErrorResponse
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id, generate_trace_id, set_trace_id

logger = get_module_logger()


# =============================================================================
# Middleware Functions
# =============================================================================


async def trace_id_middleware(request: Request, call_next: Callable) -> Response:
    """
    Take the trace id from X-Trace-ID or generate one, and echo it back.
    """
    trace_id = request.headers.get("X-Trace-ID") or generate_trace_id()
    set_trace_id(trace_id)

    response = await call_next(request)
    response.headers["X-Trace-ID"] = trace_id
    return response


async def logging_middleware(request: Request, call_next: Callable) -> Response:
    """
    Log each request and its outcome; adds X-Process-Time in milliseconds.
    """
    start_time = datetime.now(timezone.utc)
    trace_id = current_trace_id()

    logger.info(
        "HTTP request started",
        method=request.method,
        path=request.url.path,
        client_ip=request.client.host if request.client else None,
        trace_id=trace_id
    )

    response = await call_next(request)

    duration_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
    response.headers["X-Process-Time"] = str(round(duration_ms, 2))

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(duration_ms, 2),
        trace_id=trace_id
    )
    return response


async def security_headers_middleware(request: Request, call_next: Callable) -> Response:
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# =============================================================================
# Exception Handlers
# =============================================================================


def _create_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Dict | None = None
) -> JSONResponse:
    """
    Standard error body:
    {"error": "error_code", "message": "...", "details": {...}, "trace_id": "uuid", "timestamp": "ISO8601"}
    """
    error_response = ErrorResponse(
        error=error_code.lower(),
        message=message,
        details=details,
        trace_id=current_trace_id(),
        timestamp=datetime.now(timezone.utc)
    )
    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(mode="json", exclude_none=True)
    )


async def ai_chat_exception_handler(request: Request, exc: AIChatException) -> JSONResponse:
    """
    Handler for all AIChatException subclasses.

    exc.http_status, exc.error_code, exc.message and exc.details map
    directly onto the response.
    """
    log_level = "warning" if exc.http_status < 500 else "error"
    getattr(logger, log_level)(
        f"{exc.__class__.__name__}: {exc.message}",
        error_code=exc.error_code,
        http_status=exc.http_status,
        details=exc.details,
        path=request.url.path,
        method=request.method,
        trace_id=current_trace_id()
    )

    return _create_error_response(
        status_code=exc.http_status,
        error_code=exc.error_code,
        message=exc.message,
        details=exc.details if exc.details else None
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request body/query validation failures as 422 with per-field details."""
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        }
        for error in exc.errors()
    ]

    logger.warning(
        "Request validation failed",
        error_count=len(errors),
        errors=errors,
        path=request.url.path,
        method=request.method,
        trace_id=current_trace_id()
    )

    return _create_error_response(
        status_code=422,
        error_code="VALIDATION_ERROR",
        message="Request validation failed",
        details={"errors": errors}
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    error_code_map = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        429: "RATE_LIMIT_EXCEEDED",
        500: "INTERNAL_ERROR",
        503: "SERVICE_UNAVAILABLE",
    }
    error_code = error_code_map.get(exc.status_code, "HTTP_ERROR")

    log_level = "warning" if exc.status_code < 500 else "error"
    getattr(logger, log_level)(
        f"HTTP {exc.status_code}: {exc.detail}",
        error_code=error_code,
        path=request.url.path,
        method=request.method,
        trace_id=current_trace_id()
    )

    return _create_error_response(
        status_code=exc.status_code,
        error_code=error_code,
        message=str(exc.detail) if exc.detail else f"HTTP {exc.status_code} error"
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Fallback for unhandled exceptions: full details in the log, none in the response.
    """
    logger.error(
        "Unhandled exception occurred",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        trace_id=current_trace_id(),
        exc_info=True
    )

    return _create_error_response(
        status_code=500,
        error_code="INTERNAL_ERROR",
        message="An internal server error occurred. Please try again later."
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register all exception handlers with the FastAPI application.

    Priority (first match wins):
    1. AIChatException subclasses
    2. RequestValidationError
    3. StarletteHTTPException
    4. Exception (fallback)
    """
    app.add_exception_handler(AIChatException, ai_chat_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, general_exception_handler)  # type: ignore[arg-type]

    logger.info(
        "Exception handlers registered",
        handlers=["AIChatException", "RequestValidationError", "StarletteHTTPException", "Exception (fallback)"]
    )


def _error_example(description: str, error: str, message: str) -> Dict:
    return {
        "description": description,
        "content": {
            "application/json": {
                "example": {
                    "error": error,
                    "message": message,
                    "trace_id": "550e8400-e29b-41d4-a716-446655440000",
                    "timestamp": "2025-01-15T10:30:00Z"
                }
            }
        }
    }


# Used in route decorators: @app.post("/endpoint", responses=ERROR_RESPONSES)
ERROR_RESPONSES = {
    400: _error_example("Bad Request", "bad_request", "Unsupported provider 'foo'"),
    401: _error_example("Unauthorized - no authenticated user", "unauthorized", "Authentication required"),
    422: _error_example("Validation Error", "validation_error", "Request validation failed"),
    500: _error_example("Internal Server Error", "internal_error", "An internal server error occurred. Please try again later."),
    503: _error_example("Service Unavailable", "service_unavailable", "AI chat service is not initialized"),
}
