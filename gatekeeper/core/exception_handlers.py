"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return consistent JSON responses with proper
HTTP status codes and traceability.

Design:
- RateLimitExceededError → 429 with retryAfter and Retry-After header
- RateLimitCheckFailedError → 500 "Rate limit check failed"
- Other AppError subclasses → appropriate HTTP status (400, 403, 500)
- Unexpected Exception → generic 500 (safety net)
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from gatekeeper.core.errors import (
    AppError,
    AuthenticationAppError,
    CleanupAppError,
    ConfigurationAppError,
    RateLimitCheckFailedError,
    RateLimitExceededError,
    WindowStoreError,
)
from gatekeeper.core.logging import get_request_id
from gatekeeper.core.rate_limit import (
    build_rate_limit_headers,
    check_failed_response,
    too_many_requests_response,
)

logger = logging.getLogger(__name__)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    """Answer a quota rejection with the 429 body and rate limit headers.

    Quota rejections are expected traffic; they are already logged and
    counted by the limiter, so nothing is logged here.
    """
    details = exc.details or {}
    retry_after = int(details.get("retry_after", 0))
    include_headers = getattr(
        getattr(request.app.state, "rate_limiters", None), "include_headers", True
    )

    headers = build_rate_limit_headers(
        limit=details.get("limit", 0),
        remaining=details.get("remaining", 0),
        reset_at_ms=details.get("reset_at_ms", 0),
        retry_after=retry_after,
        include_headers=include_headers,
    )
    return too_many_requests_response(retry_after, headers=headers)


async def rate_limit_check_failed_handler(
    request: Request, exc: RateLimitCheckFailedError
) -> JSONResponse:
    """Answer a fail-closed store fault with HTTP 500."""
    return check_failed_response()


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Routes domain errors to appropriate HTTP status codes:
    - AuthenticationAppError → 403 Forbidden (authorization fault)
    - ConfigurationAppError, WindowStoreError, CleanupAppError → 500
    - anything else → 400 Bad Request (client fault)

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = 400
    if isinstance(exc, AuthenticationAppError):
        status_code = 403
    elif isinstance(exc, (ConfigurationAppError, WindowStoreError, CleanupAppError)):
        status_code = 500

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = exc.details

    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error_content},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic
    message. No stack traces reach the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            },
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Specific handlers are registered before the general fallback.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(RateLimitExceededError)(rate_limit_exceeded_handler)
    app.exception_handler(RateLimitCheckFailedError)(rate_limit_check_failed_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
