"""Global exception handlers for consistent error responses.

Design:
- RateLimitExceededError → 429 with {"message": "Too Many Requests"} and
  X-RateLimit-* / Retry-After headers plus forwarded CORS headers
- Other AppError subclasses → 400 (client fault) or 503 (shared store fault)
- Unexpected Exception → generic 500 (safety net)
- Error envelopes include request_id for distributed tracing
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from rate_guard.core.config import settings
from rate_guard.core.errors import AppError, RateLimitExceededError, SharedCounterAppError
from rate_guard.core.logging import get_request_id
from rate_guard.core.rate_limit import set_session_cookie
from rate_guard.schemas.rate_limit import TooManyRequestsResponse, build_rate_limit_headers

logger = logging.getLogger(__name__)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    """Render a rejected request as HTTP 429.

    The session cookie minted during the check is still set so the client
    keeps counting under the same session on its next attempt. CORS headers
    from the forwarded response are copied so browsers can read the 429.
    """
    headers = dict(exc.cors_headers)
    if settings.rate_limit.include_headers:
        headers.update(build_rate_limit_headers(exc.decision, include_retry_after=True))

    response = JSONResponse(
        status_code=429,
        content=TooManyRequestsResponse().model_dump(),
        headers=headers or None,
    )
    if exc.minted_session_key:
        set_session_cookie(response, exc.minted_session_key)
    return response


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Routes domain errors to appropriate HTTP status codes:
    - ValidationAppError → 400 Bad Request (client fault)
    - SharedCounterAppError → 503 Service Unavailable (backend fault)

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = 400
    if isinstance(exc, SharedCounterAppError):
        status_code = 503

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        }
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
        content={"error": error_content},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs the failure for debugging while returning a generic message, so no
    stack traces leak to the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        }
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(RateLimitExceededError)(rate_limit_exceeded_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
