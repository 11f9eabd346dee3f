"""HTTP middleware for request ID propagation and correlation.

Every request/response pair carries a request ID so rate limit events
(``rate_limit.allowed``, ``rate_limit.exceeded``...) can be correlated with
the request that produced them, including 429 responses.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response

from rate_guard.core.config import settings
from rate_guard.core.logging import clear_request_id, set_request_id

logger = logging.getLogger(__name__)


async def request_id_middleware(request: Request, call_next) -> Response:
    """Attach a correlation ID and duration to every response.

    Reuses the incoming ID header (``LOG_REQUEST_ID_HEADER``, default
    X-Request-ID) when present, otherwise generates a UUID. The ID lives in a
    context variable while the limiter runs, so its log records carry it.
    Throttled responses are logged once more here with the total duration.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with the request ID and
            X-Request-Duration-ms headers added.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        if response.status_code == 429:
            logger.info(
                "http.request_throttled",
                extra={
                    "request_id": request_id,
                    "request_method": request.method,
                    "request_path": request.url.path,
                    "duration_ms": round(duration_ms, 2),
                },
            )
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
