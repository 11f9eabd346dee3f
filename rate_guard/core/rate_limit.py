"""Rate limiting dependency for FastAPI routes.

This module wires the limiter into the HTTP layer. The limiter instance is
owned by the application (``app.state.rate_limiter``) rather than by this
module, so tests and multi-app processes each get their own counters.

Per request the dependency:
- Builds RequestMetadata from headers, the socket peer and the session cookie.
- Runs the limiter check.
- Persists a newly minted session key as a cookie.
- Adds X-RateLimit-* headers to the forwarded response, or raises
  RateLimitExceededError which the exception handler renders as HTTP 429.
  CORS headers set on the forwarded response by earlier dependencies travel
  with the error so browsers can still read the rejection.
"""

from __future__ import annotations

from fastapi import Request, Response

from rate_guard.core.config import settings
from rate_guard.core.errors import RateLimitExceededError
from rate_guard.schemas.rate_limit import build_rate_limit_headers
from rate_guard.services.identity import RequestMetadata
from rate_guard.services.limiter import RateLimiter


def get_rate_limiter(request: Request) -> RateLimiter:
    """Return the limiter owned by the running application."""

    return request.app.state.rate_limiter


def build_request_metadata(request: Request, *, session_cookie_name: str) -> RequestMetadata:
    """Collect the attributes the identity resolver needs from a request."""

    return RequestMetadata(
        forwarded_for=request.headers.get("x-forwarded-for"),
        remote_address=request.client.host if request.client else None,
        real_ip=request.headers.get("x-real-ip"),
        client_ip=request.headers.get("x-client-ip"),
        session_key=request.cookies.get(session_cookie_name),
    )


CORS_HEADER_PREFIX = "access-control-"


def collect_cors_headers(response: Response) -> dict[str, str]:
    """Return the CORS headers already set on the forwarded response."""

    return {
        name: value
        for name, value in response.headers.items()
        if name.lower().startswith(CORS_HEADER_PREFIX)
    }


def set_session_cookie(response: Response, session_key: str) -> None:
    response.set_cookie(
        settings.rate_limit.session_cookie_name,
        session_key,
        httponly=True,
        samesite="lax",
    )


async def enforce_rate_limit(request: Request, response: Response) -> None:
    """FastAPI dependency enforcing rate limits.

    When enabled, counts the request against every configured dimension. If
    any dimension is exhausted, raises RateLimitExceededError.

    Args:
        request: FastAPI request.
        response: Response FastAPI merges into the route's response.

    Raises:
        RateLimitExceededError: When the request is rejected.
    """

    rl_settings = settings.rate_limit
    if not rl_settings.enabled:
        return

    limiter = get_rate_limiter(request)
    identifier = (
        request.headers.get(rl_settings.identifier_header)
        if rl_settings.identifier_header
        else None
    )
    metadata = build_request_metadata(request, session_cookie_name=rl_settings.session_cookie_name)

    outcome = await limiter.check(metadata, identifier=identifier)

    if not outcome.admitted:
        raise RateLimitExceededError(
            outcome.decision,
            minted_session_key=outcome.minted_session_key,
            cors_headers=collect_cors_headers(response),
        )

    if outcome.minted_session_key:
        set_session_cookie(response, outcome.minted_session_key)

    if rl_settings.include_headers:
        response.headers.update(build_rate_limit_headers(outcome.decision))
