"""Application factory for the reference FastAPI host.

Centralizes app construction (limiter, middleware, handlers, routers) so
tests can build isolated apps, each owning its own limiter.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from rate_guard.api.routes import health_router, ping_router
from rate_guard.core.config import settings
from rate_guard.core.exception_handlers import setup_exception_handlers
from rate_guard.core.logging import configure_logging
from rate_guard.core.middleware import request_id_middleware
from rate_guard.services.limiter import RateLimiter


def create_app(limiter: RateLimiter | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        limiter: Limiter to install; built from settings when omitted.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    limiter = limiter or RateLimiter(settings.rate_limit.to_limiter_config())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            await limiter.aclose()

    app = FastAPI(
        title="Rate Guard",
        description=(
            "Request throttling for HTTP services: per-address and per-session "
            "limits counted in memory and, optionally, in a shared Redis store."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.rate_limiter = limiter

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(ping_router, prefix="/v1")
    app.include_router(health_router)

    return app
