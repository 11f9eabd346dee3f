from __future__ import annotations

from fastapi import APIRouter, Request

from rate_guard.core.config import settings
from rate_guard.schemas.rate_limit import LimiterStatus

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Health check endpoint.

    Returns a status response plus the limiter mode, so operators can see at
    a glance whether the shared counter store is in use. Health checks are
    never rate limited.

    Returns:
        dict: "status" set to "ok" and a "rate_limit" status object.
    """

    limiter = request.app.state.rate_limiter
    config = limiter.config
    status = LimiterStatus(
        enabled=settings.rate_limit.enabled,
        shared_mode=limiter.shared is not None,
        sliding=config.sliding_mode,
        fail_mode=config.fail_mode,
        tracked_keys=len(limiter.local),
    )
    return {"status": "ok", "rate_limit": status.model_dump()}
