"""Pydantic schemas and header helpers for rate limit responses."""

from __future__ import annotations

from pydantic import BaseModel, Field

from rate_guard.services.decision_engine import DecisionResult

RATE_LIMIT_HEADERS = ("X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset")


class TooManyRequestsResponse(BaseModel):
    """Body returned with HTTP 429."""

    message: str = Field(
        "Too Many Requests",
        description="Human-readable rejection message.",
    )


class LimiterStatus(BaseModel):
    """Limiter mode reported by the health endpoint."""

    enabled: bool = Field(..., description="Whether protected routes are rate limited.")
    shared_mode: bool = Field(..., description="Whether a shared counter store is consulted.")
    sliding: bool = Field(..., description="Whether the shared store uses sliding windows.")
    fail_mode: str = Field(..., description="Verdict when the shared store is unavailable.")
    tracked_keys: int = Field(..., ge=0, description="Keys currently tracked in memory.")


def build_rate_limit_headers(
    decision: DecisionResult,
    *,
    include_retry_after: bool = False,
    now: float | None = None,
) -> dict[str, str]:
    """Render the X-RateLimit-* headers for a decision.

    Args:
        decision: Decision to describe.
        include_retry_after: Also emit Retry-After (used on 429 responses).
        now: Current UNIX time, for Retry-After.

    Returns:
        Header name to value mapping.
    """
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.reset_at),
    }
    if include_retry_after:
        headers["Retry-After"] = str(decision.retry_after_seconds(now))
    return headers
