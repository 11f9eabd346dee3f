"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping, NotRequired, TypedDict

if TYPE_CHECKING:
    from rate_guard.services.decision_engine import DecisionResult


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    backend: str
    dimension: str
    http_status: int
    retry_after: float
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class SharedCounterAppError(AppError):
    """Raised by shared counter adapters when the backing store fails."""


class RateLimitExceededError(AppError):
    """Raised by the HTTP layer when a request is rejected.

    Carries the decision (for the X-RateLimit-* headers), a session key
    minted during the check, and the CORS headers already set on the
    forwarded response. The 429 response must still persist the last two.
    """

    def __init__(
        self,
        decision: DecisionResult,
        *,
        minted_session_key: str | None = None,
        cors_headers: Mapping[str, str] | None = None,
    ) -> None:
        self.decision = decision
        self.minted_session_key = minted_session_key
        self.cors_headers = dict(cors_headers or {})
        super().__init__(
            code="rate_limit_exceeded",
            message="Too Many Requests",
            details={"dimension": decision.failed_dimension or "unknown"},
        )
