"""Rate limit decision engine.

Combines the in-process window counter with the optional shared counter into
one admit/deny verdict per request.

Algorithm:
1. Every identity is checked against the local counter in priority order.
   The first local rejection short-circuits; the shared store is not called.
2. When all identities pass locally and a shared counter is configured, each
   identity is checked against the shared store (concurrently, without
   holding any local lock).
3. Per identity: remaining = min(local, shared), reset = max(local, shared),
   admitted = local AND shared. The shared remaining budget is written back
   to the local counter so later local checks track the network-wide count.
4. A shared store failure is resolved by the configured fail mode: "open"
   keeps the local verdict, "closed" rejects.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, Literal, Sequence

from rate_guard.adapters.rate_limit.base import (
    AbstractSharedCounter,
    AbstractWindowCounter,
    CountingMode,
    SharedCounterResult,
    WindowResult,
)
from rate_guard.core.config import FailMode
from rate_guard.core.errors import SharedCounterAppError

logger = logging.getLogger(__name__)

DIMENSION_ADDRESS = "address"
DIMENSION_SESSION = "session"

Source = Literal["local", "shared"]


@dataclass(frozen=True)
class Identity:
    """One rate limit dimension to check for a request.

    Attributes:
        dimension: Dimension tag (e.g. "address", "session").
        key: Counter key, unique per (dimension, value).
        limit: Max requests per window on this dimension.
        window_seconds: Window length on this dimension.
    """

    dimension: str
    key: str
    limit: int
    window_seconds: float

    @classmethod
    def for_value(cls, dimension: str, value: str, *, limit: int, window_seconds: float) -> "Identity":
        return cls(dimension=dimension, key=f"{dimension}:{value}", limit=limit, window_seconds=window_seconds)


@dataclass(frozen=True)
class DecisionResult:
    """Outcome of a rate limit decision.

    Attributes:
        admitted: Whether the request may proceed.
        limit: Limit of the reported dimension.
        remaining: Remaining budget of the reported dimension.
        reset_at: UNIX epoch seconds when the reported window resets.
        failed_dimension: Dimension that rejected the request, if any.
        source: Which counter rejected the request ("local" or "shared").
        pending: Background shared store work still running.
    """

    admitted: bool
    limit: int
    remaining: int
    reset_at: int
    failed_dimension: str | None = None
    source: Source | None = None
    pending: tuple[asyncio.Task, ...] = field(default=(), compare=False)

    def retry_after_seconds(self, now: float | None = None) -> int:
        now = time.time() if now is None else now
        return max(0, int(math.ceil(self.reset_at - now)))


@dataclass(frozen=True)
class _Verdict:
    identity: Identity
    admitted: bool
    remaining: int
    reset_at: int
    source: Source


class DecisionEngine:
    """Merge local and shared counter verdicts into one decision."""

    def __init__(
        self,
        local: AbstractWindowCounter,
        shared: AbstractSharedCounter | None = None,
        *,
        mode: CountingMode = CountingMode.FIXED,
        fail_mode: FailMode = "open",
        shared_timeout_seconds: float = 1.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._local = local
        self._shared = shared
        self._mode = mode
        self._fail_mode = fail_mode
        self._shared_timeout = shared_timeout_seconds
        self._clock = clock

    @property
    def shared_enabled(self) -> bool:
        return self._shared is not None

    async def decide(self, identities: Sequence[Identity]) -> DecisionResult:
        """Decide whether a request identified by ``identities`` is admitted.

        Args:
            identities: Dimensions to check, in priority order. The first
                rejecting dimension is the one reported.

        Returns:
            DecisionResult for the request.

        Raises:
            ValueError: If no identity is given.
        """
        if not identities:
            raise ValueError("at least one identity is required")

        local_results: list[WindowResult] = []
        for identity in identities:
            result = self._local.consume(
                identity.key,
                limit=identity.limit,
                window_seconds=identity.window_seconds,
            )
            if not result.allowed:
                return DecisionResult(
                    admitted=False,
                    limit=identity.limit,
                    remaining=result.remaining,
                    reset_at=result.reset_at,
                    failed_dimension=identity.dimension,
                    source="local",
                )
            local_results.append(result)

        if self._shared is None:
            verdicts = [
                _Verdict(identity, True, result.remaining, result.reset_at, "local")
                for identity, result in zip(identities, local_results)
            ]
            return self._merge(verdicts)

        shared_results = await asyncio.gather(
            *(self._shared_check(self._shared, identity) for identity in identities)
        )

        verdicts = []
        pending: list[asyncio.Task] = []
        for identity, local_result, shared_result in zip(identities, local_results, shared_results):
            verdicts.append(self._merge_identity(identity, local_result, shared_result))
            if isinstance(shared_result, SharedCounterResult) and shared_result.pending is not None:
                pending.append(shared_result.pending)

        return self._merge(verdicts, pending=tuple(pending))

    async def _shared_check(
        self, shared: AbstractSharedCounter, identity: Identity
    ) -> SharedCounterResult | None:
        """Query the shared store, returning None when it is unavailable."""
        try:
            return await asyncio.wait_for(
                shared.limit(
                    identity.key,
                    limit=identity.limit,
                    window_seconds=identity.window_seconds,
                    mode=self._mode,
                ),
                timeout=self._shared_timeout,
            )
        except (SharedCounterAppError, asyncio.TimeoutError) as exc:
            logger.warning(
                "rate_limit.shared_unavailable",
                extra={
                    "dimension": identity.dimension,
                    "fail_mode": self._fail_mode,
                    "error_type": type(exc).__name__,
                    "error_code": getattr(exc, "code", "timeout"),
                },
            )
            return None

    def _merge_identity(
        self,
        identity: Identity,
        local_result: WindowResult,
        shared_result: SharedCounterResult | None,
    ) -> _Verdict:
        if shared_result is None:
            if self._fail_mode == "closed":
                return _Verdict(identity, False, 0, local_result.reset_at, "shared")
            return _Verdict(identity, True, local_result.remaining, local_result.reset_at, "local")

        remaining = min(local_result.remaining, shared_result.remaining)
        reset_at = max(local_result.reset_at, shared_result.reset_at)

        self._local.write_back(
            identity.key,
            limit=identity.limit,
            remaining=remaining,
            reset_at=reset_at,
        )

        admitted = local_result.allowed and shared_result.success
        return _Verdict(identity, admitted, remaining, reset_at, "shared")

    def _merge(
        self,
        verdicts: Sequence[_Verdict],
        *,
        pending: tuple[asyncio.Task, ...] = (),
    ) -> DecisionResult:
        rejected = next((v for v in verdicts if not v.admitted), None)
        if rejected is not None:
            return DecisionResult(
                admitted=False,
                limit=rejected.identity.limit,
                remaining=rejected.remaining,
                reset_at=rejected.reset_at,
                failed_dimension=rejected.identity.dimension,
                source=rejected.source,
                pending=pending,
            )

        # Report the dimension closest to its limit.
        tightest = min(verdicts, key=lambda v: v.remaining)
        return DecisionResult(
            admitted=True,
            limit=tightest.identity.limit,
            remaining=tightest.remaining,
            reset_at=max(v.reset_at for v in verdicts),
            pending=pending,
        )
