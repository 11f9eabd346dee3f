"""Rate limiter interfaces.

The decision engine depends on these abstractions (not the concrete
implementations) so the local store and the shared store can be swapped
independently.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class CountingMode(str, Enum):
    """Counting algorithm used by a shared counter."""

    FIXED = "fixed"
    SLIDING = "sliding"


@dataclass(frozen=True)
class WindowResult:
    """Result of a local check/consume operation.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining requests in the current window (0 when blocked).
        reset_at: UNIX epoch seconds when the current window resets.
        retry_after_seconds: Suggested wait time in seconds when blocked.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after_seconds: int | None


@dataclass(frozen=True)
class SharedCounterResult:
    """Network-wide verdict returned by a shared counter.

    Attributes:
        success: Whether the shared store admitted the request.
        limit: Max requests per window.
        remaining: Remaining requests across all nodes.
        reset_at: UNIX epoch seconds when the shared window resets.
        pending: Background work (analytics) still running, if any.
    """

    success: bool
    limit: int
    remaining: int
    reset_at: int
    pending: asyncio.Task | None = None


class AbstractWindowCounter(ABC):
    """Interface for in-process window counters."""

    @abstractmethod
    def consume(
        self,
        key: str,
        *,
        limit: int,
        window_seconds: float,
        cost: int = 1,
    ) -> WindowResult:
        """Consume rate limit budget for a given key.

        Args:
            key: Unique identifier (e.g., "ip:203.0.113.4").
            limit: Max requests per window for this key.
            window_seconds: Window length in seconds.
            cost: Units to consume (default 1).

        Returns:
            WindowResult describing whether it was allowed.
        """
        raise NotImplementedError

    @abstractmethod
    def write_back(self, key: str, *, limit: int, remaining: int, reset_at: int) -> None:
        """Align the local state of ``key`` with a verdict from elsewhere."""
        raise NotImplementedError


class AbstractSharedCounter(ABC):
    """Interface for counters backed by a network-accessible store."""

    @abstractmethod
    async def limit(
        self,
        key: str,
        *,
        limit: int,
        window_seconds: float,
        mode: CountingMode = CountingMode.FIXED,
    ) -> SharedCounterResult:
        """Increment the counter for ``key`` and check it against ``limit``.

        Raises:
            SharedCounterAppError: If the store cannot be reached or answers
                with an error.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release network resources held by the client."""
        return None
