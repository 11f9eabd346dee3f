"""Common logic for script-driven shared counters.

Concrete clients only know how to run a script and how to increment an
analytics field on their transport; key layout, verdict interpretation and
background analytics bookkeeping live here.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import abstractmethod
from typing import Any, Callable

from rate_guard.adapters.rate_limit.base import (
    AbstractSharedCounter,
    CountingMode,
    SharedCounterResult,
)
from rate_guard.adapters.rate_limit.scripts import (
    ANALYTICS_TTL_SECONDS,
    FIXED_WINDOW_SCRIPT,
    SLIDING_WINDOW_SCRIPT,
    analytics_field,
    analytics_key,
    bucket_for,
    bucket_reset_at,
    window_ms,
)
from rate_guard.core.errors import SharedCounterAppError

logger = logging.getLogger(__name__)


class ScriptedSharedCounter(AbstractSharedCounter):
    """Shared counter running the fixed/sliding window scripts.

    Attributes:
        backend: Short backend name used in logs and error details.
    """

    backend = "shared"

    def __init__(
        self,
        *,
        prefix: str = "rate_guard",
        analytics: bool = False,
        max_pending_tasks: int = 100,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_pending_tasks < 1:
            raise ValueError("max_pending_tasks must be >= 1")

        self._prefix = prefix
        self._analytics = analytics
        self._max_pending_tasks = max_pending_tasks
        self._clock = clock
        self._pending: set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def limit(
        self,
        key: str,
        *,
        limit: int,
        window_seconds: float,
        mode: CountingMode = CountingMode.FIXED,
    ) -> SharedCounterResult:
        if not key:
            raise ValueError("key must be a non-empty string")

        now_ms = int(self._clock() * 1000)
        window = window_ms(window_seconds)
        bucket = bucket_for(now_ms, window)
        reset_at = bucket_reset_at(bucket, window)
        current_key = f"{self._prefix}:{key}:{bucket}"

        if mode is CountingMode.SLIDING:
            previous_key = f"{self._prefix}:{key}:{bucket - 1}"
            raw = await self._run_script(
                SLIDING_WINDOW_SCRIPT,
                keys=[current_key, previous_key],
                args=[limit, now_ms, window],
            )
            remaining = int(raw)
            success = remaining >= 0
        else:
            raw = await self._run_script(
                FIXED_WINDOW_SCRIPT,
                keys=[current_key],
                args=[window],
            )
            count = int(raw)
            success = count <= limit
            remaining = limit - count

        pending = self._schedule_analytics(key, success, now_ms) if self._analytics else None

        return SharedCounterResult(
            success=success,
            limit=limit,
            remaining=max(0, remaining),
            reset_at=reset_at,
            pending=pending,
        )

    async def aclose(self) -> None:
        """Wait for in-flight analytics writes, then close the transport."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        await self._close_transport()

    def _schedule_analytics(self, key: str, success: bool, now_ms: int) -> asyncio.Task | None:
        if len(self._pending) >= self._max_pending_tasks:
            logger.debug(
                "rate_limit.analytics_skipped",
                extra={"backend": self.backend, "pending": len(self._pending)},
            )
            return None

        task = asyncio.create_task(
            self._record_analytics(analytics_key(self._prefix, now_ms), analytics_field(key, success))
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _record_analytics(self, hash_key: str, field: str) -> None:
        try:
            await self._increment_field(hash_key, field, ttl_seconds=ANALYTICS_TTL_SECONDS)
        except SharedCounterAppError as exc:
            logger.warning(
                "rate_limit.analytics_failed",
                extra={"backend": self.backend, "error_code": exc.code},
            )

    @abstractmethod
    async def _run_script(self, script: str, *, keys: list[str], args: list[Any]) -> Any:
        """Run ``script`` atomically and return its raw result."""
        raise NotImplementedError

    @abstractmethod
    async def _increment_field(self, hash_key: str, field: str, *, ttl_seconds: int) -> None:
        """Increment ``field`` of hash ``hash_key`` and refresh its TTL."""
        raise NotImplementedError

    async def _close_transport(self) -> None:
        return None
