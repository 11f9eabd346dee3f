"""In-memory refreshing-window counter with bounded capacity.

Notes:
- Per-process only: every worker keeps its own counts. Enable shared mode to
  converge counts across workers and nodes.
- Thread-safe: a single lock guards the store. LRU order is global, so the
  lock cannot be sharded without giving up exact least-recently-used eviction.
- Memory is bounded by ``capacity``; the least recently touched key is evicted
  first and expired windows are swept at most once per window length.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from rate_guard.adapters.rate_limit.base import AbstractWindowCounter, WindowResult
from rate_guard.core.logging import hash_key_for_log

logger = logging.getLogger(__name__)


@dataclass
class _WindowState:
    count: int
    window_start: float
    expires_at: float


class InMemoryWindowCounter(AbstractWindowCounter):
    """Counter using a window that starts at the first request of a key.

    A key's window opens on its first counted request and lasts
    ``window_seconds``. Once it has elapsed the next request opens a new
    window with a fresh budget. Rejected requests do not consume budget.
    """

    def __init__(
        self,
        *,
        capacity: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the counter.

        Args:
            capacity: Maximum number of keys tracked at once.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If capacity is invalid.
        """
        if capacity < 1:
            raise ValueError("capacity must be >= 1")

        self._capacity = capacity
        self._clock = clock
        self._lock = threading.RLock()
        self._store: OrderedDict[str, _WindowState] = OrderedDict()
        self._next_sweep_at = 0.0
        self._evictions = 0
        self._expirations = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._store

    @property
    def capacity(self) -> int:
        return self._capacity

    def consume(
        self,
        key: str,
        *,
        limit: int,
        window_seconds: float,
        cost: int = 1,
    ) -> WindowResult:
        """Consume budget for ``key`` and report the resulting window state.

        Args:
            key: Unique identifier for rate limiting.
            limit: Max requests per window.
            window_seconds: Window length in seconds.
            cost: Units to consume (default 1).

        Returns:
            WindowResult with allowance decision and metadata.

        Raises:
            ValueError: If key is empty or a numeric argument is invalid.
        """
        if not key:
            raise ValueError("key must be a non-empty string")
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if cost < 1:
            raise ValueError("cost must be >= 1")

        now = self._clock()

        with self._lock:
            self._maybe_sweep_locked(now, window_seconds)
            state = self._get_or_open_window_locked(key, now, window_seconds)

            if state.count + cost <= limit:
                state.count += cost
                return WindowResult(
                    allowed=True,
                    limit=limit,
                    remaining=max(0, limit - state.count),
                    reset_at=int(math.ceil(state.expires_at)),
                    retry_after_seconds=None,
                )

            return WindowResult(
                allowed=False,
                limit=limit,
                remaining=max(0, limit - state.count),
                reset_at=int(math.ceil(state.expires_at)),
                retry_after_seconds=max(0, int(math.ceil(state.expires_at - now))),
            )

    def write_back(self, key: str, *, limit: int, remaining: int, reset_at: int) -> None:
        """Raise the local count of ``key`` to match a remaining budget.

        Counts only move up: a concurrent local increment that already went
        past the reported value is kept.
        """
        if not key:
            raise ValueError("key must be a non-empty string")

        now = self._clock()
        observed = max(0, limit - max(0, remaining))

        with self._lock:
            state = self._store.get(key)
            if state is None or now >= state.expires_at:
                if reset_at <= now:
                    return
                state = _WindowState(count=0, window_start=now, expires_at=float(reset_at))
                self._insert_locked(key, state)
            else:
                state.expires_at = max(state.expires_at, float(reset_at))
                self._store.move_to_end(key)
            state.count = max(state.count, observed)

    def reset(self, key: str) -> None:
        """Forget any state held for ``key``."""
        with self._lock:
            self._store.pop(key, None)

    def purge_expired(self) -> int:
        """Drop every key whose window has elapsed.

        Returns:
            Number of keys removed.
        """
        with self._lock:
            return self._purge_expired_locked(self._clock())

    def stats(self) -> dict[str, int]:
        """Return lightweight counter metrics without exposing keys."""
        with self._lock:
            return {
                "capacity": self._capacity,
                "keys": len(self._store),
                "evictions": self._evictions,
                "expirations": self._expirations,
            }

    def _get_or_open_window_locked(self, key: str, now: float, window_seconds: float) -> _WindowState:
        state = self._store.get(key)
        if state is not None and now < state.expires_at:
            self._store.move_to_end(key)
            return state

        if state is not None:
            self._expirations += 1
        fresh = _WindowState(count=0, window_start=now, expires_at=now + window_seconds)
        self._insert_locked(key, fresh)
        return fresh

    def _insert_locked(self, key: str, state: _WindowState) -> None:
        self._store[key] = state
        self._store.move_to_end(key)
        while len(self._store) > self._capacity:
            evicted_key, _ = self._store.popitem(last=False)
            self._evictions += 1
            logger.debug(
                "rate_limit.evicted",
                extra={"key_hash": hash_key_for_log(evicted_key), "size": len(self._store)},
            )

    def _maybe_sweep_locked(self, now: float, window_seconds: float) -> None:
        if now < self._next_sweep_at:
            return
        self._purge_expired_locked(now)
        self._next_sweep_at = now + window_seconds

    def _purge_expired_locked(self, now: float) -> int:
        expired = [k for k, state in self._store.items() if now >= state.expires_at]
        for key in expired:
            del self._store[key]
        self._expirations += len(expired)
        return len(expired)
