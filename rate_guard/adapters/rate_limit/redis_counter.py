"""Shared counter backed by a Redis server.

Uses the asyncio Redis client; window scripts are registered once and run
with EVALSHA (falling back to EVAL when the server has flushed its script
cache).

**Security Note**: Use ``rediss://`` URLs when the store is reached over an
untrusted network, and never log the connection URL since it may carry a
password.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from redis.asyncio import Redis
from redis.commands.core import AsyncScript
from redis.exceptions import RedisError

from rate_guard.adapters.rate_limit.shared import ScriptedSharedCounter
from rate_guard.core.errors import SharedCounterAppError

logger = logging.getLogger(__name__)


class RedisSharedCounter(ScriptedSharedCounter):
    """Shared counter talking to Redis over its native protocol."""

    backend = "redis"

    def __init__(
        self,
        redis: Redis,
        *,
        prefix: str = "rate_guard",
        analytics: bool = False,
        max_pending_tasks: int = 100,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(
            prefix=prefix,
            analytics=analytics,
            max_pending_tasks=max_pending_tasks,
            clock=clock,
        )
        self._redis = redis
        self._scripts: dict[str, AsyncScript] = {}

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        password: str | None = None,
        timeout_seconds: float = 1.0,
        **kwargs: Any,
    ) -> "RedisSharedCounter":
        """Build a client from a ``redis://`` / ``rediss://`` / ``unix://`` URL."""
        options: dict[str, Any] = {
            "decode_responses": True,
            "socket_timeout": timeout_seconds,
            "socket_connect_timeout": timeout_seconds,
        }
        if password:
            options["password"] = password
        return cls(Redis.from_url(url, **options), **kwargs)

    async def _run_script(self, script: str, *, keys: list[str], args: list[Any]) -> Any:
        registered = self._scripts.get(script)
        if registered is None:
            registered = self._redis.register_script(script)
            self._scripts[script] = registered
        try:
            return await registered(keys=keys, args=args)
        except RedisError as exc:
            raise SharedCounterAppError(
                code="shared_counter_unavailable",
                message=f"Redis error: {exc}",
                details={"backend": self.backend},
            ) from exc

    async def _increment_field(self, hash_key: str, field: str, *, ttl_seconds: int) -> None:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.hincrby(hash_key, field, 1)
                pipe.expire(hash_key, ttl_seconds)
                await pipe.execute()
        except RedisError as exc:
            raise SharedCounterAppError(
                code="shared_counter_unavailable",
                message=f"Redis error: {exc}",
                details={"backend": self.backend},
            ) from exc

    async def _close_transport(self) -> None:
        await self._redis.aclose()
        logger.debug("rate_limit.shared_closed", extra={"backend": self.backend})
