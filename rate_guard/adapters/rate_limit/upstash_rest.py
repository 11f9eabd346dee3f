"""Shared counter backed by a Redis REST endpoint (Upstash-compatible).

Commands are sent as JSON arrays to the endpoint root, pipelines to
``/pipeline``, authenticated with a bearer token.
"""

from __future__ import annotations

import hashlib
import logging
import time
from typing import Any, Callable

import httpx

from rate_guard.adapters.rate_limit.shared import ScriptedSharedCounter
from rate_guard.core.errors import SharedCounterAppError

logger = logging.getLogger(__name__)


class UpstashRestSharedCounter(ScriptedSharedCounter):
    """Shared counter talking to a Redis REST API over HTTPS."""

    backend = "redis_rest"

    def __init__(
        self,
        url: str,
        token: str,
        *,
        timeout_seconds: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
        prefix: str = "rate_guard",
        analytics: bool = False,
        max_pending_tasks: int = 100,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the REST client.

        Args:
            url: REST endpoint base URL.
            token: Bearer token for the endpoint.
            timeout_seconds: Timeout for each HTTP request.
            transport: Optional httpx transport (tests use MockTransport).
            prefix: Namespace for keys written to the store.
            analytics: Record allowed/blocked counters per day.
            max_pending_tasks: Cap on in-flight analytics writes.
            clock: Time source returning UNIX time in seconds.
        """
        if not url:
            raise ValueError("url must be a non-empty string")
        if not token:
            raise ValueError("token must be a non-empty string")

        super().__init__(
            prefix=prefix,
            analytics=analytics,
            max_pending_tasks=max_pending_tasks,
            clock=clock,
        )
        self._client = httpx.AsyncClient(
            base_url=url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout_seconds,
            transport=transport,
        )

    async def _run_script(self, script: str, *, keys: list[str], args: list[Any]) -> Any:
        sha = hashlib.sha1(script.encode()).hexdigest()
        params = [str(len(keys)), *keys, *(str(a) for a in args)]
        try:
            return await self._command(["EVALSHA", sha, *params])
        except SharedCounterAppError as exc:
            if "NOSCRIPT" not in exc.message:
                raise
        return await self._command(["EVAL", script, *params])

    async def _increment_field(self, hash_key: str, field: str, *, ttl_seconds: int) -> None:
        await self._post(
            "/pipeline",
            [
                ["HINCRBY", hash_key, field, "1"],
                ["EXPIRE", hash_key, str(ttl_seconds)],
            ],
        )

    async def _command(self, command: list[str]) -> Any:
        payload = await self._post("", command)
        if not isinstance(payload, dict):
            raise SharedCounterAppError(
                code="shared_counter_bad_response",
                message="Unexpected response from Redis REST endpoint",
                details={"backend": self.backend},
            )
        if payload.get("error"):
            raise SharedCounterAppError(
                code="shared_counter_command_failed",
                message=f"Redis REST error: {payload['error']}",
                details={"backend": self.backend},
            )
        return payload.get("result")

    async def _post(self, path: str, body: list[Any]) -> Any:
        try:
            response = await self._client.post(path, json=body)
        except httpx.HTTPError as exc:
            raise SharedCounterAppError(
                code="shared_counter_unavailable",
                message=f"Redis REST request failed: {type(exc).__name__}",
                details={"backend": self.backend},
            ) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise SharedCounterAppError(
                code="shared_counter_bad_response",
                message=f"Redis REST endpoint returned non-JSON (HTTP {response.status_code})",
                details={"backend": self.backend, "http_status": response.status_code},
            ) from exc

        # Command errors come back as HTTP 400 with an "error" field.
        if response.status_code >= 400 and not (isinstance(payload, dict) and payload.get("error")):
            raise SharedCounterAppError(
                code="shared_counter_unavailable",
                message=f"Redis REST endpoint returned HTTP {response.status_code}",
                details={"backend": self.backend, "http_status": response.status_code},
            )
        if isinstance(payload, list):
            errors = [item.get("error") for item in payload if isinstance(item, dict) and item.get("error")]
            if errors:
                raise SharedCounterAppError(
                    code="shared_counter_command_failed",
                    message=f"Redis REST error: {errors[0]}",
                    details={"backend": self.backend},
                )
        return payload

    async def _close_transport(self) -> None:
        await self._client.aclose()
        logger.debug("rate_limit.shared_closed", extra={"backend": self.backend})
