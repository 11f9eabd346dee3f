"""Rate limiter facade owning the active configuration.

``RateLimiter`` is constructed by the host (one per protected surface) and
passed to whatever needs it; nothing here is process-global. The active
configuration, local counter, shared client and engine form one immutable
snapshot. Applying a different configuration builds a new snapshot and swaps
it in a single assignment, so a request always runs against one coherent set
of counters.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from rate_guard.adapters.rate_limit.base import AbstractSharedCounter, CountingMode
from rate_guard.adapters.rate_limit.factory import create_shared_counter
from rate_guard.adapters.rate_limit.in_memory import InMemoryWindowCounter
from rate_guard.core.config import LimiterConfig
from rate_guard.core.logging import hash_key_for_log
from rate_guard.services.decision_engine import (
    DIMENSION_ADDRESS,
    DIMENSION_SESSION,
    DecisionEngine,
    DecisionResult,
    Identity,
)
from rate_guard.services.identity import IdentityResolver, RequestMetadata, ResolvedIdentity

logger = logging.getLogger(__name__)

SharedCounterFactory = Callable[[LimiterConfig], AbstractSharedCounter | None]


@dataclass(frozen=True)
class RateLimitOutcome:
    """Decision for one request plus what the host must persist.

    Attributes:
        decision: Merged admit/deny decision.
        identifier: Address value the request was counted under.
        minted_session_key: New session key to store on the client, if any.
    """

    decision: DecisionResult
    identifier: str
    minted_session_key: str | None = None

    @property
    def admitted(self) -> bool:
        return self.decision.admitted


@dataclass(frozen=True)
class _LimiterState:
    config: LimiterConfig
    local: InMemoryWindowCounter
    shared: AbstractSharedCounter | None
    engine: DecisionEngine
    resolver: IdentityResolver


class RateLimiter:
    """Configuration holder and entry point for rate limit checks."""

    def __init__(
        self,
        config: LimiterConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
        shared_counter_factory: SharedCounterFactory = create_shared_counter,
        session_factory: Callable[[], str] | None = None,
    ) -> None:
        """Build the limiter and its first snapshot.

        Args:
            config: Initial configuration (defaults to ``LimiterConfig()``).
            clock: Time source shared by the local counter and the engine.
            shared_counter_factory: Builds the shared client for a config.
            session_factory: Generates new session keys.
        """
        self._clock = clock
        self._shared_counter_factory = shared_counter_factory
        self._session_factory = session_factory
        self._swap_lock = threading.Lock()
        self._retired: list[AbstractSharedCounter] = []
        self._state = self._build_state(config or LimiterConfig())

    @property
    def config(self) -> LimiterConfig:
        return self._state.config

    @property
    def local(self) -> InMemoryWindowCounter:
        return self._state.local

    @property
    def shared(self) -> AbstractSharedCounter | None:
        return self._state.shared

    def configure(self, config: LimiterConfig) -> bool:
        """Apply ``config`` if it differs from the active one.

        A changed configuration always rebuilds every counter; counts taken
        under the previous configuration are discarded. The retired shared
        client is closed by ``reconfigure`` or ``aclose``.

        Returns:
            True when a new snapshot was installed.
        """
        with self._swap_lock:
            previous = self._state
            if config == previous.config:
                return False

            self._state = self._build_state(config)
            if previous.shared is not None:
                self._retired.append(previous.shared)

        logger.info(
            "rate_limit.reconfigured",
            extra={
                "limit": config.limit,
                "window_s": config.window_seconds,
                "capacity": config.capacity,
                "session_enabled": config.session_enabled,
                "shared_enabled": self._state.shared is not None,
                "sliding": config.sliding_mode,
                "fail_mode": config.fail_mode,
            },
        )
        return True

    async def reconfigure(self, config: LimiterConfig) -> bool:
        """Apply ``config`` and close shared clients it retired."""
        changed = self.configure(config)
        await self._close_retired()
        return changed

    async def check(
        self,
        metadata: RequestMetadata | None,
        *,
        identifier: str | None = None,
    ) -> RateLimitOutcome:
        """Count one request and decide whether it is admitted.

        Args:
            metadata: Request attributes used to resolve identities.
            identifier: Explicit identifier overriding the network address.

        Returns:
            RateLimitOutcome with the decision and any minted session key.

        Raises:
            ValidationAppError: If neither metadata nor identifier is given.
        """
        state = self._state
        resolved = state.resolver.resolve(metadata, identifier=identifier)
        identities = self._identities_for(state.config, resolved)

        decision = await state.engine.decide(identities)
        outcome = RateLimitOutcome(
            decision=decision,
            identifier=resolved.address,
            minted_session_key=resolved.minted_session_key,
        )

        key_type = "identifier" if identifier else "ip"
        log_fields = {
            "key_type": key_type,
            "key_hash": hash_key_for_log(identities[0].key),
            "limit": decision.limit,
            "remaining": decision.remaining,
            "reset_at": decision.reset_at,
        }
        if decision.admitted:
            logger.info("rate_limit.allowed", extra=log_fields)
        else:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    **log_fields,
                    "dimension": decision.failed_dimension,
                    "source": decision.source,
                    "retry_after_s": decision.retry_after_seconds(self._clock()),
                },
            )
        return outcome

    async def aclose(self) -> None:
        """Close the active and retired shared clients."""
        with self._swap_lock:
            shared = self._state.shared
            if shared is not None:
                self._retired.append(shared)
        await self._close_retired()

    async def _close_retired(self) -> None:
        with self._swap_lock:
            retired, self._retired = self._retired, []
        for client in retired:
            await client.aclose()

    def _build_state(self, config: LimiterConfig) -> _LimiterState:
        local = InMemoryWindowCounter(capacity=config.capacity, clock=self._clock)
        shared = self._shared_counter_factory(config)
        engine = DecisionEngine(
            local,
            shared,
            mode=CountingMode.SLIDING if config.sliding_mode else CountingMode.FIXED,
            fail_mode=config.fail_mode,
            shared_timeout_seconds=config.shared_timeout_seconds,
            clock=self._clock,
        )
        if self._session_factory is not None:
            resolver = IdentityResolver(
                session_enabled=config.session_enabled,
                session_factory=self._session_factory,
            )
        else:
            resolver = IdentityResolver(session_enabled=config.session_enabled)
        return _LimiterState(
            config=config,
            local=local,
            shared=shared,
            engine=engine,
            resolver=resolver,
        )

    @staticmethod
    def _identities_for(config: LimiterConfig, resolved: ResolvedIdentity) -> list[Identity]:
        identities = [
            Identity.for_value(
                DIMENSION_ADDRESS,
                resolved.address,
                limit=config.limit,
                window_seconds=config.window_seconds,
            )
        ]
        if config.session_enabled and resolved.session_key:
            identities.append(
                Identity.for_value(
                    DIMENSION_SESSION,
                    resolved.session_key,
                    limit=config.effective_session_limit,
                    window_seconds=config.effective_session_window_seconds,
                )
            )
        return identities
