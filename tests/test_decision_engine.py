"""Unit tests for the decision engine merge logic."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from rate_guard.adapters.rate_limit.base import (
    AbstractSharedCounter,
    CountingMode,
    SharedCounterResult,
)
from rate_guard.adapters.rate_limit.in_memory import InMemoryWindowCounter
from rate_guard.core.errors import SharedCounterAppError
from rate_guard.services.decision_engine import DecisionEngine, Identity


def _address(value: str = "203.0.113.4", *, limit: int = 5, window: float = 60) -> Identity:
    return Identity.for_value("address", value, limit=limit, window_seconds=window)


def _session(value: str = "s-1", *, limit: int = 5, window: float = 60) -> Identity:
    return Identity.for_value("session", value, limit=limit, window_seconds=window)


def _shared_returning(*results: SharedCounterResult) -> MagicMock:
    shared = MagicMock(spec=AbstractSharedCounter)
    shared.limit = AsyncMock(side_effect=list(results))
    return shared


class TestLocalOnly:
    """Decisions without a shared counter."""

    @pytest.mark.asyncio
    async def test_admits_until_limit_then_rejects(self, clock) -> None:
        engine = DecisionEngine(InMemoryWindowCounter(capacity=10, clock=clock), clock=clock)

        for expected_remaining in (2, 1, 0):
            decision = await engine.decide([_address(limit=3)])
            assert decision.admitted is True
            assert decision.remaining == expected_remaining

        rejected = await engine.decide([_address(limit=3)])
        assert rejected.admitted is False
        assert rejected.remaining == 0
        assert rejected.failed_dimension == "address"
        assert rejected.source == "local"
        assert rejected.limit == 3
        assert rejected.reset_at == 1060

    def test_identity_key_is_namespaced_by_dimension(self) -> None:
        identity = _address("10.0.0.1")

        assert identity.key == "address:10.0.0.1"

    @pytest.mark.asyncio
    async def test_dimensions_are_counted_independently(self, clock) -> None:
        local = InMemoryWindowCounter(capacity=10, clock=clock)
        engine = DecisionEngine(local, clock=clock)

        # Exhaust the session dimension from several addresses
        for idx in range(2):
            assert (await engine.decide([_address(f"10.0.0.{idx}"), _session(limit=2)])).admitted

        rejected = await engine.decide([_address("10.0.0.9"), _session(limit=2)])
        assert rejected.admitted is False
        assert rejected.failed_dimension == "session"

        # The address counter of a fresh session is unaffected
        ok = await engine.decide([_address("10.0.0.9"), _session("s-2", limit=2)])
        assert ok.admitted is True

    @pytest.mark.asyncio
    async def test_address_rejection_is_reported_first(self, clock) -> None:
        engine = DecisionEngine(InMemoryWindowCounter(capacity=10, clock=clock), clock=clock)
        identities = [_address(limit=1), _session(limit=1)]

        await engine.decide(identities)
        rejected = await engine.decide(identities)

        assert rejected.failed_dimension == "address"

    @pytest.mark.asyncio
    async def test_reports_tightest_dimension_when_admitted(self, clock) -> None:
        engine = DecisionEngine(InMemoryWindowCounter(capacity=10, clock=clock), clock=clock)

        decision = await engine.decide([_address(limit=10), _session(limit=3, window=120)])

        assert decision.admitted is True
        assert decision.limit == 3
        assert decision.remaining == 2
        assert decision.reset_at == 1120

    @pytest.mark.asyncio
    async def test_requires_identities(self) -> None:
        engine = DecisionEngine(InMemoryWindowCounter(capacity=10))

        with pytest.raises(ValueError):
            await engine.decide([])


class TestSharedMerge:
    """Decisions merging local and shared verdicts."""

    @pytest.mark.asyncio
    async def test_local_rejection_skips_shared_store(self, clock) -> None:
        shared = _shared_returning(
            SharedCounterResult(success=True, limit=1, remaining=0, reset_at=1060),
        )
        engine = DecisionEngine(InMemoryWindowCounter(capacity=10, clock=clock), shared, clock=clock)

        await engine.decide([_address(limit=1)])
        rejected = await engine.decide([_address(limit=1)])

        assert rejected.admitted is False
        assert rejected.source == "local"
        assert shared.limit.await_count == 1

    @pytest.mark.asyncio
    async def test_merge_takes_min_remaining_and_max_reset(self, clock) -> None:
        shared = _shared_returning(
            SharedCounterResult(success=True, limit=10, remaining=4, reset_at=1080),
        )
        engine = DecisionEngine(InMemoryWindowCounter(capacity=10, clock=clock), shared, clock=clock)

        decision = await engine.decide([_address(limit=10)])

        assert decision.admitted is True
        assert decision.remaining == 4
        assert decision.reset_at == 1080

    @pytest.mark.asyncio
    async def test_shared_rejection_wins_over_local_admission(self, clock) -> None:
        shared = _shared_returning(
            SharedCounterResult(success=False, limit=10, remaining=0, reset_at=1030),
        )
        engine = DecisionEngine(InMemoryWindowCounter(capacity=10, clock=clock), shared, clock=clock)

        decision = await engine.decide([_address(limit=10)])

        assert decision.admitted is False
        assert decision.remaining == 0
        assert decision.source == "shared"
        assert decision.failed_dimension == "address"
        assert decision.reset_at == 1060

    @pytest.mark.asyncio
    async def test_shared_rejection_is_written_back_locally(self, clock) -> None:
        local = InMemoryWindowCounter(capacity=10, clock=clock)
        shared = _shared_returning(
            SharedCounterResult(success=False, limit=10, remaining=0, reset_at=1060),
        )
        engine = DecisionEngine(local, shared, clock=clock)

        await engine.decide([_address(limit=10)])

        # Subsequent local-only check now rejects without asking the store
        assert local.consume("address:203.0.113.4", limit=10, window_seconds=60).allowed is False

    @pytest.mark.asyncio
    async def test_shared_store_called_per_dimension_with_mode(self, clock) -> None:
        shared = _shared_returning(
            SharedCounterResult(success=True, limit=5, remaining=3, reset_at=1060),
            SharedCounterResult(success=True, limit=5, remaining=1, reset_at=1060),
        )
        engine = DecisionEngine(
            InMemoryWindowCounter(capacity=10, clock=clock),
            shared,
            mode=CountingMode.SLIDING,
            clock=clock,
        )

        decision = await engine.decide([_address(), _session()])

        assert shared.limit.await_count == 2
        keys = [c.args[0] for c in shared.limit.await_args_list]
        assert keys == ["address:203.0.113.4", "session:s-1"]
        assert all(c.kwargs["mode"] is CountingMode.SLIDING for c in shared.limit.await_args_list)
        assert decision.remaining == 1

    @pytest.mark.asyncio
    async def test_pending_tasks_are_surfaced(self, clock) -> None:
        async def _noop() -> None:
            return None

        task = asyncio.create_task(_noop())
        shared = _shared_returning(
            SharedCounterResult(success=True, limit=5, remaining=3, reset_at=1060, pending=task),
        )
        engine = DecisionEngine(InMemoryWindowCounter(capacity=10, clock=clock), shared, clock=clock)

        decision = await engine.decide([_address()])
        await asyncio.gather(*decision.pending)

        assert decision.pending == (task,)


class TestSharedFailures:
    """Fail-open / fail-closed handling of shared store failures."""

    @pytest.mark.asyncio
    async def test_fail_open_uses_local_verdict(self, clock) -> None:
        shared = MagicMock(spec=AbstractSharedCounter)
        shared.limit = AsyncMock(
            side_effect=SharedCounterAppError(code="shared_counter_unavailable", message="down")
        )
        engine = DecisionEngine(
            InMemoryWindowCounter(capacity=10, clock=clock), shared, fail_mode="open", clock=clock
        )

        decision = await engine.decide([_address(limit=5)])

        assert decision.admitted is True
        assert decision.remaining == 4
        assert decision.source is None

    @pytest.mark.asyncio
    async def test_fail_closed_rejects(self, clock) -> None:
        shared = MagicMock(spec=AbstractSharedCounter)
        shared.limit = AsyncMock(
            side_effect=SharedCounterAppError(code="shared_counter_unavailable", message="down")
        )
        engine = DecisionEngine(
            InMemoryWindowCounter(capacity=10, clock=clock), shared, fail_mode="closed", clock=clock
        )

        decision = await engine.decide([_address(limit=5)])

        assert decision.admitted is False
        assert decision.remaining == 0
        assert decision.source == "shared"
        assert decision.failed_dimension == "address"

    @pytest.mark.asyncio
    async def test_timeout_is_treated_as_unavailable(self, clock) -> None:
        async def _slow(*args, **kwargs) -> SharedCounterResult:
            await asyncio.sleep(1)
            return SharedCounterResult(success=False, limit=5, remaining=0, reset_at=1060)

        shared = MagicMock(spec=AbstractSharedCounter)
        shared.limit = _slow
        engine = DecisionEngine(
            InMemoryWindowCounter(capacity=10, clock=clock),
            shared,
            shared_timeout_seconds=0.01,
            clock=clock,
        )

        decision = await engine.decide([_address(limit=5)])

        assert decision.admitted is True

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self, clock) -> None:
        shared = MagicMock(spec=AbstractSharedCounter)
        shared.limit = AsyncMock(side_effect=RuntimeError("bug"))
        engine = DecisionEngine(InMemoryWindowCounter(capacity=10, clock=clock), shared, clock=clock)

        with pytest.raises(RuntimeError):
            await engine.decide([_address()])
