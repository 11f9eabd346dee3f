"""Rate limiting adapters.

This package holds the in-process window counter and the shared counter
clients (Redis, Redis REST) behind a small abstraction layer so the decision
engine never depends on a concrete store.
"""

from rate_guard.adapters.rate_limit.base import (
    AbstractSharedCounter,
    AbstractWindowCounter,
    CountingMode,
    SharedCounterResult,
    WindowResult,
)
from rate_guard.adapters.rate_limit.factory import create_shared_counter
from rate_guard.adapters.rate_limit.in_memory import InMemoryWindowCounter

__all__ = [
    "AbstractSharedCounter",
    "AbstractWindowCounter",
    "CountingMode",
    "InMemoryWindowCounter",
    "SharedCounterResult",
    "WindowResult",
    "create_shared_counter",
]
