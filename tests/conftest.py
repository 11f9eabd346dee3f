"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before any import that builds settings, so the
suite never picks up a developer's .env file or shared store credentials.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ["TESTING"] = "true"

os.environ.setdefault("RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("RATE_LIMIT_SHARED_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.pop("UPSTASH_REDIS_REST_URL", None)
os.environ.pop("UPSTASH_REDIS_REST_TOKEN", None)

import pytest


class FakeClock:
    """Deterministic clock used to test window expiry."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
