"""Tests for global exception handlers.

Validates that every error type maps to a consistent status code and body,
and that rejections render the rate limit payload.
"""

import asyncio
import json
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from rate_guard.core.errors import (
    AppError,
    RateLimitExceededError,
    SharedCounterAppError,
    ValidationAppError,
)
from rate_guard.core.exception_handlers import general_exception_handler, setup_exception_handlers
from rate_guard.services.decision_engine import DecisionResult


@pytest.fixture
def app_with_handlers() -> FastAPI:
    """Create FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    """Create test client with handlers enabled."""
    return TestClient(app_with_handlers)


class TestRateLimitExceededHandler:
    """Test rendering of rejected requests."""

    def test_returns_429_with_headers(self, client: TestClient, app_with_handlers: FastAPI):
        decision = DecisionResult(
            admitted=False,
            limit=10,
            remaining=0,
            reset_at=4_102_444_800,
            failed_dimension="address",
            source="local",
        )

        @app_with_handlers.get("/limited")
        async def limited():
            raise RateLimitExceededError(decision)

        response = client.get("/limited")

        assert response.status_code == 429
        assert response.json() == {"message": "Too Many Requests"}
        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert response.headers["X-RateLimit-Reset"] == "4102444800"
        assert int(response.headers["Retry-After"]) > 0

    def test_persists_minted_session_key(self, client: TestClient, app_with_handlers: FastAPI):
        decision = DecisionResult(admitted=False, limit=1, remaining=0, reset_at=0, failed_dimension="session")

        @app_with_handlers.get("/limited-session")
        async def limited():
            raise RateLimitExceededError(decision, minted_session_key="fresh")

        response = client.get("/limited-session")

        assert response.status_code == 429
        assert response.cookies.get("rl_session") == "fresh"

    def test_error_carries_dimension(self):
        decision = DecisionResult(admitted=False, limit=1, remaining=0, reset_at=0, failed_dimension="session")

        exc = RateLimitExceededError(decision)

        assert exc.code == "rate_limit_exceeded"
        assert exc.details == {"dimension": "session"}
        assert str(exc) == "Too Many Requests"


class TestAppErrorHandler:
    """Test handler for AppError and subclasses."""

    def test_validation_error_returns_400(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-validation")
        async def test_endpoint():
            raise ValidationAppError(
                code="rate_limit_identity_missing",
                message="Either request metadata or an identifier is required",
            )

        response = client.get("/test-validation")

        assert response.status_code == 400
        data = response.json()
        assert data["error"]["code"] == "rate_limit_identity_missing"
        assert "request_id" in data["error"]
        assert "details" not in data["error"]

    def test_shared_counter_error_returns_503(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-shared")
        async def test_endpoint():
            raise SharedCounterAppError(
                code="shared_counter_unavailable",
                message="Redis error: down",
                details={"backend": "redis"},
            )

        response = client.get("/test-shared")

        assert response.status_code == 503
        assert response.json()["error"]["details"] == {"backend": "redis"}

    def test_base_app_error_defaults_to_400(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-base")
        async def test_endpoint():
            raise AppError(code="generic", message="Generic failure")

        assert client.get("/test-base").status_code == 400


class TestGeneralExceptionHandler:
    """Test the safety net for unexpected errors."""

    def test_returns_generic_500_without_leaking(self):
        request = MagicMock()
        request.url.path = "/boom"
        request.method = "GET"

        response = asyncio.run(general_exception_handler(request, RuntimeError("secret detail")))

        assert response.status_code == 500
        body = json.loads(response.body)
        assert body["error"]["code"] == "internal_server_error"
        assert "secret detail" not in response.body.decode()
