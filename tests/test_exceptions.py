"""
Tests for the error taxonomy and the FastAPI exception handlers.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from pricerisk.core.exceptions import (
    AppException,
    ExcludedTickerError,
    InsufficientDataError,
    NotFoundError,
    ProviderBlockedError,
    register_exception_handlers,
)


RETRY_AT = datetime(2026, 3, 3, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/blocked")
    async def blocked():
        raise ProviderBlockedError("AAPL", "RATE_LIMITED", RETRY_AT)

    @app.get("/missing")
    async def missing():
        raise NotFoundError("Portfolio 9 not found")

    @app.get("/boom")
    async def boom():
        raise RuntimeError("secret internals")

    return TestClient(app, raise_server_exceptions=False)


class TestErrorPayloads:
    def test_insufficient_data_details(self):
        err = InsufficientDataError("Need more history", ticker="NEW", available=3, required=31)

        assert err.to_dict() == {
            "error": "INSUFFICIENT_DATA",
            "message": "Need more history",
            "status": 422,
            "details": {"ticker": "NEW", "available": 3, "required": 31},
        }

    def test_details_omitted_when_empty(self):
        assert "details" not in AppException().to_dict()

    def test_excluded_ticker(self):
        err = ExcludedTickerError("FIDXX", "prefix FID")
        assert err.error_code == "TICKER_EXCLUDED"
        assert err.details == {"ticker": "FIDXX", "reason": "prefix FID"}

    def test_blocked_error_carries_retry_after(self):
        err = ProviderBlockedError("AAPL", "NOT_FOUND", RETRY_AT)
        assert err.status_code == 503
        assert err.details["retry_after"] == RETRY_AT.isoformat()


class TestExceptionHandlers:
    def test_blocked_sets_retry_after_header(self, client):
        response = client.get("/blocked")

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "Tue, 03 Mar 2026 15:00:00 GMT"
        assert response.json()["error"] == "PROVIDER_BLOCKED"
        assert response.json()["details"]["ticker"] == "AAPL"

    def test_retry_after_normalized_to_utc(self):
        app = FastAPI()
        register_exception_handlers(app)
        local = RETRY_AT.astimezone(timezone(timedelta(hours=-5)))

        @app.get("/blocked")
        async def blocked():
            raise ProviderBlockedError("AAPL", "RATE_LIMITED", local)

        response = TestClient(app).get("/blocked")
        assert response.headers["Retry-After"] == "Tue, 03 Mar 2026 15:00:00 GMT"

    def test_not_found(self, client):
        response = client.get("/missing")

        assert response.status_code == 404
        assert response.json() == {
            "error": "NOT_FOUND",
            "message": "Portfolio 9 not found",
            "status": 404,
        }
        assert "Retry-After" not in response.headers

    def test_unhandled_error_hides_message(self, client):
        response = client.get("/boom")

        assert response.status_code == 500
        assert response.json()["error"] == "INTERNAL_ERROR"
        assert "secret" not in response.json()["message"]
