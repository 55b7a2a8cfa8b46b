"""Error taxonomy for the price cache and risk pipeline, plus HTTP handlers.

Every error a pipeline caller can observe derives from ``AppException``
and renders to a problem+json style dict via ``to_dict()``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class AppException(Exception):
    """Base application exception with structured error response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.status_code = status_code or self.status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to RFC 7807 problem+json style response."""
        return {
            "error": self.error_code,
            "message": self.message,
            "status": self.status_code,
            **({"details": self.details} if self.details else {}),
        }


class NotFoundError(AppException):
    """Resource not found."""

    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"
    message = "Resource not found"


class ValidationError(AppException):
    """Validation failed."""

    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT
    error_code = "VALIDATION_ERROR"
    message = "Validation failed"


class InsufficientDataError(AppException):
    """Not enough price history to compute the requested metrics.

    Recoverable by the caller (longer window, or wait for more history);
    never retried by the engine itself.
    """

    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT
    error_code = "INSUFFICIENT_DATA"
    message = "Insufficient price data"

    def __init__(
        self,
        message: str | None = None,
        *,
        ticker: str | None = None,
        available: int | None = None,
        required: int | None = None,
    ):
        details: dict[str, Any] = {}
        if ticker is not None:
            details["ticker"] = ticker
        if available is not None:
            details["available"] = available
        if required is not None:
            details["required"] = required
        self.ticker = ticker
        self.available = available
        self.required = required
        super().__init__(message=message, details=details)


class ProviderBlockedError(AppException):
    """Outbound fetch refused or failed; carries the negative-cache expiry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "PROVIDER_BLOCKED"
    message = "Price provider unavailable for this ticker"

    def __init__(
        self,
        ticker: str,
        failure_type: str,
        retry_after: datetime,
        message: str | None = None,
    ):
        self.ticker = ticker
        self.failure_type = failure_type
        self.retry_after = retry_after
        super().__init__(
            message=message
            or f"Fetch for {ticker} blocked ({failure_type}) until {retry_after.isoformat()}",
            details={
                "ticker": ticker,
                "failure_type": failure_type,
                "retry_after": retry_after.isoformat(),
            },
        )


class ExcludedTickerError(AppException):
    """Ticker has no provider coverage and is never fetched."""

    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT
    error_code = "TICKER_EXCLUDED"
    message = "Ticker is excluded from price acquisition"

    def __init__(self, ticker: str, reason: str):
        self.ticker = ticker
        self.reason = reason
        super().__init__(
            message=f"Ticker {ticker!r} is excluded from price acquisition: {reason}",
            details={"ticker": ticker, "reason": reason},
        )


class CacheError(AppException):
    """Cache operation failed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "CACHE_ERROR"
    message = "Cache operation failed"


class JobError(AppException):
    """Job execution failed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "JOB_ERROR"
    message = "Job execution failed"


def register_exception_handlers(app: FastAPI) -> None:
    """Register centralized exception handlers on an embedding FastAPI app."""

    @app.exception_handler(AppException)
    async def app_exception_handler(
        request: Request, exc: AppException
    ) -> JSONResponse:
        headers = {"X-Request-ID": getattr(request.state, "request_id", "unknown")}
        if isinstance(exc, ProviderBlockedError):
            headers["Retry-After"] = exc.retry_after.astimezone(timezone.utc).strftime("%a, %d %b %Y %H:%M:%S GMT")
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        import logging

        logger = logging.getLogger("pricerisk.error")
        logger.exception(
            "Unhandled exception",
            extra={
                "request_id": getattr(request.state, "request_id", "unknown"),
                "path": request.url.path,
                "method": request.method,
            },
        )

        from .config import settings

        if settings.debug:
            message = str(exc)
        else:
            message = "An unexpected error occurred"

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "INTERNAL_ERROR",
                "message": message,
                "status": 500,
            },
            headers={"X-Request-ID": getattr(request.state, "request_id", "unknown")},
        )
