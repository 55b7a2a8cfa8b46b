"""Price cache domain models.

Values passed between the provider layer, the stores and the acquisition
service. Rows from the ORM convert via ``model_validate(row)``.
"""

from __future__ import annotations

from datetime import date as DateType
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FailureType(str, Enum):
    """Classification of a failed provider fetch; drives the retry TTL."""

    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    API_ERROR = "api_error"


class PricePoint(BaseModel):
    """One daily close for one ticker."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    ticker: str = Field(..., description="Ticker symbol")
    date: DateType = Field(..., description="Trading date")
    close_price: float = Field(..., gt=0, description="Split-adjusted close")
    fetched_at: datetime | None = Field(None, description="When the point was last written")

    @field_validator("ticker", mode="before")
    @classmethod
    def normalize_ticker(cls, v: str) -> str:
        return v.upper().strip()


class FetchFailure(BaseModel):
    """Negative cache record for a ticker."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    ticker: str
    failure_type: FailureType
    last_attempt_at: datetime
    retry_after: datetime
    consecutive_failures: int = Field(default=1, ge=1)
    error_message: str | None = None

    def is_active(self, now: datetime) -> bool:
        """True while outbound fetches for the ticker are blocked."""
        return now < self.retry_after


class Holding(BaseModel):
    """A portfolio position as stored (quantity based)."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    ticker: str
    quantity: float = Field(..., ge=0)
    avg_cost: float | None = Field(None, ge=0)
    name: str | None = None

    @field_validator("ticker", mode="before")
    @classmethod
    def normalize_ticker(cls, v: str) -> str:
        return v.upper().strip()
