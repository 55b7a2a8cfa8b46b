"""SQLAlchemy ORM models for pricerisk.

Tables:
- price_history: positive price cache, one close per (ticker, date)
- ticker_fetch_failures: negative cache, one row per ticker
- portfolios / portfolio_holdings: the positions the pipeline evaluates
- risk_threshold_settings: per-portfolio warning/critical thresholds
- risk_snapshots: append-only risk history

Usage:
    from pricerisk.database.orm import TickerFetchFailure
    from pricerisk.database.connection import get_session

    async with get_session() as session:
        row = await session.get(TickerFetchFailure, "BADTICK")
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


# Naming convention for constraints and indexes (deterministic names for Alembic)
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Base class for all ORM models with naming convention."""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# =============================================================================
# PRICE CACHE
# =============================================================================


class PriceHistory(Base):
    """Daily close cache filled from the external provider."""
    __tablename__ = "price_history"

    id: Mapped[int] = mapped_column(primary_key=True)
    ticker: Mapped[str] = mapped_column(String(20), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    close: Mapped[Decimal] = mapped_column(Numeric(16, 6), nullable=False)
    # Refreshed on every upsert; freshness is measured from here, not from `date`
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("ticker", "date", name="uq_price_history"),
        Index("idx_price_history_ticker_date", "ticker", "date"),
    )


class TickerFetchFailure(Base):
    """Negative cache entry: a ticker whose last provider fetch failed."""
    __tablename__ = "ticker_fetch_failures"

    ticker: Mapped[str] = mapped_column(String(20), primary_key=True)
    failure_type: Mapped[str] = mapped_column(String(20), nullable=False)
    last_attempt_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    retry_after: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    consecutive_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "failure_type IN ('not_found', 'rate_limited', 'api_error')",
            name="failure_type",
        ),
        Index("idx_ticker_fetch_failures_retry_after", "retry_after"),
    )


# =============================================================================
# PORTFOLIOS
# =============================================================================


class Portfolio(Base):
    """Investment portfolio whose holdings feed the risk pipeline."""
    __tablename__ = "portfolios"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    base_currency: Mapped[str] = mapped_column(String(10), default="USD")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    holdings: Mapped[list[PortfolioHolding]] = relationship(back_populates="portfolio")

    __table_args__ = (
        Index("idx_portfolios_active", "is_active", postgresql_where=text("is_active = TRUE")),
    )


class PortfolioHolding(Base):
    """Current position in a portfolio."""
    __tablename__ = "portfolio_holdings"

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False)
    ticker: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255))
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    avg_cost: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    portfolio: Mapped[Portfolio] = relationship(back_populates="holdings")

    __table_args__ = (
        UniqueConstraint("portfolio_id", "ticker", name="uq_portfolio_holdings_ticker"),
        Index("idx_portfolio_holdings_portfolio", "portfolio_id"),
    )


# =============================================================================
# RISK
# =============================================================================


class RiskThresholdSettings(Base):
    """Warning/critical thresholds per portfolio. Missing row means defaults."""
    __tablename__ = "risk_threshold_settings"

    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id", ondelete="CASCADE"), primary_key=True)
    volatility_warning: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)
    volatility_critical: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)
    drawdown_warning: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)
    drawdown_critical: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)
    beta_warning: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)
    beta_critical: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)
    risk_score_warning: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)
    risk_score_critical: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)
    var_warning: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)
    var_critical: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class RiskSnapshot(Base):
    """Point-in-time risk copy. Rows are inserted once and never updated."""
    __tablename__ = "risk_snapshots"

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False)
    ticker: Mapped[str | None] = mapped_column(String(20))  # NULL for portfolio rows
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)
    snapshot_type: Mapped[str] = mapped_column(String(20), nullable=False)
    volatility: Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False)
    max_drawdown: Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False)
    beta: Mapped[Decimal | None] = mapped_column(Numeric(12, 6))
    sharpe: Mapped[Decimal | None] = mapped_column(Numeric(12, 6))
    value_at_risk: Mapped[Decimal | None] = mapped_column(Numeric(12, 6))
    risk_score: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)
    risk_level: Mapped[str] = mapped_column(String(20), nullable=False)
    total_value: Mapped[Decimal | None] = mapped_column(Numeric(20, 4))
    market_value: Mapped[Decimal | None] = mapped_column(Numeric(20, 4))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "portfolio_id",
            "ticker",
            "snapshot_date",
            "snapshot_type",
            name="uq_risk_snapshots_key",
            postgresql_nulls_not_distinct=True,
        ),
        CheckConstraint(
            "snapshot_type IN ('portfolio', 'position')",
            name="snapshot_type",
        ),
        Index("idx_risk_snapshots_portfolio_date", "portfolio_id", "snapshot_date"),
    )
