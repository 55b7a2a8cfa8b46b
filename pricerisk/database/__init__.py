"""Database module: SQLAlchemy async engine, sessions and ORM models."""

from .connection import (
    close_database,
    close_sqlalchemy_engine,
    get_async_database_url,
    get_engine,
    get_session,
    init_database,
    init_sqlalchemy_engine,
)
from .orm import (
    Base,
    Portfolio,
    PortfolioHolding,
    PriceHistory,
    RiskSnapshot,
    RiskThresholdSettings,
    TickerFetchFailure,
)


__all__ = [
    "init_sqlalchemy_engine",
    "close_sqlalchemy_engine",
    "get_async_database_url",
    "get_session",
    "get_engine",
    "init_database",
    "close_database",
    "Base",
    "Portfolio",
    "PortfolioHolding",
    "PriceHistory",
    "RiskSnapshot",
    "RiskThresholdSettings",
    "TickerFetchFailure",
]
