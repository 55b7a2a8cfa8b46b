"""Portfolio and holdings repository using SQLAlchemy ORM."""

from __future__ import annotations

from sqlalchemy import select

from pricerisk.core.logging import get_logger
from pricerisk.database.connection import get_session
from pricerisk.database.orm import Portfolio, PortfolioHolding
from pricerisk.domain.price import Holding


logger = get_logger("repositories.portfolios_orm")


async def portfolio_exists(portfolio_id: int) -> bool:
    async with get_session() as session:
        return await session.get(Portfolio, portfolio_id) is not None


async def list_active_portfolio_ids() -> list[int]:
    """Ids of active portfolios, oldest first."""
    async with get_session() as session:
        result = await session.execute(
            select(Portfolio.id)
            .where(Portfolio.is_active.is_(True))
            .order_by(Portfolio.id.asc())
        )
        return list(result.scalars().all())


async def get_holdings(portfolio_id: int) -> list[Holding]:
    """Holdings with a positive quantity."""
    async with get_session() as session:
        result = await session.execute(
            select(PortfolioHolding)
            .where(
                PortfolioHolding.portfolio_id == portfolio_id,
                PortfolioHolding.quantity > 0,
            )
            .order_by(PortfolioHolding.ticker.asc())
        )
        return [Holding.model_validate(row) for row in result.scalars().all()]
