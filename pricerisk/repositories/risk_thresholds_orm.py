"""Per-portfolio risk threshold settings.

A portfolio without a stored row uses ``RiskThresholdSettings()`` defaults.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy.dialects.postgresql import insert

from pricerisk.core.logging import get_logger
from pricerisk.database.connection import get_session
from pricerisk.database.orm import RiskThresholdSettings as RiskThresholdSettingsRow
from pricerisk.domain.risk import RiskThresholdSettings


logger = get_logger("repositories.risk_thresholds_orm")


async def get_thresholds(portfolio_id: int) -> RiskThresholdSettings:
    async with get_session() as session:
        row = await session.get(RiskThresholdSettingsRow, portfolio_id)
        if row is None:
            return RiskThresholdSettings()
        return RiskThresholdSettings.model_validate(row)


async def upsert_thresholds(
    portfolio_id: int,
    thresholds: RiskThresholdSettings,
) -> RiskThresholdSettings:
    values = {
        key: Decimal(str(value))
        for key, value in thresholds.model_dump().items()
    }

    async with get_session() as session:
        stmt = insert(RiskThresholdSettingsRow).values(portfolio_id=portfolio_id, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["portfolio_id"],
            set_=values,
        )
        await session.execute(stmt)
        await session.commit()

    logger.info(f"Updated risk thresholds for portfolio {portfolio_id}")
    return thresholds
