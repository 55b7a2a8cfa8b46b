"""Append-only risk snapshot store.

Snapshots are immutable: a second write for the same
(portfolio_id, ticker, snapshot_date, snapshot_type) is ignored.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert

from pricerisk.core.logging import get_logger
from pricerisk.database.connection import get_session
from pricerisk.database.orm import RiskSnapshot as RiskSnapshotRow
from pricerisk.domain.risk import RiskSnapshot, SnapshotType


logger = get_logger("repositories.risk_snapshots_orm")

_NUMERIC_FIELDS = (
    "volatility",
    "max_drawdown",
    "beta",
    "sharpe",
    "value_at_risk",
    "risk_score",
    "total_value",
    "market_value",
)


def _to_row(snapshot: RiskSnapshot) -> dict:
    data = snapshot.model_dump(mode="json")
    for key in _NUMERIC_FIELDS:
        if data[key] is not None:
            data[key] = Decimal(str(round(data[key], 6)))
    data["snapshot_date"] = snapshot.snapshot_date
    return data


async def insert_snapshots(snapshots: Sequence[RiskSnapshot]) -> int:
    """Insert snapshots, skipping keys that already exist.

    Returns:
        Number of rows actually inserted
    """
    if not snapshots:
        return 0

    async with get_session() as session:
        stmt = (
            insert(RiskSnapshotRow)
            .values([_to_row(s) for s in snapshots])
            .on_conflict_do_nothing(constraint="uq_risk_snapshots_key")
            .returning(RiskSnapshotRow.id)
        )
        result = await session.execute(stmt)
        inserted = len(result.scalars().all())
        await session.commit()

    logger.debug(f"Inserted {inserted}/{len(snapshots)} risk snapshots")
    return inserted


async def fetch_history(
    portfolio_id: int,
    start_date: date,
    end_date: date,
    ticker: str | None = None,
) -> list[RiskSnapshot]:
    """Snapshots for a portfolio (ticker=None) or one position, ascending by date."""
    query = select(RiskSnapshotRow).where(
        RiskSnapshotRow.portfolio_id == portfolio_id,
        RiskSnapshotRow.snapshot_date >= start_date,
        RiskSnapshotRow.snapshot_date <= end_date,
    )
    if ticker is None:
        query = query.where(
            RiskSnapshotRow.snapshot_type == SnapshotType.PORTFOLIO.value,
        )
    else:
        query = query.where(
            RiskSnapshotRow.snapshot_type == SnapshotType.POSITION.value,
            RiskSnapshotRow.ticker == ticker.upper(),
        )

    async with get_session() as session:
        result = await session.execute(query.order_by(RiskSnapshotRow.snapshot_date.asc()))
        return [RiskSnapshot.model_validate(row) for row in result.scalars().all()]
