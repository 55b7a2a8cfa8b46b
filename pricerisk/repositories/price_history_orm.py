"""Price Store: daily closes keyed by (ticker, date).

Writes are idempotent upserts; replaying a provider response is harmless.

Usage:
    from pricerisk.repositories import price_history_orm as price_store

    await price_store.upsert_points("AAPL", points)
    latest = await price_store.fetch_latest("AAPL")
    window = await price_store.fetch_window("AAPL", 90)
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert

from pricerisk.core.logging import get_logger
from pricerisk.database.connection import get_session
from pricerisk.database.orm import PriceHistory
from pricerisk.domain.price import PricePoint


logger = get_logger("repositories.price_history_orm")

# asyncpg caps bind parameters per statement at 32767
UPSERT_CHUNK_SIZE = 1000


def _to_point(row: PriceHistory) -> PricePoint:
    return PricePoint(
        ticker=row.ticker,
        date=row.date,
        close_price=float(row.close),
        fetched_at=row.fetched_at,
    )


async def upsert_points(ticker: str, points: Sequence[PricePoint]) -> int:
    """Insert or update closes for a ticker.

    Every written row gets ``fetched_at = now()``, which is what the
    freshness check reads.

    Returns:
        Number of rows written
    """
    ticker = ticker.upper()
    rows = [
        {
            "ticker": ticker,
            "date": p.date,
            "close": Decimal(str(round(p.close_price, 6))),
        }
        for p in points
    ]
    if not rows:
        return 0

    async with get_session() as session:
        for start in range(0, len(rows), UPSERT_CHUNK_SIZE):
            chunk = rows[start:start + UPSERT_CHUNK_SIZE]
            stmt = insert(PriceHistory).values(chunk)
            stmt = stmt.on_conflict_do_update(
                index_elements=["ticker", "date"],
                set_={
                    "close": stmt.excluded.close,
                    "fetched_at": func.now(),
                },
            )
            await session.execute(stmt)
        await session.commit()

    logger.debug(f"Upserted {len(rows)} price points for {ticker}")
    return len(rows)


async def fetch_latest(ticker: str) -> PricePoint | None:
    """Most recent point for a ticker, or None if never cached."""
    async with get_session() as session:
        result = await session.execute(
            select(PriceHistory)
            .where(PriceHistory.ticker == ticker.upper())
            .order_by(PriceHistory.date.desc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return _to_point(row) if row is not None else None


async def fetch_window(
    ticker: str,
    n_days: int,
    end_date: date | None = None,
) -> list[PricePoint]:
    """Points within the last ``n_days`` calendar days, ascending by date."""
    end = end_date or date.today()
    start = end - timedelta(days=n_days)

    async with get_session() as session:
        result = await session.execute(
            select(PriceHistory)
            .where(
                PriceHistory.ticker == ticker.upper(),
                PriceHistory.date >= start,
                PriceHistory.date <= end,
            )
            .order_by(PriceHistory.date.asc())
        )
        return [_to_point(row) for row in result.scalars().all()]


async def fetch_windows(
    tickers: Sequence[str],
    n_days: int,
    end_date: date | None = None,
) -> dict[str, list[PricePoint]]:
    """Batch variant of ``fetch_window`` in one query."""
    normalized = sorted({t.upper() for t in tickers})
    if not normalized:
        return {}

    end = end_date or date.today()
    start = end - timedelta(days=n_days)

    async with get_session() as session:
        result = await session.execute(
            select(PriceHistory)
            .where(
                PriceHistory.ticker.in_(normalized),
                PriceHistory.date >= start,
                PriceHistory.date <= end,
            )
            .order_by(PriceHistory.ticker, PriceHistory.date.asc())
        )
        windows: dict[str, list[PricePoint]] = {t: [] for t in normalized}
        for row in result.scalars().all():
            windows[row.ticker].append(_to_point(row))
        return windows
