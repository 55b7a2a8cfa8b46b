"""Failure Store: negative cache of failed provider fetches.

One row per ticker. ``record_failure`` is a conditional upsert keyed on
``last_attempt_at`` so a stale attempt can never overwrite a newer one,
and ``clear_failure`` only deletes rows that are not newer than the
successful attempt.

Usage:
    from pricerisk.repositories import ticker_fetch_failures_orm as failure_store

    failure = await failure_store.get_active_failure("BADTICK", now)
    await failure_store.record_failure("BADTICK", FailureType.NOT_FOUND, "404", now, retry_after)
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert

from pricerisk.core.logging import get_logger
from pricerisk.database.connection import get_session
from pricerisk.database.orm import TickerFetchFailure
from pricerisk.domain.price import FailureType, FetchFailure


logger = get_logger("repositories.ticker_fetch_failures_orm")

MAX_ERROR_MESSAGE_LENGTH = 1000


async def get_active_failure(ticker: str, now: datetime) -> FetchFailure | None:
    """Failure record only while ``now < retry_after``."""
    async with get_session() as session:
        result = await session.execute(
            select(TickerFetchFailure).where(
                TickerFetchFailure.ticker == ticker.upper(),
                TickerFetchFailure.retry_after > now,
            )
        )
        row = result.scalar_one_or_none()
        return FetchFailure.model_validate(row) if row is not None else None


async def record_failure(
    ticker: str,
    failure_type: FailureType,
    error_message: str | None,
    attempted_at: datetime,
    retry_after: datetime,
) -> FetchFailure:
    """Create or bump the failure record for a ticker.

    ``consecutive_failures`` starts at 1 and increments on every further
    failure until the record is cleared.
    """
    ticker = ticker.upper()
    message = error_message[:MAX_ERROR_MESSAGE_LENGTH] if error_message else None

    async with get_session() as session:
        stmt = insert(TickerFetchFailure).values(
            ticker=ticker,
            failure_type=failure_type.value,
            last_attempt_at=attempted_at,
            retry_after=retry_after,
            consecutive_failures=1,
            error_message=message,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["ticker"],
            set_={
                "failure_type": stmt.excluded.failure_type,
                "last_attempt_at": stmt.excluded.last_attempt_at,
                "retry_after": stmt.excluded.retry_after,
                "error_message": stmt.excluded.error_message,
                "consecutive_failures": TickerFetchFailure.consecutive_failures + 1,
            },
            where=TickerFetchFailure.last_attempt_at < stmt.excluded.last_attempt_at,
        ).returning(TickerFetchFailure)

        result = await session.execute(stmt)
        row = result.scalar_one_or_none()
        if row is None:
            # A newer attempt already owns the row
            row = await session.get(TickerFetchFailure, ticker)
            logger.debug(f"Skipped stale failure write for {ticker}")
        failure = FetchFailure.model_validate(row)
        await session.commit()

    logger.info(
        f"Recorded {failure.failure_type.value} failure for {ticker} "
        f"(#{failure.consecutive_failures}, retry after {failure.retry_after.isoformat()})"
    )
    return failure


async def clear_failure(ticker: str, attempted_at: datetime | None = None) -> bool:
    """Delete the failure record after a successful fetch.

    With ``attempted_at``, rows written by a later attempt are kept.

    Returns:
        True if a row was deleted
    """
    stmt = delete(TickerFetchFailure).where(TickerFetchFailure.ticker == ticker.upper())
    if attempted_at is not None:
        stmt = stmt.where(TickerFetchFailure.last_attempt_at <= attempted_at)

    async with get_session() as session:
        result = await session.execute(stmt)
        await session.commit()
        cleared = result.rowcount > 0

    if cleared:
        logger.info(f"Cleared failure record for {ticker.upper()}")
    return cleared


async def list_active(now: datetime) -> list[FetchFailure]:
    """Unexpired failures, latest retry_after first."""
    async with get_session() as session:
        result = await session.execute(
            select(TickerFetchFailure)
            .where(TickerFetchFailure.retry_after > now)
            .order_by(TickerFetchFailure.retry_after.desc())
        )
        return [FetchFailure.model_validate(row) for row in result.scalars().all()]


async def cleanup_expired(now: datetime) -> int:
    """Delete failures whose retry window has passed.

    Returns:
        Number of rows deleted
    """
    async with get_session() as session:
        result = await session.execute(
            delete(TickerFetchFailure).where(TickerFetchFailure.retry_after <= now)
        )
        await session.commit()
        deleted = result.rowcount

    if deleted:
        logger.info(f"Removed {deleted} expired fetch failures")
    return deleted
