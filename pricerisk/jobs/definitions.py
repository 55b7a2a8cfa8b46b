"""Built-in job definitions for scheduled tasks.

Jobs:
- portfolio_risk_refresh: Recompute optimization and snapshot risk (every N hours)
- failure_cache_cleanup: Remove expired fetch failures (daily 00:30 UTC)
"""

from __future__ import annotations

from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from pricerisk.core.config import settings
from pricerisk.core.exceptions import AppException
from pricerisk.core.logging import get_logger
from pricerisk.repositories import portfolios_orm as portfolios_repo
from pricerisk.services.prices import get_price_acquisition_service
from pricerisk.services.risk_pipeline import get_risk_pipeline

from .registry import register_job


logger = get_logger("jobs.definitions")


# =============================================================================
# PORTFOLIO RISK REFRESH - every risk_refresh_interval_hours
# =============================================================================


@register_job(
    "portfolio_risk_refresh",
    lambda: IntervalTrigger(hours=settings.risk_refresh_interval_hours),
)
async def portfolio_risk_refresh_job() -> str:
    """
    Refresh cached optimization results and record risk snapshots.

    One portfolio failing is logged and skipped; the rest still refresh.

    Schedule: Every risk_refresh_interval_hours (default 6)
    """
    logger.info("Starting portfolio_risk_refresh job")
    pipeline = get_risk_pipeline()
    portfolio_ids = await portfolios_repo.list_active_portfolio_ids()

    refreshed = 0
    snapshots = 0
    failed = 0
    for portfolio_id in portfolio_ids:
        try:
            await pipeline.get_optimization(portfolio_id, refresh=True)
            snapshots += await pipeline.snapshot_portfolio(portfolio_id)
            refreshed += 1
        except AppException as e:
            failed += 1
            logger.warning(
                f"Portfolio {portfolio_id} refresh failed ({e.error_code}): {e.message}"
            )

    message = (
        f"Refreshed {refreshed}/{len(portfolio_ids)} portfolios, "
        f"{snapshots} new snapshots, {failed} failed"
    )
    logger.info(f"portfolio_risk_refresh: {message}")
    return message


# =============================================================================
# FAILURE CACHE CLEANUP - daily
# =============================================================================


@register_job("failure_cache_cleanup", lambda: CronTrigger(hour=0, minute=30))
async def failure_cache_cleanup_job() -> str:
    """
    Delete fetch failures whose retry_after has passed.

    Schedule: Daily 00:30
    """
    logger.info("Starting failure_cache_cleanup job")
    deleted = await get_price_acquisition_service().cleanup_failures()
    message = f"Removed {deleted} expired fetch failures"
    logger.info(f"failure_cache_cleanup: {message}")
    return message
