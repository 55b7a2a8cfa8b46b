"""Risk history: snapshot construction, increase alerts and trend bucketing."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date

from pricerisk.domain.risk import (
    PortfolioRisk,
    RiskAlert,
    RiskSnapshot,
    SnapshotType,
    TrendAggregation,
)


logger = logging.getLogger(__name__)


def build_snapshots(portfolio_risk: PortfolioRisk, snapshot_date: date) -> list[RiskSnapshot]:
    """One portfolio snapshot plus one snapshot per included position."""
    snapshots = [
        RiskSnapshot(
            portfolio_id=portfolio_risk.portfolio_id,
            ticker=None,
            snapshot_date=snapshot_date,
            snapshot_type=SnapshotType.PORTFOLIO,
            volatility=portfolio_risk.portfolio_volatility,
            max_drawdown=portfolio_risk.portfolio_max_drawdown,
            beta=portfolio_risk.portfolio_beta,
            sharpe=portfolio_risk.portfolio_sharpe,
            value_at_risk=None,
            risk_score=portfolio_risk.portfolio_risk_score,
            risk_level=portfolio_risk.risk_level,
            total_value=portfolio_risk.total_value,
        )
    ]

    for position in portfolio_risk.position_risks:
        risk = position.risk_assessment
        snapshots.append(
            RiskSnapshot(
                portfolio_id=portfolio_risk.portfolio_id,
                ticker=position.ticker,
                snapshot_date=snapshot_date,
                snapshot_type=SnapshotType.POSITION,
                volatility=risk.volatility,
                max_drawdown=risk.max_drawdown,
                beta=risk.beta,
                sharpe=risk.sharpe,
                value_at_risk=risk.value_at_risk,
                risk_score=risk.risk_score,
                risk_level=risk.risk_level,
                market_value=position.market_value,
            )
        )
    return snapshots


def detect_risk_increases(
    snapshots: Sequence[RiskSnapshot],
    threshold_pct: float = 20.0,
) -> list[RiskAlert]:
    """
    Alerts for consecutive snapshots whose risk score rose by at least
    ``threshold_pct`` percent. Pairs with a previous score of 0 are skipped.
    """
    ordered = sorted(snapshots, key=lambda s: s.snapshot_date)
    alerts = []
    for previous, current in zip(ordered, ordered[1:]):
        if previous.risk_score <= 0:
            continue
        change_pct = (current.risk_score - previous.risk_score) / previous.risk_score * 100
        if change_pct >= threshold_pct:
            alerts.append(
                RiskAlert(
                    portfolio_id=current.portfolio_id,
                    ticker=current.ticker,
                    previous_value=previous.risk_score,
                    current_value=current.risk_score,
                    change_percent=change_pct,
                    date=current.snapshot_date,
                )
            )

    if alerts:
        logger.info(f"Detected {len(alerts)} risk increase(s) of >= {threshold_pct:g}%")
    return alerts


def _bucket(day: date, aggregation: TrendAggregation) -> tuple:
    if aggregation == TrendAggregation.WEEKLY:
        iso = day.isocalendar()
        return (iso[0], iso[1])
    if aggregation == TrendAggregation.MONTHLY:
        return (day.year, day.month)
    return (day,)


def aggregate_trend(
    snapshots: Sequence[RiskSnapshot],
    aggregation: TrendAggregation = TrendAggregation.DAILY,
) -> list[RiskSnapshot]:
    """Keep the last snapshot of each day, ISO week or month, ascending."""
    latest: dict[tuple, RiskSnapshot] = {}
    for snapshot in sorted(snapshots, key=lambda s: s.snapshot_date):
        latest[_bucket(snapshot.snapshot_date, aggregation)] = snapshot
    return list(latest.values())
