"""
Rule-based portfolio optimization.

Four independent rules inspect a PortfolioRisk and each emits at most one
recommendation with concrete weight adjustments:

1. Concentration - single positions above the concentration threshold
2. Risk contribution - positions carrying a disproportionate share of risk
3. Diversification - low (correlation-adjusted) diversification score
4. Efficiency - negative portfolio Sharpe ratio

Expected impact is simulated by re-aggregating the position metrics with
the adjusted weights; there is no solver.

Usage:
    from pricerisk.quant_engine.optimization import analyze, simulate

    analysis = analyze(portfolio_risk, correlation=matrix)
    result = simulate(portfolio_risk, {"AAPL": 0.3, "MSFT": 0.7})
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime, timezone

from pricerisk.core.exceptions import ValidationError
from pricerisk.domain.optimization import (
    AdjustmentAction,
    AnalysisSummary,
    CurrentMetrics,
    ExpectedImpact,
    MetricChange,
    OptimizationAnalysis,
    OptimizationRecommendation,
    PortfolioHealth,
    PositionAdjustment,
    RecommendationType,
    Severity,
    SimulationResult,
)
from pricerisk.domain.risk import CorrelationMatrixWithStats, PortfolioRisk
from pricerisk.quant_engine.config import OptimizationParameters
from pricerisk.quant_engine.correlation import average_abs_correlation
from pricerisk.quant_engine.portfolio_risk import (
    adjusted_diversification_score,
    diversification_score,
    weighted_average,
)


logger = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 1e-9

# Recommendation ids are uuid5 under this namespace
RECOMMENDATION_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "pricerisk/optimization")


# =============================================================================
# METRICS FOR A WEIGHT VECTOR
# =============================================================================


def _normalized(weights: Mapping[str, float]) -> dict[str, float]:
    positive = {t: w for t, w in weights.items() if w > WEIGHT_TOLERANCE}
    total = sum(positive.values())
    if total <= 0:
        return {}
    return {t: w / total for t, w in positive.items()}


def metrics_for_weights(
    portfolio_risk: PortfolioRisk,
    weights: Mapping[str, float],
    average_correlation: float | None = None,
    params: OptimizationParameters | None = None,
) -> CurrentMetrics:
    """
    Portfolio aggregates for an arbitrary weight vector over known positions.

    Uses the same weighted-average approximation as the aggregator, so the
    current weights reproduce the aggregator's numbers.
    """
    params = params or OptimizationParameters()
    risks = {p.ticker: p.risk_assessment for p in portfolio_risk.position_risks}
    normalized = _normalized({t: w for t, w in weights.items() if t in risks})

    def avg(accessor: Callable) -> float | None:
        return weighted_average((w, accessor(risks[t])) for t, w in normalized.items())

    ordered = sorted(normalized.values(), reverse=True)
    base = diversification_score(ordered, params.portfolio.diversification_full_count)

    return CurrentMetrics(
        total_value=portfolio_risk.total_value,
        risk_score=avg(lambda r: r.risk_score) or 0.0,
        volatility=avg(lambda r: r.volatility) or 0.0,
        max_drawdown=min(avg(lambda r: r.max_drawdown) or 0.0, 0.0),
        sharpe=avg(lambda r: r.sharpe),
        diversification_score=adjusted_diversification_score(base, average_correlation),
        position_count=len(normalized),
        largest_position_weight=ordered[0] if ordered else 0.0,
        top_5_concentration=sum(ordered[:5]),
    )


def _change(before: float, after: float) -> MetricChange:
    return MetricChange(before=before, after=after, change=after - before)


def compare(before: CurrentMetrics, after: CurrentMetrics) -> ExpectedImpact:
    sharpe = None
    if before.sharpe is not None and after.sharpe is not None:
        sharpe = _change(before.sharpe, after.sharpe)

    return ExpectedImpact(
        risk_score=_change(before.risk_score, after.risk_score),
        volatility=_change(before.volatility, after.volatility),
        max_drawdown=_change(before.max_drawdown, after.max_drawdown),
        diversification_score=_change(before.diversification_score, after.diversification_score),
        sharpe=sharpe,
    )


# =============================================================================
# WEIGHT TRANSFORMS
# =============================================================================


def cap_weights(weights: Mapping[str, float], cap: float) -> dict[str, float] | None:
    """
    Cap every weight at ``cap`` and hand the excess to uncapped positions
    pro-rata, repeating while the redistribution pushes others over.

    Returns None when the cap cannot be met (too few positions).
    """
    target = dict(weights)
    capped: set[str] = set()

    for _ in range(len(target)):
        over = {t for t, w in target.items() if w > cap + WEIGHT_TOLERANCE and t not in capped}
        if not over:
            break

        excess = sum(target[t] - cap for t in over)
        for ticker in over:
            target[ticker] = cap
        capped |= over

        free = {t: w for t, w in target.items() if t not in capped}
        free_total = sum(free.values())
        if free_total <= WEIGHT_TOLERANCE:
            return None
        for ticker, weight in free.items():
            target[ticker] = weight + excess * weight / free_total

    return target


def _redistribute(
    weights: Mapping[str, float],
    reduced: Mapping[str, float],
    recipients: set[str],
) -> dict[str, float] | None:
    """Apply reductions and give the freed weight to ``recipients`` pro-rata."""
    target = dict(weights)
    freed = 0.0
    for ticker, new_weight in reduced.items():
        freed += target[ticker] - new_weight
        target[ticker] = new_weight

    recipient_total = sum(target[t] for t in recipients)
    if recipient_total <= WEIGHT_TOLERANCE:
        return None
    for ticker in recipients:
        target[ticker] += freed * target[ticker] / recipient_total
    return target


# =============================================================================
# RECOMMENDATION ASSEMBLY
# =============================================================================


class _Context:
    """Shared inputs of the four rules."""

    def __init__(
        self,
        portfolio_risk: PortfolioRisk,
        average_correlation: float | None,
        params: OptimizationParameters,
    ):
        self.portfolio_risk = portfolio_risk
        self.average_correlation = average_correlation
        self.params = params
        self.weights = portfolio_risk.weights
        self.names = {p.ticker: p.holding_name for p in portfolio_risk.position_risks}
        self.risks = {p.ticker: p.risk_assessment for p in portfolio_risk.position_risks}
        self.current = metrics_for_weights(
            portfolio_risk, self.weights, average_correlation, params
        )

    def adjustments(self, target: Mapping[str, float]) -> list[PositionAdjustment]:
        result = []
        for ticker, current in self.weights.items():
            new = target.get(ticker, 0.0)
            delta = new - current
            if abs(delta) <= 1e-6:
                continue
            result.append(
                PositionAdjustment(
                    ticker=ticker,
                    holding_name=self.names.get(ticker),
                    current_weight=current,
                    target_weight=new,
                    action=AdjustmentAction.BUY if delta > 0 else AdjustmentAction.SELL,
                    value_change=delta * self.portfolio_risk.total_value,
                )
            )
        # Sells first, largest trades first
        result.sort(key=lambda a: (a.action != AdjustmentAction.SELL, -abs(a.value_change)))
        return result

    def impact(self, target: Mapping[str, float] | None) -> ExpectedImpact | None:
        if target is None:
            return None
        after = metrics_for_weights(
            self.portfolio_risk, target, self.average_correlation, self.params
        )
        return compare(self.current, after)

    def recommendation(
        self,
        rec_type: RecommendationType,
        severity: Severity,
        title: str,
        rationale: str,
        target: Mapping[str, float] | None,
        suggested_actions: list[str],
    ) -> OptimizationRecommendation:
        adjustments = self.adjustments(target) if target is not None else []
        affected = sorted(a.ticker for a in adjustments)
        key = f"{self.portfolio_risk.portfolio_id}:{rec_type.value}:{','.join(affected)}"
        return OptimizationRecommendation(
            id=str(uuid.uuid5(RECOMMENDATION_NAMESPACE, key)),
            type=rec_type,
            severity=severity,
            title=title,
            rationale=rationale,
            affected_positions=adjustments,
            expected_impact=self.impact(target) if adjustments else None,
            suggested_actions=suggested_actions,
        )


# =============================================================================
# RULES
# =============================================================================


def _concentration_rule(ctx: _Context) -> OptimizationRecommendation | None:
    threshold = ctx.params.concentration_threshold
    offenders = {t: w for t, w in ctx.weights.items() if w > threshold}
    if not offenders:
        return None

    worst_ticker, worst = max(offenders.items(), key=lambda item: item[1])
    if worst > 0.40:
        severity = Severity.CRITICAL
    elif worst > 0.25:
        severity = Severity.HIGH
    else:
        severity = Severity.WARNING

    # Below 1/threshold holdings the cap is unreachable; equal weight is the floor
    cap = max(threshold, 1 / len(ctx.weights))
    target = cap_weights(ctx.weights, cap)
    names = ", ".join(f"{t} ({w:.1%})" for t, w in sorted(offenders.items(), key=lambda i: -i[1]))
    actions = []
    if len(ctx.weights) > 1:
        actions.extend(
            f"Trim {t} to {cap:.0%} of the portfolio" for t in sorted(offenders) if offenders[t] > cap
        )
        actions.append("Spread the proceeds across the remaining positions")
    if cap > threshold:
        actions.append(
            f"Add positions: {len(ctx.weights)} holdings cannot all stay under {threshold:.0%}"
        )

    return ctx.recommendation(
        RecommendationType.REDUCE_CONCENTRATION,
        severity,
        f"Reduce concentration in {worst_ticker}",
        f"{len(offenders)} position(s) exceed the {threshold:.0%} single-position limit: {names}.",
        target,
        actions,
    )


def _risk_contribution_rule(ctx: _Context) -> OptimizationRecommendation | None:
    if len(ctx.weights) < 2:
        return None

    contributions = {t: w * ctx.risks[t].risk_score for t, w in ctx.weights.items()}
    total = sum(contributions.values())
    if total <= 0:
        return None

    limit = ctx.params.risk_contribution_multiple * total / len(contributions)
    flagged = {t: c for t, c in contributions.items() if c > limit}
    if not flagged:
        return None

    top_share = max(flagged.values()) / total
    severity = Severity.HIGH if top_share > 0.30 else Severity.WARNING

    reduced = {t: limit / ctx.risks[t].risk_score for t in flagged}
    target = _redistribute(ctx.weights, reduced, set(ctx.weights) - set(flagged))

    names = ", ".join(
        f"{t} ({c / total:.0%} of risk)" for t, c in sorted(flagged.items(), key=lambda i: -i[1])
    )
    return ctx.recommendation(
        RecommendationType.REDUCE_RISK,
        severity,
        "Reduce risk concentration",
        f"Positions contributing more than {ctx.params.risk_contribution_multiple:g}x "
        f"the average risk: {names}.",
        target,
        [f"Reduce {t} until its risk contribution is at most {ctx.params.risk_contribution_multiple:g}x average" for t in sorted(flagged)],
    )


def _diversification_rule(ctx: _Context) -> OptimizationRecommendation | None:
    score = ctx.current.diversification_score
    floor = ctx.params.diversification_floor
    if score >= floor:
        return None

    severity = Severity.HIGH if score < 3 else Severity.WARNING
    n = len(ctx.weights)
    target = {t: (w + 1 / n) / 2 for t, w in ctx.weights.items()}

    actions = ["Move position sizes halfway towards equal weight"]
    if n < ctx.params.portfolio.diversification_full_count:
        actions.append("Add uncorrelated positions from other sectors or asset classes")

    return ctx.recommendation(
        RecommendationType.INCREASE_DIVERSIFICATION,
        severity,
        "Increase diversification",
        f"Diversification score {score:.1f}/10 is below {floor:g} with {n} position(s).",
        target,
        actions,
    )


def _efficiency_rule(ctx: _Context) -> OptimizationRecommendation | None:
    sharpe = ctx.portfolio_risk.portfolio_sharpe
    reference = ctx.params.sharpe_reference
    if sharpe is None or sharpe >= reference:
        return None

    severity = Severity.HIGH if sharpe < -0.5 else Severity.WARNING
    losers = {t for t, r in ctx.risks.items() if r.sharpe is not None and r.sharpe < reference}
    # Positions without a Sharpe ratio still receive the rotated weight
    recipients = set(ctx.weights) - losers

    target = None
    if losers and recipients:
        target = _redistribute(
            ctx.weights,
            {t: ctx.weights[t] / 2 for t in losers},
            recipients,
        )

    actions = [f"Halve {t} (Sharpe {ctx.risks[t].sharpe:.2f})" for t in sorted(losers)]
    if target is None:
        actions.append("Every position has a negative Sharpe ratio; there is nothing to rotate into")

    return ctx.recommendation(
        RecommendationType.IMPROVE_EFFICIENCY,
        severity,
        "Improve risk-adjusted return",
        f"Portfolio Sharpe ratio {sharpe:.2f} is below {reference:g}.",
        target,
        actions,
    )


_RULES = (
    _concentration_rule,
    _risk_contribution_rule,
    _diversification_rule,
    _efficiency_rule,
)


# =============================================================================
# SUMMARY
# =============================================================================


def overall_health(
    recommendations: list[OptimizationRecommendation],
    diversification: float,
) -> PortfolioHealth:
    severities = [r.severity for r in recommendations]
    warnings = severities.count(Severity.WARNING)
    if Severity.CRITICAL in severities:
        return PortfolioHealth.CRITICAL
    if Severity.HIGH in severities:
        return PortfolioHealth.POOR
    if warnings > 1:
        return PortfolioHealth.FAIR
    if warnings > 0 or diversification < 7:
        return PortfolioHealth.GOOD
    return PortfolioHealth.EXCELLENT


def key_findings(ctx: _Context) -> list[str]:
    findings = []
    if ctx.weights:
        ticker, weight = max(ctx.weights.items(), key=lambda item: item[1])
        if weight > 0.20:
            findings.append(f"Largest position {ticker} is {weight:.1%} of the portfolio")
    if ctx.current.diversification_score < 6:
        findings.append(
            f"Diversification score is {ctx.current.diversification_score:.1f}/10"
        )
    if ctx.portfolio_risk.portfolio_risk_score > 70:
        findings.append(
            f"Portfolio risk score is elevated at {ctx.portfolio_risk.portfolio_risk_score:.0f}/100"
        )
    return findings


# =============================================================================
# ENTRY POINTS
# =============================================================================


def _average_correlation(correlation: CorrelationMatrixWithStats | None) -> float | None:
    if correlation is None:
        return None
    return average_abs_correlation(correlation.correlations)


def analyze(
    portfolio_risk: PortfolioRisk,
    *,
    correlation: CorrelationMatrixWithStats | None = None,
    params: OptimizationParameters | None = None,
    generated_at: datetime | None = None,
) -> OptimizationAnalysis:
    """
    Run every rule against a portfolio and summarize the result.

    Parameters
    ----------
    portfolio_risk : PortfolioRisk
        Aggregated portfolio risk.
    correlation : CorrelationMatrixWithStats, optional
        Return correlations; without them the weight-only diversification
        score is used.
    params : OptimizationParameters, optional
        Rule thresholds.
    """
    params = params or OptimizationParameters()
    ctx = _Context(portfolio_risk, _average_correlation(correlation), params)

    recommendations = [rec for rule in _RULES if (rec := rule(ctx)) is not None]
    recommendations.sort(key=lambda r: r.severity.rank, reverse=True)

    severities = [r.severity for r in recommendations]
    summary = AnalysisSummary(
        total_recommendations=len(recommendations),
        critical_count=severities.count(Severity.CRITICAL),
        high_count=severities.count(Severity.HIGH),
        warning_count=severities.count(Severity.WARNING),
        info_count=severities.count(Severity.INFO),
        overall_health=overall_health(recommendations, ctx.current.diversification_score),
        key_findings=key_findings(ctx),
    )

    logger.info(
        f"Portfolio {portfolio_risk.portfolio_id}: {len(recommendations)} recommendation(s), "
        f"health={summary.overall_health.value}"
    )

    return OptimizationAnalysis(
        portfolio_id=portfolio_risk.portfolio_id,
        generated_at=generated_at or datetime.now(timezone.utc),
        current_metrics=ctx.current,
        recommendations=recommendations,
        summary=summary,
    )


def simulate(
    portfolio_risk: PortfolioRisk,
    target_weights: Mapping[str, float],
    *,
    correlation: CorrelationMatrixWithStats | None = None,
    params: OptimizationParameters | None = None,
) -> SimulationResult:
    """
    Current vs simulated metrics for user-supplied target weights.

    Weights are renormalized to sum to 1; positions left out get weight 0.

    Raises
    ------
    ValidationError
        Unknown tickers, negative weights, or weights summing to zero.
    """
    params = params or OptimizationParameters()
    known = set(portfolio_risk.weights)
    requested = {t.upper(): float(w) for t, w in target_weights.items()}

    unknown = sorted(set(requested) - known)
    if unknown:
        raise ValidationError(
            f"Tickers not in portfolio: {', '.join(unknown)}",
            details={"unknown_tickers": unknown},
        )
    negative = sorted(t for t, w in requested.items() if w < 0)
    if negative:
        raise ValidationError(
            f"Negative target weights: {', '.join(negative)}",
            details={"negative_weights": negative},
        )
    weights = _normalized(requested)
    if not weights:
        raise ValidationError("Target weights must sum to more than zero")

    avg_corr = _average_correlation(correlation)
    current = metrics_for_weights(portfolio_risk, portfolio_risk.weights, avg_corr, params)
    simulated = metrics_for_weights(portfolio_risk, weights, avg_corr, params)

    return SimulationResult(
        portfolio_id=portfolio_risk.portfolio_id,
        weights={t: weights.get(t, 0.0) for t in sorted(known)},
        current=current,
        simulated=simulated,
        impact=compare(current, simulated),
    )
