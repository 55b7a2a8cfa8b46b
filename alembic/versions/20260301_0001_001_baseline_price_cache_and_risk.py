"""baseline: price cache, portfolios and risk history

Creates the positive price cache, the negative fetch-failure cache,
portfolios with holdings, per-portfolio risk thresholds and the
append-only risk snapshot table.

Revision ID: 001_baseline
Revises:
Create Date: 2026-03-01 00:01:00.000000+00:00

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_baseline"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


_THRESHOLD_COLUMNS = (
    "volatility_warning",
    "volatility_critical",
    "drawdown_warning",
    "drawdown_critical",
    "beta_warning",
    "beta_critical",
    "risk_score_warning",
    "risk_score_critical",
    "var_warning",
    "var_critical",
)


def upgrade() -> None:
    # =========================================================================
    # Price cache
    # =========================================================================
    op.create_table(
        "price_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("ticker", sa.String(20), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("close", sa.Numeric(16, 6), nullable=False),
        sa.Column("fetched_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_price_history")),
        sa.UniqueConstraint("ticker", "date", name="uq_price_history"),
    )
    op.create_index("idx_price_history_ticker_date", "price_history", ["ticker", "date"])

    op.create_table(
        "ticker_fetch_failures",
        sa.Column("ticker", sa.String(20), nullable=False),
        sa.Column("failure_type", sa.String(20), nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("retry_after", sa.DateTime(timezone=True), nullable=False),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.CheckConstraint(
            "failure_type IN ('not_found', 'rate_limited', 'api_error')",
            name=op.f("ck_ticker_fetch_failures_failure_type"),
        ),
        sa.PrimaryKeyConstraint("ticker", name=op.f("pk_ticker_fetch_failures")),
    )
    op.create_index(
        "idx_ticker_fetch_failures_retry_after", "ticker_fetch_failures", ["retry_after"]
    )

    # =========================================================================
    # Portfolios
    # =========================================================================
    op.create_table(
        "portfolios",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("base_currency", sa.String(10), nullable=False, server_default="USD"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_portfolios")),
    )
    op.create_index(
        "idx_portfolios_active",
        "portfolios",
        ["is_active"],
        postgresql_where=sa.text("is_active = TRUE"),
    )

    op.create_table(
        "portfolio_holdings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("portfolio_id", sa.Integer(), nullable=False),
        sa.Column("ticker", sa.String(20), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("quantity", sa.Numeric(18, 6), nullable=False),
        sa.Column("avg_cost", sa.Numeric(18, 4), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.ForeignKeyConstraint(
            ["portfolio_id"],
            ["portfolios.id"],
            name=op.f("fk_portfolio_holdings_portfolio_id_portfolios"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_portfolio_holdings")),
        sa.UniqueConstraint("portfolio_id", "ticker", name="uq_portfolio_holdings_ticker"),
    )
    op.create_index("idx_portfolio_holdings_portfolio", "portfolio_holdings", ["portfolio_id"])

    # =========================================================================
    # Risk
    # =========================================================================
    op.create_table(
        "risk_threshold_settings",
        sa.Column("portfolio_id", sa.Integer(), nullable=False),
        *(sa.Column(name, sa.Numeric(8, 4), nullable=False) for name in _THRESHOLD_COLUMNS),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.ForeignKeyConstraint(
            ["portfolio_id"],
            ["portfolios.id"],
            name=op.f("fk_risk_threshold_settings_portfolio_id_portfolios"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("portfolio_id", name=op.f("pk_risk_threshold_settings")),
    )

    op.create_table(
        "risk_snapshots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("portfolio_id", sa.Integer(), nullable=False),
        sa.Column("ticker", sa.String(20), nullable=True),
        sa.Column("snapshot_date", sa.Date(), nullable=False),
        sa.Column("snapshot_type", sa.String(20), nullable=False),
        sa.Column("volatility", sa.Numeric(12, 6), nullable=False),
        sa.Column("max_drawdown", sa.Numeric(12, 6), nullable=False),
        sa.Column("beta", sa.Numeric(12, 6), nullable=True),
        sa.Column("sharpe", sa.Numeric(12, 6), nullable=True),
        sa.Column("value_at_risk", sa.Numeric(12, 6), nullable=True),
        sa.Column("risk_score", sa.Numeric(8, 4), nullable=False),
        sa.Column("risk_level", sa.String(20), nullable=False),
        sa.Column("total_value", sa.Numeric(20, 4), nullable=True),
        sa.Column("market_value", sa.Numeric(20, 4), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.CheckConstraint(
            "snapshot_type IN ('portfolio', 'position')",
            name=op.f("ck_risk_snapshots_snapshot_type"),
        ),
        sa.ForeignKeyConstraint(
            ["portfolio_id"],
            ["portfolios.id"],
            name=op.f("fk_risk_snapshots_portfolio_id_portfolios"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_risk_snapshots")),
        # Portfolio rows have ticker NULL; NULLS NOT DISTINCT keeps them unique per day
        sa.UniqueConstraint(
            "portfolio_id",
            "ticker",
            "snapshot_date",
            "snapshot_type",
            name="uq_risk_snapshots_key",
            postgresql_nulls_not_distinct=True,
        ),
    )
    op.create_index(
        "idx_risk_snapshots_portfolio_date", "risk_snapshots", ["portfolio_id", "snapshot_date"]
    )


def downgrade() -> None:
    op.drop_index("idx_risk_snapshots_portfolio_date", table_name="risk_snapshots")
    op.drop_table("risk_snapshots")
    op.drop_table("risk_threshold_settings")
    op.drop_index("idx_portfolio_holdings_portfolio", table_name="portfolio_holdings")
    op.drop_table("portfolio_holdings")
    op.drop_index("idx_portfolios_active", table_name="portfolios")
    op.drop_table("portfolios")
    op.drop_index("idx_ticker_fetch_failures_retry_after", table_name="ticker_fetch_failures")
    op.drop_table("ticker_fetch_failures")
    op.drop_index("idx_price_history_ticker_date", table_name="price_history")
    op.drop_table("price_history")
