"""Data access layer repositories.

Each repository module provides async functions for database operations
using SQLAlchemy ORM models from `pricerisk.database.orm` with the
`get_session()` context manager. Services take the modules themselves as
store objects, so tests can pass in-memory stand-ins with the same
function names.

- price_history_orm: Price Store (positive cache)
- ticker_fetch_failures_orm: Failure Store (negative cache)
- portfolios_orm: portfolios and holdings
- risk_thresholds_orm: per-portfolio warning/critical thresholds
- risk_snapshots_orm: append-only risk history
"""

from . import portfolios_orm
from . import price_history_orm
from . import risk_snapshots_orm
from . import risk_thresholds_orm
from . import ticker_fetch_failures_orm


__all__ = [
    "portfolios_orm",
    "price_history_orm",
    "risk_snapshots_orm",
    "risk_thresholds_orm",
    "ticker_fetch_failures_orm",
]
