"""Business logic services."""

from . import prices, risk_pipeline


__all__ = [
    "prices",
    "risk_pipeline",
]
