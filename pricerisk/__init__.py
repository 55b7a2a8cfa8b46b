"""Price cache and portfolio risk analytics."""

__version__ = "1.0.0"
