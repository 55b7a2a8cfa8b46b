"""Core infrastructure: settings, logging, exceptions, rate limiting."""

from .config import Settings, get_settings, settings
from .exceptions import (
    AppException,
    ExcludedTickerError,
    InsufficientDataError,
    JobError,
    NotFoundError,
    ProviderBlockedError,
    ValidationError,
    register_exception_handlers,
)
from .logging import get_logger, setup_logging


__all__ = [
    "AppException",
    "ExcludedTickerError",
    "InsufficientDataError",
    "JobError",
    "NotFoundError",
    "ProviderBlockedError",
    "Settings",
    "ValidationError",
    "get_logger",
    "get_settings",
    "register_exception_handlers",
    "settings",
    "setup_logging",
]
