"""Job registry for mapping job names to functions and schedules."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pricerisk.core.logging import get_logger


logger = get_logger("jobs.registry")


@dataclass(frozen=True)
class JobSpec:
    """A registered job: its coroutine function and APScheduler trigger."""

    name: str
    func: Callable[[], Any]
    trigger: Callable[[], Any]
    description: str = ""


# Global job registry
_registry: dict[str, JobSpec] = {}


def register_job(
    name: str,
    trigger: Callable[[], Any],
    description: str = "",
) -> Callable:
    """
    Decorator to register a job function.

    ``trigger`` is a zero-argument factory so schedules pick up settings
    at scheduler start rather than at import time.

    Usage:
        @register_job("failure_cache_cleanup", lambda: CronTrigger(minute=0))
        async def failure_cache_cleanup_job() -> str:
            ...
    """

    def decorator(func: Callable) -> Callable:
        _registry[name] = JobSpec(
            name=name,
            func=func,
            trigger=trigger,
            description=description or (func.__doc__ or "").strip().split("\n")[0],
        )
        logger.debug(f"Registered job: {name}")
        return func

    return decorator


def get_job(name: str) -> JobSpec | None:
    """Get a registered job by name."""
    return _registry.get(name)


def get_all_jobs() -> dict[str, JobSpec]:
    """Get all registered jobs."""
    return _registry.copy()


def list_job_names() -> list[str]:
    """List all registered job names."""
    return list(_registry.keys())
