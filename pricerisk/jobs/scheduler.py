"""Job scheduler using APScheduler with async support."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from pricerisk.cache.distributed_lock import DistributedLock
from pricerisk.core.config import settings
from pricerisk.core.exceptions import JobError
from pricerisk.core.logging import get_logger, request_id_var

from .registry import JobSpec, get_all_jobs, get_job


logger = get_logger("jobs.scheduler")

# Global scheduler instance
_scheduler: Optional["JobScheduler"] = None

# Upper bound for one job run; the lock expires after this
JOB_LOCK_TIMEOUT = 60 * 60


class JobScheduler:
    """Background job scheduler with distributed locking support."""

    def __init__(self):
        self._scheduler = AsyncIOScheduler(
            timezone=settings.scheduler_timezone,
            job_defaults={
                "coalesce": True,  # Combine missed runs into one
                "max_instances": 1,
                "misfire_grace_time": 60 * 5,
            },
        )
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Schedule every registered job and start the scheduler."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        if not settings.scheduler_enabled:
            logger.info("Scheduler disabled via SCHEDULER_ENABLED=false")
            return

        # Registers the built-in jobs
        from . import definitions  # noqa: F401

        for spec in get_all_jobs().values():
            self._scheduler.add_job(
                self._wrap_job(spec),
                trigger=spec.trigger(),
                id=spec.name,
                name=spec.description or spec.name,
                replace_existing=True,
            )
            logger.info(f"Scheduled job: {spec.name}")

        self._scheduler.start()
        self._running = True
        logger.info("Job scheduler started")

    async def stop(self) -> None:
        """Stop the scheduler."""
        if not self._running:
            return

        self._scheduler.shutdown(wait=True)
        self._running = False
        logger.info("Job scheduler stopped")

    def _wrap_job(self, spec: JobSpec) -> Callable:
        """Wrap job function with locking and logging."""

        async def wrapper():
            await execute_job(spec.name, spec.func)

        return wrapper

    async def run_job_now(self, name: str) -> str | None:
        """Manually trigger a job execution."""
        spec = get_job(name)
        if spec is None:
            raise JobError(f"Unknown job: {name}")
        return await execute_job(spec.name, spec.func)

    def get_next_run_time(self, name: str) -> Optional[datetime]:
        """Get next scheduled run time for a job."""
        job = self._scheduler.get_job(name)
        if job:
            return job.next_run_time
        return None

    def get_jobs_status(self) -> list:
        """Get status of all scheduled jobs."""
        jobs = []
        for job in self._scheduler.get_jobs():
            jobs.append(
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run_time": job.next_run_time.isoformat()
                    if job.next_run_time
                    else None,
                }
            )
        return jobs


async def execute_job(name: str, func: Callable) -> str | None:
    """
    Run one job under a non-blocking distributed lock.

    Returns the job's result message, or None when another instance
    holds the lock or the job failed. Failures are logged, never raised,
    so one bad run never stops the schedule.
    """
    async with DistributedLock(
        f"job:{name}", timeout=JOB_LOCK_TIMEOUT, blocking=False
    ) as lock:
        if not lock.acquired:
            logger.info(f"Job {name} skipped - already running on another instance")
            return None

        token = request_id_var.set(f"{name}-{uuid.uuid4().hex[:8]}")
        logger.info(f"Job {name} started")
        start_time = datetime.now(timezone.utc)
        try:
            if asyncio.iscoroutinefunction(func):
                result = await func()
            else:
                result = func()
        except Exception:
            duration_ms = int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)
            logger.exception(f"Job {name} failed after {duration_ms}ms")
            return None
        else:
            duration_ms = int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)
            logger.info(f"Job {name} completed in {duration_ms}ms: {result}")
            return str(result) if result else "Completed successfully"
        finally:
            request_id_var.reset(token)


def get_scheduler() -> Optional[JobScheduler]:
    """Get the global scheduler instance."""
    return _scheduler


async def start_scheduler() -> JobScheduler:
    """Start the global scheduler."""
    global _scheduler
    if _scheduler is None:
        _scheduler = JobScheduler()
    await _scheduler.start()
    return _scheduler


async def stop_scheduler() -> None:
    """Stop the global scheduler."""
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None
