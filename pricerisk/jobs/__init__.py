"""Background job scheduler with distributed locking."""

from .registry import (
    JobSpec,
    get_all_jobs,
    get_job,
    list_job_names,
    register_job,
)
from .scheduler import (
    JobScheduler,
    execute_job,
    get_scheduler,
    start_scheduler,
    stop_scheduler,
)


__all__ = [
    "JobScheduler",
    "JobSpec",
    "execute_job",
    "get_all_jobs",
    "get_job",
    "get_scheduler",
    "list_job_names",
    "register_job",
    "start_scheduler",
    "stop_scheduler",
]
