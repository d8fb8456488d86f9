"""Background job queue."""

from tessera.queue.queue import DEAD, PENDING, RESERVED, Job, JobQueue
from tessera.queue.registry import JobHandler, JobRegistry
from tessera.queue.schema import define_jobs_table

__all__ = [
    "DEAD",
    "PENDING",
    "RESERVED",
    "Job",
    "JobHandler",
    "JobQueue",
    "JobRegistry",
    "define_jobs_table",
]
