"""Job store used by the import pipeline and the scheduler.

Public API:
- JobRepository: async SQLite job store
- Job, JobCreate: job records
- JobStatus, ApplicationMethod, ApplicationSource: enum-constrained fields
"""

from apptrack.jobs.models import (
    ApplicationMethod,
    ApplicationSource,
    Job,
    JobCreate,
    JobStatus,
    StatusChange,
)
from apptrack.jobs.repository import JobRepository

__all__ = [
    "JobRepository",
    "Job",
    "JobCreate",
    "JobStatus",
    "ApplicationMethod",
    "ApplicationSource",
    "StatusChange",
]
