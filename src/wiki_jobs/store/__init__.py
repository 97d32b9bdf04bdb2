"""Job store client and domain models."""

from wiki_jobs.store.client import (
    ApiErrorKind,
    ApiResult,
    JobStoreClient,
    JobStoreError,
)
from wiki_jobs.store.models import (
    FailOutcome,
    FileChange,
    Job,
    JobCreate,
    JobList,
    JobStats,
    JobStatus,
    JobTypeStats,
    SweepResult,
    SweptJob,
)

__all__ = [
    "ApiErrorKind",
    "ApiResult",
    "FailOutcome",
    "FileChange",
    "Job",
    "JobCreate",
    "JobList",
    "JobStats",
    "JobStatus",
    "JobStoreClient",
    "JobStoreError",
    "JobTypeStats",
    "SweepResult",
    "SweptJob",
]
