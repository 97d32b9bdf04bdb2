"""Domain models for the remote job store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Durable job lifecycle states owned by the store."""

    PENDING = "pending"
    CLAIMED = "claimed"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.CLAIMED, JobStatus.RUNNING})
TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
CANCELLABLE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.CLAIMED})

_FORWARD_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.CLAIMED, JobStatus.CANCELLED}),
    JobStatus.CLAIMED: frozenset({JobStatus.RUNNING, JobStatus.CANCELLED, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    # Retry requeue and stale sweep are store-internal moves back to pending.
    JobStatus.FAILED: frozenset({JobStatus.PENDING}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Return whether the store lifecycle allows `current -> target`."""

    return target in _FORWARD_TRANSITIONS[current]


@dataclass(slots=True)
class FileChange:
    """Complete desired state of one repository file; `content=None` deletes it."""

    path: str
    content: str | None

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "content": self.content}

    @classmethod
    def from_dict(cls, payload: Any) -> FileChange:
        if not isinstance(payload, dict):
            raise ValueError(f"FileChange must be an object, got {type(payload).__name__}")
        path = payload.get("path")
        content = payload.get("content")
        if not isinstance(path, str) or not path.strip():
            raise ValueError("FileChange.path must be a non-empty string")
        if content is not None and not isinstance(content, str):
            raise ValueError(f"FileChange.content for {path!r} must be a string or null")
        return cls(path=path, content=content)


@dataclass(slots=True)
class JobCreate:
    """Input payload for creating one job."""

    type: str
    params: dict[str, Any] | None = None
    priority: int = 0
    max_retries: int = 3

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "params": self.params,
            "priority": self.priority,
            "maxRetries": self.max_retries,
        }


@dataclass(slots=True)
class Job:
    """Readable job view returned by the store."""

    id: int
    type: str
    status: JobStatus
    params: dict[str, Any] = field(default_factory=dict)
    result: dict[str, Any] | None = None
    error: str | None = None
    priority: int = 0
    retries: int = 0
    max_retries: int = 3
    worker_id: str | None = None
    created_at: datetime | None = None
    claimed_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration_ms(self) -> int | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Job:
        """Build a job from the store's camelCase JSON shape."""

        params = payload.get("params")
        result = payload.get("result")
        max_retries = payload.get("maxRetries")
        return cls(
            id=int(payload["id"]),
            type=str(payload["type"]),
            status=JobStatus(payload["status"]),
            params=params if isinstance(params, dict) else {},
            result=result if isinstance(result, dict) else None,
            error=payload.get("error"),
            priority=int(payload.get("priority") or 0),
            retries=int(payload.get("retries") or 0),
            max_retries=3 if max_retries is None else int(max_retries),
            worker_id=payload.get("workerId"),
            created_at=_parse_timestamp(payload.get("createdAt")),
            claimed_at=_parse_timestamp(payload.get("claimedAt")),
            started_at=_parse_timestamp(payload.get("startedAt")),
            completed_at=_parse_timestamp(payload.get("completedAt")),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "status": self.status.value,
            "params": self.params,
            "result": self.result,
            "error": self.error,
            "priority": self.priority,
            "retries": self.retries,
            "maxRetries": self.max_retries,
            "workerId": self.worker_id,
            "createdAt": _format_timestamp(self.created_at),
            "claimedAt": _format_timestamp(self.claimed_at),
            "startedAt": _format_timestamp(self.started_at),
            "completedAt": _format_timestamp(self.completed_at),
        }


@dataclass(slots=True)
class JobList:
    """One page of jobs plus the total count matching the filters."""

    entries: list[Job]
    total: int
    limit: int
    offset: int


@dataclass(slots=True)
class FailOutcome:
    """Result of a fail call: the updated job and whether the store requeued it."""

    job: Job
    retried: bool


@dataclass(slots=True)
class JobTypeStats:
    """Aggregate counters for one job type."""

    by_status: dict[str, int] = field(default_factory=dict)
    avg_duration_ms: int | None = None
    failure_rate: float | None = None


@dataclass(slots=True)
class JobStats:
    """Aggregate job statistics across all types."""

    total_jobs: int
    by_type: dict[str, JobTypeStats] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> JobStats:
        by_type: dict[str, JobTypeStats] = {}
        for job_type, info in (payload.get("byType") or {}).items():
            avg = info.get("avgDurationMs")
            rate = info.get("failureRate")
            by_type[job_type] = JobTypeStats(
                by_status={str(k): int(v) for k, v in (info.get("byStatus") or {}).items()},
                avg_duration_ms=int(avg) if avg is not None else None,
                failure_rate=float(rate) if rate is not None else None,
            )
        return cls(total_jobs=int(payload.get("totalJobs") or 0), by_type=by_type)


@dataclass(slots=True)
class SweptJob:
    """Reference to a job recovered by a sweep."""

    id: int
    type: str


@dataclass(slots=True)
class SweepResult:
    """Stale-lock recovery outcome."""

    swept: int
    jobs: list[SweptJob] = field(default_factory=list)


def _parse_timestamp(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
