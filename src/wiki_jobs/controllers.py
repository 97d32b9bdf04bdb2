"""CLI controllers for the worker and operator job commands."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

from wiki_jobs.config import Settings
from wiki_jobs.handlers import get_registered_types, is_known_type
from wiki_jobs.store.client import ApiErrorKind, ApiResult, JobStoreClient
from wiki_jobs.store.models import Job, JobCreate, JobStatus
from wiki_jobs.worker import JobWorker, default_worker_id

logger = logging.getLogger(__name__)

T = TypeVar("T")

PING_PRIORITY = 10
MANUAL_RETRY_REASON = "Manual retry requested"
UNAVAILABLE_HINT = "Set WIKI_JOBS_SERVER_URL (and WIKI_JOBS_SERVER_API_KEY if required) to reach the job store."

StoreFactory = Callable[[Settings], JobStoreClient]


class JobsCommandError(RuntimeError):
    """Operator command failed; the message is shown to the user."""


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for worker execution."""

    job_type: str | None
    max_jobs: int | None
    poll: bool
    poll_interval_ms: int | None
    worker_id: str | None
    verbose: bool
    project_root: Path


@dataclass(slots=True)
class JobsListCommand:
    status: str | None
    job_type: str | None
    limit: int
    offset: int = 0
    as_json: bool = False


@dataclass(slots=True)
class JobsCreateCommand:
    job_type: str
    params_json: str | None
    priority: int
    max_retries: int


@dataclass(slots=True)
class JobRefCommand:
    """CLI input for commands acting on one job id."""

    job_id: int
    as_json: bool = False


@dataclass(slots=True)
class JobsSweepCommand:
    timeout_minutes: int


@dataclass(slots=True)
class JobsPingCommand:
    polls: int = 24
    poll_interval_seconds: float = 5.0


@dataclass(slots=True)
class JobsStatsCommand:
    as_json: bool = False


class JobsCliController:
    """Build settings and store clients, run one command, return output lines."""

    def __init__(
        self,
        *,
        store_factory: StoreFactory | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store_factory = store_factory or JobStoreClient.from_settings
        self._sleep = sleep

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = _load_settings()
        if command.max_jobs is not None:
            settings.worker.max_jobs = command.max_jobs
        if command.poll_interval_ms is not None:
            settings.worker.poll_interval_seconds = command.poll_interval_ms / 1000
        _validate(settings.validate_for_worker)

        worker_id = command.worker_id or settings.worker.worker_id or default_worker_id()
        known = ", ".join(get_registered_types())
        lines = [
            f"Worker: {worker_id}",
            f"Type filter: {command.job_type or 'any'}",
            f"Max jobs: {settings.worker.max_jobs}",
            f"Poll mode: {command.poll}",
            f"Known types: {known}",
        ]
        if command.job_type and not is_known_type(command.job_type):
            logger.warning("Type %r has no registered handler", command.job_type)
            lines.append(f"Warning: type {command.job_type!r} has no registered handler")
        for line in lines:
            logger.info("%s", line)

        with self._store_factory(settings) as store:
            worker = JobWorker(
                store=store,
                worker_id=worker_id,
                project_root=command.project_root.resolve(),
                job_type=command.job_type,
                verbose=command.verbose,
                settings=settings,
                sleep=self._sleep,
            )
            summary = worker.run_loop(
                max_jobs=settings.worker.max_jobs,
                poll=command.poll,
                poll_interval_seconds=settings.worker.poll_interval_seconds,
            )

        lines.append(
            "Worker summary: "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} skipped={summary.skipped} "
            f"unknown_type={summary.unknown_type} idle_polls={summary.idle_polls} "
            f"claim_errors={summary.claim_errors} report_errors={summary.report_errors}",
        )
        return lines

    def list_jobs(self, command: JobsListCommand) -> list[str]:
        status = _parse_status(command.status)
        with self._store() as store:
            page = _unwrap(
                store.list_jobs(
                    status=status,
                    job_type=command.job_type,
                    limit=command.limit,
                    offset=command.offset,
                ),
            )
        if command.as_json:
            return [
                _dump(
                    {
                        "entries": [job.to_payload() for job in page.entries],
                        "total": page.total,
                        "limit": page.limit,
                        "offset": page.offset,
                    },
                ),
            ]

        lines = [f"Jobs: {len(page.entries)} of {page.total}"]
        lines.extend(f"  {_job_line(job)}" for job in page.entries)
        return lines

    def create_job(self, command: JobsCreateCommand) -> list[str]:
        params = _parse_params(command.params_json)
        if not is_known_type(command.job_type):
            logger.warning("Creating job of unregistered type %r", command.job_type)
        with self._store() as store:
            job = _unwrap(
                store.create_job(
                    JobCreate(
                        type=command.job_type,
                        params=params,
                        priority=command.priority,
                        max_retries=command.max_retries,
                    ),
                ),
            )
        return [f"Created job #{job.id} (type: {job.type}, priority: {job.priority})"]

    def job_status(self, command: JobRefCommand) -> list[str]:
        with self._store() as store:
            job = _unwrap(store.get_job(command.job_id))
        if command.as_json:
            return [_dump(job.to_payload())]

        lines = [
            f"Job: #{job.id}",
            f"Type: {job.type}",
            f"Status: {job.status.value}",
            f"Priority: {job.priority}",
            f"Retries: {job.retries}/{job.max_retries}",
            f"Worker: {job.worker_id or '-'}",
            f"Created: {_timestamp(job.created_at)}",
            f"Started: {_timestamp(job.started_at)}",
            f"Completed: {_timestamp(job.completed_at)}",
            f"Duration: {_duration(job.duration_ms)}",
            f"Error: {job.error or '-'}",
            f"Params: {_dump(job.params)}",
        ]
        if job.result is not None:
            lines.append(f"Result: {_dump(job.result)}")
        return lines

    def cancel_job(self, command: JobRefCommand) -> list[str]:
        with self._store() as store:
            job = _unwrap(store.cancel_job(command.job_id))
        return [f"Job cancelled: #{job.id} (type: {job.type})"]

    def retry_job(self, command: JobRefCommand) -> list[str]:
        """Ask the store to requeue a job by reporting a manual failure."""

        with self._store() as store:
            outcome = _unwrap(store.fail_job(command.job_id, MANUAL_RETRY_REASON))
        if outcome.retried:
            return [f"Job re-queued: #{outcome.job.id} (retry {outcome.job.retries}/{outcome.job.max_retries})"]
        return [
            f"Job #{outcome.job.id} not re-queued: retries exhausted "
            f"({outcome.job.retries}/{outcome.job.max_retries}); status is {outcome.job.status.value}",
        ]

    def sweep(self, command: JobsSweepCommand) -> list[str]:
        with self._store() as store:
            result = _unwrap(store.sweep_jobs(command.timeout_minutes))
        lines = [f"Swept {result.swept} stale job(s) older than {command.timeout_minutes} minute(s)"]
        lines.extend(f"  #{job.id} {job.type}" for job in result.jobs)
        return lines

    def stats(self, command: JobsStatsCommand) -> list[str]:
        with self._store() as store:
            stats = _unwrap(store.get_stats())
        if command.as_json:
            return [
                _dump(
                    {
                        "totalJobs": stats.total_jobs,
                        "byType": {
                            job_type: {
                                "byStatus": info.by_status,
                                "avgDurationMs": info.avg_duration_ms,
                                "failureRate": info.failure_rate,
                            }
                            for job_type, info in stats.by_type.items()
                        },
                    },
                ),
            ]

        lines = [f"Total jobs: {stats.total_jobs}"]
        for job_type in sorted(stats.by_type):
            info = stats.by_type[job_type]
            counts = " ".join(f"{status}={count}" for status, count in sorted(info.by_status.items()))
            rate = f"{info.failure_rate:.0%}" if info.failure_rate is not None else "-"
            lines.append(
                f"  {job_type}: {counts or '-'} avg={_duration(info.avg_duration_ms)} failure_rate={rate}",
            )
        return lines

    def ping(self, command: JobsPingCommand) -> list[str]:
        """Create a ping job and wait for a worker to complete it."""

        with self._store() as store:
            job = _unwrap(store.create_job(JobCreate(type="ping", priority=PING_PRIORITY)))
            lines = [f"Created ping job #{job.id}; waiting for a worker..."]
            for _ in range(command.polls):
                self._sleep(command.poll_interval_seconds)
                current = store.get_job(job.id)
                if not current.ok or current.data is None:
                    logger.warning("Polling ping job #%d failed: %s", job.id, current.message)
                    continue
                if current.data.status is JobStatus.COMPLETED:
                    worker = (current.data.result or {}).get("worker") or current.data.worker_id or "-"
                    lines.append(
                        f"Ping job #{job.id} completed by {worker} in {_duration(current.data.duration_ms)}",
                    )
                    return lines
                if current.data.status in {JobStatus.FAILED, JobStatus.CANCELLED}:
                    raise JobsCommandError(
                        f"Ping job #{job.id} {current.data.status.value}: {current.data.error or '-'}",
                    )
        raise JobsCommandError(
            f"Ping job #{job.id} was not completed after {command.polls} poll(s). Is a worker running?",
        )

    def _store(self) -> JobStoreClient:
        settings = _load_settings()
        _validate(settings.validate_for_store)
        return self._store_factory(settings)


def _load_settings() -> Settings:
    try:
        return Settings.from_env()
    except ValueError as error:
        raise JobsCommandError(str(error)) from error


def _validate(check: Callable[[], None]) -> None:
    try:
        check()
    except ValueError as error:
        raise JobsCommandError(str(error)) from error


def _unwrap(result: ApiResult[T]) -> T:
    if result.ok and result.data is not None:
        return result.data
    message = result.message or "Job store returned no data"
    if result.error is ApiErrorKind.UNAVAILABLE:
        message = f"{message}\n{UNAVAILABLE_HINT}"
    raise JobsCommandError(message)


def _parse_status(value: str | None) -> JobStatus | None:
    if value is None:
        return None
    try:
        return JobStatus(value.lower())
    except ValueError as error:
        raise JobsCommandError(f"Unknown job status: {value}") from error


def _parse_params(raw: str | None) -> dict[str, Any] | None:
    if raw is None or not raw.strip():
        return None
    try:
        params = json.loads(raw)
    except json.JSONDecodeError as error:
        raise JobsCommandError(f"--params is not valid JSON: {error}") from error
    if not isinstance(params, dict):
        raise JobsCommandError("--params must be a JSON object")
    return params


def _job_line(job: Job) -> str:
    line = (
        f"#{job.id} type={job.type} status={job.status.value} priority={job.priority} "
        f"retries={job.retries}/{job.max_retries} worker={job.worker_id or '-'} "
        f"created={_timestamp(job.created_at)}"
    )
    if job.error:
        line += f" error={job.error[:80]}"
    return line


def _timestamp(value: Any) -> str:
    return value.isoformat() if value is not None else "-"


def _duration(value_ms: int | None) -> str:
    if value_ms is None:
        return "-"
    if value_ms < 1000:  # noqa: PLR2004
        return f"{value_ms}ms"
    return f"{value_ms / 1000:.1f}s"


def _dump(payload: Any) -> str:
    return json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False)
