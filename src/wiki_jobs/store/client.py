"""HTTP client for the remote job store.

Every call returns an `ApiResult` instead of raising on transport problems, so
callers branch on `ApiErrorKind` to decide between log-and-skip and treating
the failure as a job outcome.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

import httpx

from wiki_jobs.config import Settings
from wiki_jobs.store.models import (
    FailOutcome,
    Job,
    JobCreate,
    JobList,
    JobStats,
    JobStatus,
    SweepResult,
    SweptJob,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
U = TypeVar("U")

DEFAULT_TIMEOUT_SECONDS = 5.0
DEFAULT_BATCH_TIMEOUT_SECONDS = 30.0
DEFAULT_SWEEP_TIMEOUT_MINUTES = 60
_MAX_ERROR_MESSAGE_CHARS = 300


class ApiErrorKind(str, Enum):
    """Transport failure taxonomy for job store calls."""

    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    BAD_REQUEST = "bad_request"
    SERVER_ERROR = "server_error"


class JobStoreError(RuntimeError):
    """Raised by `ApiResult.unwrap()` for callers that prefer exceptions."""

    def __init__(self, kind: ApiErrorKind, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


@dataclass(slots=True)
class ApiResult(Generic[T]):
    """Either `ok` with a typed payload or failed with an error kind and message."""

    ok: bool
    data: T | None = None
    error: ApiErrorKind | None = None
    message: str = ""
    status_code: int | None = None

    @classmethod
    def success(cls, data: T, *, status_code: int | None = None) -> ApiResult[T]:
        return cls(ok=True, data=data, status_code=status_code)

    @classmethod
    def failure(
        cls,
        error: ApiErrorKind,
        message: str,
        *,
        status_code: int | None = None,
    ) -> ApiResult[T]:
        return cls(ok=False, error=error, message=message, status_code=status_code)

    def map(self, fn: Callable[[T], U]) -> ApiResult[U]:
        """Convert the payload; a malformed payload becomes a server error."""

        if not self.ok:
            return ApiResult(
                ok=False,
                error=self.error,
                message=self.message,
                status_code=self.status_code,
            )
        try:
            return ApiResult.success(fn(self.data), status_code=self.status_code)  # type: ignore[arg-type]
        except (AttributeError, KeyError, TypeError, ValueError) as error:
            return ApiResult.failure(
                ApiErrorKind.SERVER_ERROR,
                f"Unexpected response shape from job store: {error}",
                status_code=self.status_code,
            )

    def unwrap(self) -> T:
        if not self.ok or self.error is not None:
            raise JobStoreError(
                self.error or ApiErrorKind.SERVER_ERROR,
                self.message,
                status_code=self.status_code,
            )
        return self.data  # type: ignore[return-value]


def classify_status_code(status_code: int) -> ApiErrorKind | None:
    """Map an HTTP status to the error taxonomy; `None` for success codes."""

    if 400 <= status_code < 500:  # noqa: PLR2004
        return ApiErrorKind.BAD_REQUEST
    if status_code >= 500:  # noqa: PLR2004
        return ApiErrorKind.SERVER_ERROR
    return None


class JobStoreClient:
    """Typed request/response boundary to the job store HTTP API."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        batch_timeout_seconds: float = DEFAULT_BATCH_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.strip().rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.batch_timeout_seconds = batch_timeout_seconds
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> JobStoreClient:
        return cls(
            base_url=settings.store.server_url,
            api_key=settings.store.api_key,
            timeout_seconds=settings.store.timeout_seconds,
            batch_timeout_seconds=settings.store.batch_timeout_seconds,
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    # -- health --------------------------------------------------------------

    def is_available(self) -> bool:
        """Return True when the store answers its health check as healthy."""

        result = self._request("GET", "/health")
        return result.ok and isinstance(result.data, dict) and result.data.get("status") == "healthy"

    # -- creation ------------------------------------------------------------

    def create_job(self, job: JobCreate) -> ApiResult[Job]:
        return self._request("POST", "/api/jobs", json=job.to_payload()).map(Job.from_payload)

    def create_jobs(self, jobs: Sequence[JobCreate]) -> ApiResult[list[Job]]:
        """Create many jobs atomically in one call."""

        return self._request(
            "POST",
            "/api/jobs",
            json=[job.to_payload() for job in jobs],
            timeout=self.batch_timeout_seconds,
        ).map(lambda rows: [Job.from_payload(row) for row in rows])

    def create_jobs_with_fallback(self, jobs: Sequence[JobCreate]) -> list[Job]:
        """Create jobs in one batch call, falling back to one-by-one creation.

        The fallback is best-effort: it returns whichever jobs were created and
        logs the ones that were not.
        """

        if not jobs:
            return []
        batch = self.create_jobs(jobs)
        if batch.ok and batch.data is not None:
            return batch.data

        logger.warning(
            "Batch job creation failed (%s: %s); falling back to individual creation",
            _kind_value(batch.error),
            batch.message,
        )
        created: list[Job] = []
        for job in jobs:
            single = self.create_job(job)
            if single.ok and single.data is not None:
                created.append(single.data)
            else:
                logger.warning(
                    "Failed to create %s job (%s: %s)",
                    job.type,
                    _kind_value(single.error),
                    single.message,
                )
        return created

    # -- reads ---------------------------------------------------------------

    def list_jobs(
        self,
        *,
        status: JobStatus | str | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> ApiResult[JobList]:
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status is not None:
            params["status"] = status.value if isinstance(status, JobStatus) else status
        if job_type:
            params["type"] = job_type
        return self._request("GET", "/api/jobs", params=params).map(_parse_job_list)

    def get_job(self, job_id: int) -> ApiResult[Job]:
        return self._request("GET", f"/api/jobs/{int(job_id)}").map(Job.from_payload)

    def get_stats(self) -> ApiResult[JobStats]:
        return self._request("GET", "/api/jobs/stats").map(JobStats.from_payload)

    # -- lifecycle -----------------------------------------------------------

    def claim_job(self, worker_id: str, job_type: str | None = None) -> ApiResult[Job | None]:
        """Atomically claim the next pending job; `data is None` means none available.

        Never retried here: a claim that timed out may still have succeeded on
        the store, and the sweep recovers such orphans.
        """

        payload: dict[str, Any] = {"workerId": worker_id}
        if job_type:
            payload["type"] = job_type
        return self._request("POST", "/api/jobs/claim", json=payload).map(_parse_claim)

    def start_job(self, job_id: int) -> ApiResult[Job]:
        return self._request("POST", f"/api/jobs/{int(job_id)}/start").map(Job.from_payload)

    def complete_job(self, job_id: int, result: dict[str, Any] | None) -> ApiResult[Job]:
        return self._request(
            "POST",
            f"/api/jobs/{int(job_id)}/complete",
            json={"result": result or {}},
        ).map(Job.from_payload)

    def fail_job(self, job_id: int, error: str) -> ApiResult[FailOutcome]:
        """Report failure; the store increments retries and may requeue the job."""

        return self._request(
            "POST",
            f"/api/jobs/{int(job_id)}/fail",
            json={"error": error},
        ).map(
            lambda payload: FailOutcome(
                job=Job.from_payload(payload),
                retried=bool(payload.get("retried", False)),
            ),
        )

    def cancel_job(self, job_id: int) -> ApiResult[Job]:
        return self._request("POST", f"/api/jobs/{int(job_id)}/cancel").map(Job.from_payload)

    def sweep_jobs(self, timeout_minutes: int = DEFAULT_SWEEP_TIMEOUT_MINUTES) -> ApiResult[SweepResult]:
        """Ask the store to recover jobs stuck in claimed/running past the timeout."""

        return self._request(
            "POST",
            "/api/jobs/sweep",
            json={"timeoutMinutes": timeout_minutes},
            timeout=self.batch_timeout_seconds,
        ).map(
            lambda payload: SweepResult(
                swept=int(payload.get("swept") or 0),
                jobs=[
                    SweptJob(id=int(row["id"]), type=str(row["type"]))
                    for row in payload.get("jobs") or []
                ],
            ),
        )

    # -- plumbing ------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> ApiResult[Any]:
        if not self.base_url:
            return ApiResult.failure(
                ApiErrorKind.UNAVAILABLE,
                "Job store URL is not configured (set WIKI_JOBS_SERVER_URL).",
            )

        request_timeout: Any = httpx.USE_CLIENT_DEFAULT
        if timeout is not None:
            request_timeout = httpx.Timeout(timeout)
        try:
            response = self._client.request(
                method,
                path,
                json=json,
                params=params,
                timeout=request_timeout,
            )
        except httpx.TimeoutException as exc:
            logger.warning("Job store %s %s timed out: %s", method, path, exc)
            return ApiResult.failure(ApiErrorKind.TIMEOUT, f"Request timed out: {method} {path}")
        except httpx.HTTPError as exc:
            logger.warning("Job store %s %s unavailable: %s", method, path, exc)
            return ApiResult.failure(ApiErrorKind.UNAVAILABLE, f"Job store unavailable: {exc}")

        kind = classify_status_code(response.status_code)
        if kind is not None:
            return ApiResult.failure(
                kind,
                f"HTTP {response.status_code}: {_error_message(response)}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            return ApiResult.failure(
                ApiErrorKind.SERVER_ERROR,
                f"Invalid JSON in job store response to {method} {path}",
                status_code=response.status_code,
            )
        return ApiResult.success(body, status_code=response.status_code)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> JobStoreClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _parse_job_list(payload: dict[str, Any]) -> JobList:
    return JobList(
        entries=[Job.from_payload(row) for row in payload.get("entries") or []],
        total=int(payload.get("total") or 0),
        limit=int(payload.get("limit") or 0),
        offset=int(payload.get("offset") or 0),
    )


def _parse_claim(payload: dict[str, Any]) -> Job | None:
    row = payload.get("job")
    if row is None:
        return None
    return Job.from_payload(row)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:_MAX_ERROR_MESSAGE_CHARS] or response.reason_phrase
    if isinstance(body, dict):
        for key in ("message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value[:_MAX_ERROR_MESSAGE_CHARS]
    return response.reason_phrase


def _kind_value(kind: ApiErrorKind | None) -> str:
    return kind.value if kind is not None else "unknown"
