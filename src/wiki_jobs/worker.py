"""Worker that claims jobs from the store and dispatches them to handlers.

One job is in flight per process. Each iteration walks
idle -> claiming -> claimed -> starting -> executing -> reporting -> idle;
the only blocking points are store calls, the handler itself, and the
poll-mode sleep.
"""

from __future__ import annotations

import logging
import os
import signal
import string
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from wiki_jobs.config import Settings
from wiki_jobs.handlers import JOB_HANDLERS, JobHandler
from wiki_jobs.handlers.base import JobHandlerContext, JobHandlerResult
from wiki_jobs.store.client import JobStoreClient
from wiki_jobs.store.models import Job

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MAX_CHARS = 500
_BASE36_DIGITS = string.digits + string.ascii_lowercase


class WorkerState(str, Enum):
    IDLE = "idle"
    CLAIMING = "claiming"
    CLAIMED = "claimed"
    STARTING = "starting"
    EXECUTING = "executing"
    REPORTING = "reporting"


class IterationOutcome(str, Enum):
    """What one `run_once` call did."""

    NO_JOB = "no_job"
    CLAIM_FAILED = "claim_failed"
    SKIPPED = "skipped"
    UNKNOWN_TYPE = "unknown_type"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(slots=True)
class WorkerIterationOutcome:
    outcome: IterationOutcome
    job_id: int | None = None
    job_type: str | None = None
    error: str | None = None
    reported: bool = True

    @property
    def processed(self) -> bool:
        """A job was claimed, whatever happened to it afterwards."""

        return self.outcome not in {IterationOutcome.NO_JOB, IterationOutcome.CLAIM_FAILED}


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    unknown_type: int = 0
    idle_polls: int = 0
    claim_errors: int = 0
    report_errors: int = 0

    def record(self, iteration: WorkerIterationOutcome) -> None:
        if iteration.processed:
            self.processed += 1
        if not iteration.reported:
            self.report_errors += 1
        match iteration.outcome:
            case IterationOutcome.NO_JOB:
                self.idle_polls += 1
            case IterationOutcome.CLAIM_FAILED:
                self.claim_errors += 1
            case IterationOutcome.SKIPPED:
                self.skipped += 1
            case IterationOutcome.UNKNOWN_TYPE:
                self.unknown_type += 1
            case IterationOutcome.SUCCEEDED:
                self.succeeded += 1
            case IterationOutcome.FAILED:
                self.failed += 1


def default_worker_id() -> str:
    """`worker-<pid>-<milliseconds since epoch in base 36>`."""

    return f"worker-{os.getpid()}-{_base36(int(time.time() * 1000))}"


class JobWorker:
    """Claims, starts, executes and reports jobs one at a time."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: JobStoreClient,
        worker_id: str,
        project_root: Path,
        job_type: str | None = None,
        verbose: bool = False,
        settings: Settings | None = None,
        handlers: Mapping[str, JobHandler] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.worker_id = worker_id
        self.project_root = project_root
        self.job_type = job_type
        self.verbose = verbose
        self.settings = settings or Settings()
        self.handlers = dict(handlers) if handlers is not None else dict(JOB_HANDLERS)
        self.error_max_chars = self.settings.worker.error_max_chars or DEFAULT_ERROR_MAX_CHARS
        self.state = WorkerState.IDLE
        self._sleep = sleep
        self._stop_requested = False
        self._stop_signal_name: str | None = None

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def known_types(self) -> list[str]:
        return sorted(self.handlers)

    def run_once(self) -> WorkerIterationOutcome:
        """Claim at most one job and drive it to a reported terminal status."""

        try:
            return self._run_iteration()
        finally:
            self._transition(WorkerState.IDLE)

    def run_loop(
        self,
        *,
        max_jobs: int = 1,
        poll: bool = False,
        poll_interval_seconds: float = 30.0,
    ) -> WorkerRunSummary:
        """Process jobs until `max_jobs` are done or the queue is empty.

        In poll mode the worker keeps going after `max_jobs` and sleeps
        between empty claims until SIGINT/SIGTERM asks it to stop.
        """

        summary = WorkerRunSummary()
        with self._signal_handlers():
            while not self._stop_requested and (poll or summary.processed < max_jobs):
                iteration = self.run_once()
                summary.record(iteration)

                if iteration.processed:
                    logger.info("Processed %d/%d jobs", summary.processed, max_jobs)
                    if not poll and summary.processed >= max_jobs:
                        break
                    continue

                if not poll:
                    break
                logger.debug("No jobs available, waiting %.1fs", poll_interval_seconds)
                self._sleep_with_stop(poll_interval_seconds)

        if self._stop_requested:
            logger.info("Stopped on %s", self._stop_signal_name or "request")
        logger.info("Finished (processed %d jobs)", summary.processed)
        return summary

    def request_stop(self, *, signal_name: str = "request") -> None:
        """Stop after the in-flight job, if any, has been reported."""

        self._stop_requested = True
        self._stop_signal_name = signal_name

    def _run_iteration(self) -> WorkerIterationOutcome:
        self._transition(WorkerState.CLAIMING)
        claimed = self.store.claim_job(self.worker_id, self.job_type)
        if not claimed.ok:
            logger.error("Failed to claim job: %s", claimed.message)
            return WorkerIterationOutcome(IterationOutcome.CLAIM_FAILED, error=claimed.message)
        job = claimed.data
        if job is None:
            logger.debug("No pending jobs available (type: %s)", self.job_type or "any")
            return WorkerIterationOutcome(IterationOutcome.NO_JOB)

        self._transition(WorkerState.CLAIMED)
        logger.info("Claimed job #%d (type: %s)", job.id, job.type)

        self._transition(WorkerState.STARTING)
        started = self.store.start_job(job.id)
        if not started.ok:
            logger.error("Failed to start job #%d: %s", job.id, started.message)
            return WorkerIterationOutcome(
                IterationOutcome.SKIPPED,
                job_id=job.id,
                job_type=job.type,
                error=started.message,
            )

        handler = self.handlers.get(job.type)
        if handler is None:
            message = f"Unknown job type: {job.type}. Known types: {', '.join(self.known_types())}"
            logger.error("%s", message)
            return self._report_failure(job, message, IterationOutcome.UNKNOWN_TYPE)

        self._transition(WorkerState.EXECUTING)
        result = self._execute(handler, job)

        if result.success:
            return self._report_success(job, result)
        logger.error("Job #%d failed: %s", job.id, result.error)
        return self._report_failure(
            job,
            result.error or "Handler returned success: false",
            IterationOutcome.FAILED,
        )

    def _execute(self, handler: JobHandler, job: Job) -> JobHandlerResult:
        context = JobHandlerContext(
            worker_id=self.worker_id,
            project_root=self.project_root,
            verbose=self.verbose,
            settings=self.settings,
            store=self.store,
        )
        try:
            return handler(job.params, context)
        except Exception as error:  # noqa: BLE001
            message = str(error) or type(error).__name__
            logger.exception("Job #%d threw exception", job.id)
            return JobHandlerResult.fail(message[: self.error_max_chars])

    def _report_success(self, job: Job, result: JobHandlerResult) -> WorkerIterationOutcome:
        self._transition(WorkerState.REPORTING)
        reported = self.store.complete_job(job.id, result.data)
        if not reported.ok:
            logger.error("Failed to mark job #%d completed: %s", job.id, reported.message)
        else:
            logger.info("Job #%d completed successfully", job.id)
        return WorkerIterationOutcome(
            IterationOutcome.SUCCEEDED,
            job_id=job.id,
            job_type=job.type,
            reported=reported.ok,
        )

    def _report_failure(
        self,
        job: Job,
        error: str,
        outcome: IterationOutcome,
    ) -> WorkerIterationOutcome:
        self._transition(WorkerState.REPORTING)
        reported = self.store.fail_job(job.id, error)
        if not reported.ok:
            logger.error("Failed to mark job #%d failed: %s", job.id, reported.message)
        elif reported.data is not None and reported.data.retried:
            logger.info(
                "Job #%d requeued by store (retry %d/%d)",
                job.id,
                reported.data.job.retries,
                reported.data.job.max_retries,
            )
        return WorkerIterationOutcome(
            outcome,
            job_id=job.id,
            job_type=job.type,
            error=error,
            reported=reported.ok,
        )

    def _transition(self, state: WorkerState) -> None:
        if self.state is not state:
            logger.debug("Worker %s: %s -> %s", self.worker_id, self.state.value, state.value)
        self.state = state

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            self._sleep(min(0.1, remaining))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("Received %s, stopping after the current job", name)
            self.request_stop(signal_name=name)

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))
