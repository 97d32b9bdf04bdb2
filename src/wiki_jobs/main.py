"""CLI entrypoint for wiki-jobs."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from wiki_jobs import __version__
from wiki_jobs.controllers import (
    JobRefCommand,
    JobsCliController,
    JobsCommandError,
    JobsCreateCommand,
    JobsListCommand,
    JobsPingCommand,
    JobsStatsCommand,
    JobsSweepCommand,
    WorkerCommand,
)
from wiki_jobs.store.models import JobStatus

click.rich_click.USE_MARKDOWN = True
JOBS_CONTROLLER = JobsCliController()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

C = TypeVar("C")


@click.group()
@click.version_option(version=__version__, prog_name="wiki-jobs")
def wiki_jobs() -> None:
    """Distributed job queue worker and operator commands for the wiki."""


@wiki_jobs.command("worker")
@click.option("--type", "job_type", default=None, help="Only claim jobs of this type.")
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after processing this many jobs. Defaults to `WIKI_JOBS_WORKER_MAX_JOBS` or 1.",
)
@click.option("--poll", is_flag=True, default=False, help="Keep polling for new jobs until stopped.")
@click.option(
    "--poll-interval",
    "poll_interval_ms",
    type=click.IntRange(min=0),
    default=None,
    help="Milliseconds to wait between empty claims in poll mode (default 30000).",
)
@click.option("--worker-id", default=None, help="Worker identifier reported to the store.")
@click.option("--verbose", is_flag=True, default=False, help="Debug logging.")
@click.option(
    "--project-root",
    type=click.Path(path_type=Path, file_okay=False, exists=True),
    default=Path(),
    show_default=True,
    help="Repository the handlers operate on.",
)
def worker(  # noqa: PLR0913
    job_type: str | None,
    max_jobs: int | None,
    poll: bool,
    poll_interval_ms: int | None,
    worker_id: str | None,
    verbose: bool,
    project_root: Path,
) -> None:
    """Claim and execute jobs from the job store.

    Exits 0 once the run finishes, whatever the job outcomes; job failures are
    reported to the store.
    """

    _configure_logging(verbose)
    _emit_lines(
        _run(
            JOBS_CONTROLLER.run_worker,
            WorkerCommand(
                job_type=job_type,
                max_jobs=max_jobs,
                poll=poll,
                poll_interval_ms=poll_interval_ms,
                worker_id=worker_id,
                verbose=verbose,
                project_root=project_root,
            ),
        ),
    )


@wiki_jobs.group()
def jobs() -> None:
    """Operator commands for the job store."""


@jobs.command("list")
@click.option(
    "--status",
    type=click.Choice([status.value for status in JobStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option("--type", "job_type", default=None, help="Optional job type filter.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max jobs to print.",
)
@click.option("--offset", type=click.IntRange(min=0), default=0, show_default=True)
@click.option("--json", "as_json", is_flag=True, default=False, help="Print raw JSON.")
def jobs_list(status: str | None, job_type: str | None, limit: int, offset: int, as_json: bool) -> None:
    """List jobs, newest first."""

    _emit_lines(
        _run(
            JOBS_CONTROLLER.list_jobs,
            JobsListCommand(
                status=status,
                job_type=job_type,
                limit=limit,
                offset=offset,
                as_json=as_json,
            ),
        ),
    )


@jobs.command("create")
@click.argument("job_type")
@click.option("--params", "params_json", default=None, help="Job params as a JSON object.")
@click.option("--priority", type=int, default=0, show_default=True, help="Higher runs first.")
@click.option("--max-retries", type=click.IntRange(min=0), default=3, show_default=True)
def jobs_create(job_type: str, params_json: str | None, priority: int, max_retries: int) -> None:
    """Create one job of `JOB_TYPE`."""

    _emit_lines(
        _run(
            JOBS_CONTROLLER.create_job,
            JobsCreateCommand(
                job_type=job_type,
                params_json=params_json,
                priority=priority,
                max_retries=max_retries,
            ),
        ),
    )


@jobs.command("status")
@click.argument("job_id", type=int)
@click.option("--json", "as_json", is_flag=True, default=False, help="Print raw JSON.")
def jobs_status(job_id: int, as_json: bool) -> None:
    """Show one job with params, result and error."""

    _emit_lines(_run(JOBS_CONTROLLER.job_status, JobRefCommand(job_id=job_id, as_json=as_json)))


@jobs.command("cancel")
@click.argument("job_id", type=int)
def jobs_cancel(job_id: int) -> None:
    """Cancel a pending or claimed job."""

    _emit_lines(_run(JOBS_CONTROLLER.cancel_job, JobRefCommand(job_id=job_id)))


@jobs.command("retry")
@click.argument("job_id", type=int)
def jobs_retry(job_id: int) -> None:
    """Re-queue a job through the store's retry policy."""

    _emit_lines(_run(JOBS_CONTROLLER.retry_job, JobRefCommand(job_id=job_id)))


@jobs.command("sweep")
@click.option(
    "--timeout",
    "timeout_minutes",
    type=click.IntRange(min=1),
    default=60,
    show_default=True,
    help="Minutes a claimed/running job may go without progress.",
)
def jobs_sweep(timeout_minutes: int) -> None:
    """Recover jobs left behind by crashed workers."""

    _emit_lines(_run(JOBS_CONTROLLER.sweep, JobsSweepCommand(timeout_minutes=timeout_minutes)))


@jobs.command("ping")
@click.option("--polls", type=click.IntRange(min=1), default=24, show_default=True)
@click.option("--interval", type=click.FloatRange(min=0), default=5.0, show_default=True, help="Seconds.")
def jobs_ping(polls: int, interval: float) -> None:
    """Create a ping job and wait until a worker completes it."""

    _emit_lines(
        _run(
            JOBS_CONTROLLER.ping,
            JobsPingCommand(polls=polls, poll_interval_seconds=interval),
        ),
    )


@jobs.command("stats")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print raw JSON.")
def jobs_stats(as_json: bool) -> None:
    """Show per-type job counts, durations and failure rates."""

    _emit_lines(_run(JOBS_CONTROLLER.stats, JobsStatsCommand(as_json=as_json)))


def _run(action: Callable[[C], list[str]], command: C) -> list[str]:
    try:
        return action(command)
    except JobsCommandError as error:
        raise click.ClickException(str(error)) from error


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    wiki_jobs()
