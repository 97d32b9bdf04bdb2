"""Fan-in job: combine the file changes of a batch of content jobs into one PR.

Many content jobs run in parallel, each storing its file changes in its job
result. This job waits for all of them (by failing and being retried by the
store while any child is unfinished), applies the merged changes on a fresh
branch, runs the validation gate, commits, pushes, and opens a pull request.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from wiki_jobs.changes import apply_file_changes, merge_file_changes
from wiki_jobs.git import Git, GitError, sanitize_branch_name
from wiki_jobs.handlers.base import JobHandlerContext, JobHandlerResult
from wiki_jobs.handlers.params import BatchCommitParams, JobParamsError
from wiki_jobs.process import CommandTemplateError, render_command_template, run_command
from wiki_jobs.store.models import FileChange, JobStatus

logger = logging.getLogger(__name__)

MAX_INCOMPLETE_TOLERANCE = 0
MAX_PR_BODY_ERRORS = 10
_ERROR_MAX_CHARS = 500
_STATUS_ICONS = {JobStatus.COMPLETED.value: "✅", JobStatus.FAILED.value: "❌"}
_PENDING_ICON = "⏳"


@dataclass(slots=True)
class ChildSummary:
    id: int
    type: str
    status: str
    page_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.type, "status": self.status, "pageId": self.page_id}


@dataclass(slots=True)
class CollectedChildren:
    summaries: list[ChildSummary]
    change_sets: list[list[FileChange]]
    errors: list[str]
    incomplete_count: int


def handle_batch_commit(params: Mapping[str, Any], ctx: JobHandlerContext, /) -> JobHandlerResult:
    try:
        decoded = BatchCommitParams.from_params(params)
    except JobParamsError as error:
        return JobHandlerResult.fail(str(error))

    logger.info(
        "Starting batch %s with %d child job(s)",
        decoded.batch_id,
        len(decoded.child_job_ids),
    )
    started = time.monotonic()
    try:
        return _run_batch(decoded, ctx, started)
    except (GitError, OSError) as error:
        return JobHandlerResult.fail(
            str(error)[:_ERROR_MAX_CHARS],
            {
                "batchId": decoded.batch_id,
                "childJobIds": decoded.child_job_ids,
                "durationMs": _elapsed_ms(started),
            },
        )


def _run_batch(
    decoded: BatchCommitParams,
    ctx: JobHandlerContext,
    started: float,
) -> JobHandlerResult:
    collected = collect_children(ctx, decoded.child_job_ids)
    summaries = [summary.to_dict() for summary in collected.summaries]
    errors = list(collected.errors)

    if collected.incomplete_count > MAX_INCOMPLETE_TOLERANCE:
        return JobHandlerResult.fail(
            f"{collected.incomplete_count} child job(s) not yet completed. "
            "Retry after all children finish.",
            {
                "batchId": decoded.batch_id,
                "childJobIds": decoded.child_job_ids,
                "incompleteCount": collected.incomplete_count,
                "jobSummaries": summaries,
                "errors": errors,
            },
        )

    merged = merge_file_changes(collected.change_sets)
    if not merged:
        return JobHandlerResult.ok(
            {
                "batchId": decoded.batch_id,
                "childJobIds": decoded.child_job_ids,
                "filesApplied": 0,
                "jobSummaries": summaries,
                "message": "No file changes to commit (all jobs may have produced no changes)",
            },
        )
    logger.info("Collected %d file change(s) from %d job(s)", len(merged), len(summaries))

    repository = ctx.settings.repository
    git = Git(ctx.project_root, timeout_seconds=repository.git_timeout_seconds)
    branch = sanitize_branch_name(
        decoded.branch_name or f"batch/{decoded.batch_id}",
        fallback=sanitize_branch_name(f"batch/{decoded.batch_id}"),
    )
    try:
        return _commit_on_branch(decoded, ctx, git, branch, merged, collected, errors, started)
    except (GitError, OSError):
        # A failed commit leaves staged files behind that `checkout -- .` keeps.
        git.run("reset", "--hard")
        raise
    finally:
        _return_to_trunk(git, repository.trunk_branch)


def _commit_on_branch(  # noqa: PLR0913, PLR0914, PLR0917
    decoded: BatchCommitParams,
    ctx: JobHandlerContext,
    git: Git,
    branch: str,
    merged: list[FileChange],
    collected: CollectedChildren,
    errors: list[str],
    started: float,
) -> JobHandlerResult:
    repository = ctx.settings.repository
    summaries = [summary.to_dict() for summary in collected.summaries]
    _prepare_branch(git, branch, trunk=repository.trunk_branch, remote=repository.remote)

    applied = apply_file_changes(
        ctx.project_root,
        merged,
        prefixes=repository.content_prefixes,
        suffixes=repository.content_suffixes,
    )
    errors.extend(f"Apply error: {error}" for error in applied.errors)
    logger.info("Applied %d file change(s) on %s", applied.applied, branch)

    validation_passed = _run_validation_gate(ctx)

    if applied.applied_paths:
        git.run_checked("add", "--", *applied.applied_paths)
    if not git.has_staged_changes():
        return JobHandlerResult.ok(
            {
                "batchId": decoded.batch_id,
                "childJobIds": decoded.child_job_ids,
                "branch": branch,
                "filesApplied": applied.applied,
                "jobSummaries": summaries,
                "errors": errors,
                "message": "No changes after applying (files may be identical to trunk)",
            },
        )

    completed_count = sum(1 for summary in collected.summaries if summary.status == JobStatus.COMPLETED.value)
    failed_count = sum(1 for summary in collected.summaries if summary.status == JobStatus.FAILED.value)
    commit_message = "\n".join(
        [
            decoded.pr_title,
            "",
            f"Batch: {decoded.batch_id}",
            f"Jobs: {completed_count} completed, {failed_count} failed",
            f"Files: {applied.applied} changed",
            "Validation: passed" if validation_passed else "Validation: issues detected",
        ],
    )
    git.run_checked(
        "commit",
        "-m",
        commit_message,
        env={
            "GIT_AUTHOR_NAME": repository.bot_name,
            "GIT_AUTHOR_EMAIL": repository.bot_email,
            "GIT_COMMITTER_NAME": repository.bot_name,
            "GIT_COMMITTER_EMAIL": repository.bot_email,
        },
    )
    git.run_checked(
        "push",
        "--force-with-lease",
        "-u",
        repository.remote,
        branch,
        timeout_seconds=repository.push_timeout_seconds,
    )

    body = build_pr_body(
        batch_id=decoded.batch_id,
        pr_body=decoded.pr_body,
        summaries=collected.summaries,
        files_applied=applied.applied,
        validation_passed=validation_passed,
        errors=errors,
    )
    pr_url = _create_pull_request(ctx, decoded, branch=branch, body=body)

    return JobHandlerResult.ok(
        {
            "batchId": decoded.batch_id,
            "childJobIds": decoded.child_job_ids,
            "branch": branch,
            "prUrl": pr_url,
            "filesApplied": applied.applied,
            "validationPassed": validation_passed,
            "jobSummaries": summaries,
            "durationMs": _elapsed_ms(started),
            "errors": errors,
        },
    )


def collect_children(ctx: JobHandlerContext, child_job_ids: Sequence[int]) -> CollectedChildren:
    """Fetch every child job; unreachable records become errors, not aborts."""

    store = ctx.require_store()
    summaries: list[ChildSummary] = []
    change_sets: list[list[FileChange]] = []
    errors: list[str] = []
    incomplete = 0

    for job_id in child_job_ids:
        fetched = store.get_job(job_id)
        if not fetched.ok or fetched.data is None:
            errors.append(f"Failed to fetch job #{job_id}: {fetched.message}")
            continue

        job = fetched.data
        result = job.result or {}
        page_id = result.get("pageId")
        summaries.append(
            ChildSummary(
                id=job.id,
                type=job.type,
                status=job.status.value,
                page_id=page_id if isinstance(page_id, str) else None,
            ),
        )

        if job.status is not JobStatus.COMPLETED:
            incomplete += 1
            if job.status is JobStatus.FAILED:
                errors.append(f"Job #{job_id} ({job.type}) failed: {job.error or 'unknown error'}")
            else:
                errors.append(f"Job #{job_id} ({job.type}) not yet completed (status: {job.status.value})")
            continue

        changes: list[FileChange] = []
        for raw_change in result.get("fileChanges") or []:
            try:
                changes.append(FileChange.from_dict(raw_change))
            except ValueError as error:
                errors.append(f"Job #{job_id} ({job.type}) has an invalid file change: {error}")
        change_sets.append(changes)

    return CollectedChildren(
        summaries=summaries,
        change_sets=change_sets,
        errors=errors,
        incomplete_count=incomplete,
    )


def build_pr_body(  # noqa: PLR0913
    *,
    batch_id: str,
    pr_body: str,
    summaries: Sequence[ChildSummary],
    files_applied: int,
    validation_passed: bool,
    errors: Sequence[str],
) -> str:
    lines = ["## Summary", ""]
    if pr_body:
        lines.extend([pr_body, ""])
    lines.append(f"- **Batch**: `{batch_id}`")
    lines.append(f"- **Files changed**: {files_applied}")
    lines.append(f"- **Validation**: {'Passed' if validation_passed else 'Issues detected'}")
    lines.append("")

    lines.extend(["## Job Results", "", "| Job | Type | Status | Page |", "|-----|------|--------|------|"])
    for summary in summaries:
        icon = _STATUS_ICONS.get(summary.status, _PENDING_ICON)
        lines.append(f"| #{summary.id} | {summary.type} | {icon} {summary.status} | {summary.page_id or '-'} |")
    lines.append("")

    completed = sum(1 for summary in summaries if summary.status == JobStatus.COMPLETED.value)
    lines.append(f"**{completed}/{len(summaries)}** jobs completed successfully.")

    if errors:
        lines.extend(["", "## Errors", ""])
        lines.extend(f"- {error}" for error in errors[:MAX_PR_BODY_ERRORS])
        if len(errors) > MAX_PR_BODY_ERRORS:
            lines.append(f"- ...and {len(errors) - MAX_PR_BODY_ERRORS} more")

    return "\n".join(lines)


def _prepare_branch(git: Git, branch: str, *, trunk: str, remote: str) -> None:
    """Start `branch` from a fresh trunk, resetting it if a previous attempt left it behind."""

    checkout = git.run("checkout", trunk)
    refreshed = checkout.ok and git.run("pull", "--ff-only", remote, trunk).ok
    if not refreshed:
        fetch = git.run("fetch", remote, trunk)
        logger.warning(
            "Could not fast-forward %s before branching (fetch %s); continuing",
            trunk,
            "succeeded" if fetch.ok else "failed",
        )

    if git.run("checkout", "-b", branch).ok:
        return
    git.run_checked("checkout", branch)
    git.run_checked("reset", "--hard", trunk)


def _return_to_trunk(git: Git, trunk: str) -> None:
    """Leave the shared working tree on trunk so later jobs never edit batch text."""

    checkout = git.run("checkout", trunk)
    if not checkout.ok:
        logger.warning("Could not return to %s after batch: %s", trunk, checkout.describe_failure())


def _run_validation_gate(ctx: JobHandlerContext) -> bool:
    repository = ctx.settings.repository
    try:
        argv = render_command_template(repository.validate_command, {})
    except CommandTemplateError as error:
        logger.warning("Validation gate skipped: %s", error)
        return False

    gate = run_command(
        argv,
        cwd=ctx.project_root,
        timeout_seconds=repository.validate_timeout_seconds,
    )
    if not gate.ok:
        logger.warning("Validation gate had issues (continuing with commit): %s", gate.describe_failure())
        return False
    return True


def _create_pull_request(
    ctx: JobHandlerContext,
    decoded: BatchCommitParams,
    *,
    branch: str,
    body: str,
) -> str:
    repository = ctx.settings.repository
    args = [
        repository.pr_command,
        "pr",
        "create",
        "--title",
        decoded.pr_title,
        "--body",
        body,
        "--base",
        repository.trunk_branch,
        "--head",
        branch,
    ]
    for label in decoded.pr_labels:
        args.extend(["--label", label])

    created = run_command(args, cwd=ctx.project_root, timeout_seconds=repository.pr_timeout_seconds)
    if not created.ok:
        logger.warning(
            "Pull request creation failed, create it manually for %s: %s",
            branch,
            created.describe_failure(),
        )
        return ""
    return created.stdout.strip()


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
