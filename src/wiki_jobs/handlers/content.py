"""Shared runner for jobs that shell out to the content pipeline.

A content job runs its command against a clean working tree, captures every
changed content file as a `FileChange`, and restores the tree so the next job
on this worker starts from HEAD again. The captured changes travel in the job
result until a batch-commit job applies them.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Mapping
from typing import Any

from wiki_jobs.changes import is_content_file
from wiki_jobs.git import Git, collect_changed_files, restore_git_state
from wiki_jobs.handlers.base import JobHandlerContext, JobHandlerResult
from wiki_jobs.process import CommandTemplateError, render_command_template, run_command

logger = logging.getLogger(__name__)

_ERROR_TAIL_CHARS = 500
_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")


def slugify(title: str) -> str:
    """Page id derived from a title: lowercase words joined by hyphens."""

    return _NON_SLUG_CHARS.sub("-", title.lower()).strip("-")


def run_content_command(
    ctx: JobHandlerContext,
    *,
    template: str,
    values: Mapping[str, object],
    result_base: dict[str, Any],
) -> JobHandlerResult:
    """Run one content command and return its file changes as result data."""

    started = time.monotonic()
    repository = ctx.settings.repository
    git = Git(ctx.project_root, timeout_seconds=repository.git_timeout_seconds)

    try:
        argv = render_command_template(template, values)
    except CommandTemplateError as error:
        return JobHandlerResult.fail(str(error), dict(result_base))

    restore_git_state(git)
    try:
        logger.info("Running content command: %s", argv[0])
        command = run_command(
            argv,
            cwd=ctx.project_root,
            timeout_seconds=ctx.settings.content.command_timeout_seconds,
        )
        if not command.ok:
            return JobHandlerResult.fail(
                command.describe_failure()[-_ERROR_TAIL_CHARS:],
                {**result_base, "exitCode": command.exit_code, "timedOut": command.timed_out},
            )
        changes = collect_changed_files(
            git,
            path_filter=lambda path: is_content_file(
                path,
                prefixes=repository.content_prefixes,
                suffixes=repository.content_suffixes,
            ),
        )
    finally:
        restore_git_state(git)

    if ctx.verbose:
        logger.info("Content command produced %d file change(s)", len(changes))
    return JobHandlerResult.ok(
        {
            **result_base,
            "fileChanges": [change.to_dict() for change in changes],
            "filesChanged": len(changes),
            "durationMs": int((time.monotonic() - started) * 1000),
        },
    )
