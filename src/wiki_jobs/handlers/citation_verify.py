"""Run the citation verification command for one page."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import Any

from wiki_jobs.handlers.base import JobHandlerContext, JobHandlerResult
from wiki_jobs.handlers.params import CitationVerifyParams, JobParamsError
from wiki_jobs.process import CommandTemplateError, render_command_template, run_command

logger = logging.getLogger(__name__)


def handle_citation_verify(params: Mapping[str, Any], ctx: JobHandlerContext, /) -> JobHandlerResult:
    try:
        decoded = CitationVerifyParams.from_params(params)
        argv = render_command_template(
            ctx.settings.content.verify_command,
            {"page_id": decoded.page_id},
        )
    except (JobParamsError, CommandTemplateError) as error:
        return JobHandlerResult.fail(str(error))

    started = time.monotonic()
    command = run_command(
        argv,
        cwd=ctx.project_root,
        timeout_seconds=ctx.settings.content.command_timeout_seconds,
    )
    data = {
        "pageId": decoded.page_id,
        "exitCode": command.exit_code,
        "output": command.output_tail(),
        "durationMs": int((time.monotonic() - started) * 1000),
    }
    if not command.ok:
        logger.warning("Citation verification failed for %s", decoded.page_id)
        return JobHandlerResult.fail(command.describe_failure()[-500:], data)
    return JobHandlerResult.ok(data)
