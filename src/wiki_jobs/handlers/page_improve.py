"""Improve one existing wiki page through the content pipeline."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from wiki_jobs.handlers.base import JobHandlerContext, JobHandlerResult
from wiki_jobs.handlers.content import run_content_command
from wiki_jobs.handlers.params import JobParamsError, PageImproveParams


def handle_page_improve(params: Mapping[str, Any], ctx: JobHandlerContext, /) -> JobHandlerResult:
    try:
        decoded = PageImproveParams.from_params(params)
    except JobParamsError as error:
        return JobHandlerResult.fail(str(error))

    result_base: dict[str, Any] = {"pageId": decoded.page_id, "tier": decoded.tier}
    if decoded.batch_id:
        result_base["batchId"] = decoded.batch_id
    return run_content_command(
        ctx,
        template=ctx.settings.content.improve_command,
        values={
            "page_id": decoded.page_id,
            "tier": decoded.tier,
            "directions": decoded.directions,
        },
        result_base=result_base,
    )
