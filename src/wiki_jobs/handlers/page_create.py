"""Create a new wiki page through the content pipeline."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from wiki_jobs.handlers.base import JobHandlerContext, JobHandlerResult
from wiki_jobs.handlers.content import run_content_command, slugify
from wiki_jobs.handlers.params import JobParamsError, PageCreateParams


def handle_page_create(params: Mapping[str, Any], ctx: JobHandlerContext, /) -> JobHandlerResult:
    try:
        decoded = PageCreateParams.from_params(params)
    except JobParamsError as error:
        return JobHandlerResult.fail(str(error))

    page_id = slugify(decoded.title)
    if not page_id:
        return JobHandlerResult.fail(f"Invalid param: title {decoded.title!r} has no usable characters")

    result_base: dict[str, Any] = {"pageId": page_id, "title": decoded.title, "tier": decoded.tier}
    if decoded.batch_id:
        result_base["batchId"] = decoded.batch_id
    return run_content_command(
        ctx,
        template=ctx.settings.content.create_command,
        values={"title": decoded.title, "page_id": page_id, "tier": decoded.tier},
        result_base=result_base,
    )
