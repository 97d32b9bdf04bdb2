"""Fan-out job: turn today's news into page-improve jobs plus one batch-commit job.

1. fetch feeds, build a digest, and route it onto wiki pages (or take an
   explicit `updates` list from the params);
2. admit planned updates against the budget;
3. create one page-improve child per admitted update;
4. create the batch-commit job that later folds the children into one PR.

Children already created stay in the store if a later step fails.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from wiki_jobs.config import Settings
from wiki_jobs.digest.digest import SeenItemsStore, build_digest
from wiki_jobs.digest.feeds import fetch_all_sources
from wiki_jobs.digest.models import PageUpdate
from wiki_jobs.digest.planning import admit_updates
from wiki_jobs.digest.router import load_page_index, route_items
from wiki_jobs.handlers.base import JobHandlerContext, JobHandlerResult
from wiki_jobs.handlers.params import AutoUpdateDigestParams, JobParamsError
from wiki_jobs.http.fetcher import HttpFetcher
from wiki_jobs.store.models import JobCreate

logger = logging.getLogger(__name__)

CHILD_JOB_TYPE = "page-improve"
CHILD_PRIORITY = 5
CHILD_MAX_RETRIES = 2
COMMIT_JOB_TYPE = "batch-commit"
COMMIT_PRIORITY = 1
COMMIT_MAX_RETRIES = 5
PR_LABELS = ("auto-update",)
_REASON_MAX_CHARS = 200


def build_fetcher(settings: Settings) -> HttpFetcher:
    return HttpFetcher(timeout_seconds=settings.digest.request_timeout_seconds)


def handle_auto_update_digest(params: Mapping[str, Any], ctx: JobHandlerContext, /) -> JobHandlerResult:
    try:
        decoded = AutoUpdateDigestParams.from_params(params)
    except JobParamsError as error:
        return JobHandlerResult.fail(str(error))

    started = time.monotonic()
    today = datetime.now(tz=UTC).date()
    batch_id = f"auto-update-{today.isoformat()}-{int(time.time() * 1000)}"
    logger.info(
        "Auto-update %s (budget $%.2f, max pages %d, dry run %s)",
        batch_id,
        decoded.budget,
        decoded.max_pages,
        decoded.dry_run,
    )
    data: dict[str, Any] = {"batchId": batch_id, "date": today.isoformat()}

    if decoded.updates is not None:
        planned = decoded.updates[: decoded.max_pages]
        data.update({"sourcesChecked": 0, "itemsFetched": 0, "itemsRelevant": len(planned)})
    else:
        planned = _plan_from_feeds(decoded, ctx, data)
        if planned is None:
            return JobHandlerResult.ok(data)

    data["pagesPlanned"] = len(planned)
    if not planned:
        data.update({"phase": "routing", "message": "No pages matched for updates."})
        return JobHandlerResult.ok(data)

    plan = admit_updates(planned, decoded.budget)
    data["estimatedBudget"] = plan.estimated_cost
    data["skipped"] = [skipped.to_dict() for skipped in plan.skipped]

    if decoded.dry_run:
        data.update(
            {
                "phase": "dry-run",
                "plannedUpdates": [_planned_dict(update) for update in plan.admitted],
                "message": "Dry run: no child jobs created.",
            },
        )
        return JobHandlerResult.ok(data)

    store = ctx.require_store()
    children = store.create_jobs_with_fallback(
        [
            JobCreate(
                type=CHILD_JOB_TYPE,
                params={
                    "pageId": update.page_id,
                    "tier": update.tier,
                    "directions": update.directions,
                    "batchId": batch_id,
                },
                priority=CHILD_PRIORITY,
                max_retries=CHILD_MAX_RETRIES,
            )
            for update in plan.admitted
        ],
    )
    child_job_ids = [child.id for child in children]
    logger.info("Created %d %s job(s) for %s", len(child_job_ids), CHILD_JOB_TYPE, batch_id)

    batch_commit_job_id: int | None = None
    if child_job_ids:
        commit = store.create_job(
            JobCreate(
                type=COMMIT_JOB_TYPE,
                params={
                    "batchId": batch_id,
                    "childJobIds": child_job_ids,
                    "prTitle": f"Auto-update: {today.isoformat()} daily wiki refresh",
                    "prBody": _pr_body(data, len(child_job_ids)),
                    "prLabels": list(PR_LABELS),
                },
                priority=COMMIT_PRIORITY,
                max_retries=COMMIT_MAX_RETRIES,
            ),
        )
        if commit.ok and commit.data is not None:
            batch_commit_job_id = commit.data.id
            logger.info("Created %s job #%d", COMMIT_JOB_TYPE, batch_commit_job_id)
        else:
            logger.error("Failed to create %s job for %s: %s", COMMIT_JOB_TYPE, batch_id, commit.message)

    data.update(
        {
            "phase": "jobs-created",
            "childJobIds": child_job_ids,
            "batchCommitJobId": batch_commit_job_id,
            "plannedUpdates": [_planned_dict(update) for update in plan.admitted],
            "durationMs": int((time.monotonic() - started) * 1000),
        },
    )
    return JobHandlerResult.ok(data)


def _plan_from_feeds(
    decoded: AutoUpdateDigestParams,
    ctx: JobHandlerContext,
    data: dict[str, Any],
) -> list[PageUpdate] | None:
    """Fetch, digest and route; `None` means the run ends at the digest phase."""

    digest_settings = ctx.settings.digest
    with build_fetcher(ctx.settings) as fetcher:
        fetched = fetch_all_sources(
            fetcher,
            digest_settings.feeds,
            source_ids=decoded.sources,
            max_items_per_feed=digest_settings.max_items_per_feed,
        )
    for failure in fetched.failed_sources:
        logger.warning("Feed %s failed: %s", failure.source_id, failure.error)

    seen_store = SeenItemsStore(
        ctx.project_root / digest_settings.seen_items_path,
        retention_days=digest_settings.seen_items_retention_days,
    )
    digest = build_digest(
        fetched.items,
        fetched_sources=fetched.fetched_sources,
        failed_sources=fetched.failed_sources,
        previously_seen=seen_store.load(),
    )
    if digest.items and not decoded.dry_run:
        seen_store.record(digest.items)

    data.update(
        {
            "sourcesChecked": len(fetched.fetched_sources),
            "sourcesFailed": len(fetched.failed_sources),
            "itemsFetched": len(fetched.items),
            "itemsRelevant": len(digest.items),
        },
    )
    if not digest.items:
        data.update({"phase": "digest", "message": "No relevant news found. No child jobs created."})
        return None

    pages = load_page_index(ctx.project_root / digest_settings.content_dir)
    return route_items(digest.items, pages, max_pages=decoded.max_pages)


def _planned_dict(update: PageUpdate) -> dict[str, Any]:
    return {
        "pageId": update.page_id,
        "pageTitle": update.page_title,
        "tier": update.tier,
        "reason": update.reason[:_REASON_MAX_CHARS],
    }


def _pr_body(data: Mapping[str, Any], pages_updated: int) -> str:
    return (
        "Automated news-driven wiki update via job queue.\n\n"
        f"- **Sources checked**: {data.get('sourcesChecked', 0)}\n"
        f"- **Relevant items**: {data.get('itemsRelevant', 0)}\n"
        f"- **Pages updated**: {pages_updated}"
    )
