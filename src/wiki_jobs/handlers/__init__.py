"""Job handler registry: maps job-type strings to handler callables."""

from __future__ import annotations

from wiki_jobs.handlers.auto_update_digest import handle_auto_update_digest
from wiki_jobs.handlers.base import JobHandler, JobHandlerContext, JobHandlerResult
from wiki_jobs.handlers.batch_commit import handle_batch_commit
from wiki_jobs.handlers.citation_verify import handle_citation_verify
from wiki_jobs.handlers.page_create import handle_page_create
from wiki_jobs.handlers.page_improve import handle_page_improve
from wiki_jobs.handlers.ping import handle_ping

JOB_HANDLERS: dict[str, JobHandler] = {
    "ping": handle_ping,
    "citation-verify": handle_citation_verify,
    "page-improve": handle_page_improve,
    "page-create": handle_page_create,
    "auto-update-digest": handle_auto_update_digest,
    "batch-commit": handle_batch_commit,
}


def get_handler(job_type: str) -> JobHandler | None:
    return JOB_HANDLERS.get(job_type)


def is_known_type(job_type: str) -> bool:
    return job_type in JOB_HANDLERS


def get_registered_types() -> list[str]:
    return sorted(JOB_HANDLERS)


__all__ = [
    "JOB_HANDLERS",
    "JobHandler",
    "JobHandlerContext",
    "JobHandlerResult",
    "get_handler",
    "get_registered_types",
    "is_known_type",
]
