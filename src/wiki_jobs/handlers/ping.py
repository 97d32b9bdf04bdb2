"""Liveness job: proves a worker can claim, run and report."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from wiki_jobs.handlers.base import JobHandlerContext, JobHandlerResult


def handle_ping(params: Mapping[str, Any], ctx: JobHandlerContext, /) -> JobHandlerResult:
    del params
    return JobHandlerResult.ok(
        {
            "ok": True,
            "worker": ctx.worker_id,
            "timestamp": datetime.now(tz=UTC).isoformat(),
        },
    )
