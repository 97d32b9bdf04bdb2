"""Handler contract shared by every job type."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from wiki_jobs.config import Settings

if TYPE_CHECKING:
    from wiki_jobs.store.client import JobStoreClient


@dataclass(slots=True)
class JobHandlerContext:
    """Capabilities a handler receives from the worker."""

    worker_id: str
    project_root: Path
    verbose: bool = False
    settings: Settings = field(default_factory=Settings)
    store: JobStoreClient | None = None

    def require_store(self) -> JobStoreClient:
        if self.store is None:
            raise RuntimeError("This job type needs a job store client in its context.")
        return self.store


@dataclass(slots=True)
class JobHandlerResult:
    """Handler outcome; `data` becomes the job result on success."""

    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @classmethod
    def ok(cls, data: dict[str, Any] | None = None) -> JobHandlerResult:
        return cls(success=True, data=data or {})

    @classmethod
    def fail(cls, error: str, data: dict[str, Any] | None = None) -> JobHandlerResult:
        return cls(success=False, data=data or {}, error=error)


class JobHandler(Protocol):
    """Callable that executes one job type."""

    def __call__(
        self,
        params: Mapping[str, Any],
        ctx: JobHandlerContext,
        /,
    ) -> JobHandlerResult: ...
