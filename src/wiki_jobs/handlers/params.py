"""Typed decoding of the opaque per-job `params` map.

Each job type owns one dataclass; `from_params` validates the raw mapping and
raises `JobParamsError` with an operator-readable message.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from wiki_jobs.digest.models import PageUpdate

IMPROVE_TIERS = ("polish", "standard", "deep")
CREATE_TIERS = ("budget", "standard", "premium")
DEFAULT_DIGEST_BUDGET = 50.0
DEFAULT_DIGEST_MAX_PAGES = 10


class JobParamsError(ValueError):
    """Job params are missing or malformed."""


@dataclass(slots=True)
class CitationVerifyParams:
    page_id: str

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> CitationVerifyParams:
        return cls(page_id=_required_str(params, "pageId"))


@dataclass(slots=True)
class PageImproveParams:
    page_id: str
    tier: str = "standard"
    directions: str = ""
    batch_id: str | None = None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> PageImproveParams:
        return cls(
            page_id=_required_str(params, "pageId"),
            tier=_tier(params, IMPROVE_TIERS),
            directions=_optional_str(params, "directions") or "",
            batch_id=_optional_str(params, "batchId"),
        )


@dataclass(slots=True)
class PageCreateParams:
    title: str
    tier: str = "standard"
    batch_id: str | None = None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> PageCreateParams:
        return cls(
            title=_required_str(params, "title"),
            tier=_tier(params, CREATE_TIERS),
            batch_id=_optional_str(params, "batchId"),
        )


@dataclass(slots=True)
class AutoUpdateDigestParams:
    budget: float = DEFAULT_DIGEST_BUDGET
    max_pages: int = DEFAULT_DIGEST_MAX_PAGES
    sources: tuple[str, ...] | None = None
    dry_run: bool = False
    updates: list[PageUpdate] | None = None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> AutoUpdateDigestParams:
        budget = _number(params, "budget", DEFAULT_DIGEST_BUDGET)
        if budget < 0:
            raise JobParamsError("Invalid param: budget must be >= 0")
        max_pages = int(_number(params, "maxPages", DEFAULT_DIGEST_MAX_PAGES))
        if max_pages <= 0:
            raise JobParamsError("Invalid param: maxPages must be a positive integer")

        raw_sources = params.get("sources")
        sources: tuple[str, ...] | None = None
        if isinstance(raw_sources, str) and raw_sources.strip():
            sources = tuple(part.strip() for part in raw_sources.split(",") if part.strip())
        elif isinstance(raw_sources, list):
            sources = tuple(str(part).strip() for part in raw_sources if str(part).strip())
        elif raw_sources not in (None, ""):
            raise JobParamsError("Invalid param: sources must be a comma-separated string or list")

        raw_updates = params.get("updates")
        updates: list[PageUpdate] | None = None
        if raw_updates is not None:
            if not isinstance(raw_updates, list):
                raise JobParamsError("Invalid param: updates must be a list")
            updates = [_page_update(entry, index) for index, entry in enumerate(raw_updates)]

        return cls(
            budget=budget,
            max_pages=max_pages,
            sources=sources,
            dry_run=_bool(params, "dryRun"),
            updates=updates,
        )


@dataclass(slots=True)
class BatchCommitParams:
    batch_id: str
    child_job_ids: list[int]
    pr_title: str
    pr_body: str = ""
    pr_labels: list[str] = field(default_factory=list)
    branch_name: str | None = None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> BatchCommitParams:
        batch_id = _required_str(params, "batchId")
        raw_ids = params.get("childJobIds")
        if not isinstance(raw_ids, list) or not raw_ids:
            raise JobParamsError("Missing required param: childJobIds (must be non-empty array)")
        child_job_ids: list[int] = []
        for raw_id in raw_ids:
            if isinstance(raw_id, bool) or not isinstance(raw_id, int | str):
                raise JobParamsError(f"Invalid param: childJobIds contains {raw_id!r}")
            try:
                child_job_ids.append(int(raw_id))
            except ValueError as error:
                raise JobParamsError(f"Invalid param: childJobIds contains {raw_id!r}") from error
        pr_title = _required_str(params, "prTitle")

        raw_labels = params.get("prLabels") or []
        if not isinstance(raw_labels, list):
            raise JobParamsError("Invalid param: prLabels must be a list")

        return cls(
            batch_id=batch_id,
            child_job_ids=child_job_ids,
            pr_title=pr_title,
            pr_body=_optional_str(params, "prBody") or "",
            pr_labels=[str(label) for label in raw_labels if str(label).strip()],
            branch_name=_optional_str(params, "branchName"),
        )


def _page_update(entry: Any, index: int) -> PageUpdate:
    if not isinstance(entry, Mapping):
        raise JobParamsError(f"Invalid param: updates[{index}] must be an object")
    page_id = _optional_str(entry, "pageId")
    if not page_id:
        raise JobParamsError(f"Invalid param: updates[{index}].pageId is required")
    tier = _optional_str(entry, "tier") or "standard"
    if tier not in IMPROVE_TIERS:
        raise JobParamsError(
            f"Invalid param: updates[{index}].tier {tier!r}. Must be one of: {', '.join(IMPROVE_TIERS)}"
        )
    return PageUpdate(
        page_id=page_id,
        tier=tier,
        directions=_optional_str(entry, "directions") or "",
        reason=_optional_str(entry, "reason") or "",
        page_title=_optional_str(entry, "pageTitle"),
    )


def _required_str(params: Mapping[str, Any], key: str) -> str:
    value = params.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise JobParamsError(f"Missing required param: {key}")
    if not isinstance(value, str):
        raise JobParamsError(f"Invalid param: {key} must be a string")
    return value.strip()


def _optional_str(params: Mapping[str, Any], key: str) -> str | None:
    value = params.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise JobParamsError(f"Invalid param: {key} must be a string")
    return value.strip() or None


def _tier(params: Mapping[str, Any], allowed: tuple[str, ...]) -> str:
    tier = _optional_str(params, "tier") or "standard"
    if tier not in allowed:
        raise JobParamsError(f"Invalid tier: {tier!r}. Must be one of: {', '.join(allowed)}")
    return tier


def _number(params: Mapping[str, Any], key: str, default: float) -> float:
    value = params.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        raise JobParamsError(f"Invalid param: {key} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError) as error:
        raise JobParamsError(f"Invalid param: {key} must be a number") from error


def _bool(params: Mapping[str, Any], key: str) -> bool:
    value = params.get(key)
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"1", "true", "yes", "on"}:
        return True
    if isinstance(value, str) and value.strip().lower() in {"0", "false", "no", "off", ""}:
        return False
    raise JobParamsError(f"Invalid param: {key} must be a boolean")
