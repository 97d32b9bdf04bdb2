"""Data shapes for the news digest and update planning pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any


@dataclass(slots=True)
class FeedItem:
    """One entry read from an RSS or Atom feed."""

    source_id: str
    title: str
    url: str
    summary: str | None = None
    published_at: datetime | None = None


@dataclass(slots=True)
class FeedFetchFailure:
    source_id: str
    url: str
    error: str


@dataclass(slots=True)
class Digest:
    """Deduplicated relevant items from one fetch run."""

    items: list[FeedItem] = field(default_factory=list)
    fetched_sources: list[str] = field(default_factory=list)
    failed_sources: list[FeedFetchFailure] = field(default_factory=list)
    duplicates: int = 0
    previously_seen: int = 0


@dataclass(slots=True)
class WikiPage:
    """Page index entry used for routing news onto existing pages."""

    page_id: str
    title: str
    path: Path
    aliases: tuple[str, ...] = ()


@dataclass(slots=True)
class PageUpdate:
    """Planned improvement of one page, the unit of fan-out."""

    page_id: str
    tier: str = "standard"
    directions: str = ""
    reason: str = ""
    page_title: str | None = None
    relevant_items: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "pageId": self.page_id,
            "tier": self.tier,
            "directions": self.directions,
            "reason": self.reason,
            "pageTitle": self.page_title,
        }


@dataclass(slots=True)
class SkippedUpdate:
    page_id: str
    tier: str
    cost: float
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"pageId": self.page_id, "tier": self.tier, "cost": self.cost, "reason": self.reason}


@dataclass(slots=True)
class BudgetPlan:
    """Budget admission outcome: admitted updates in order, then the skipped tail."""

    admitted: list[PageUpdate] = field(default_factory=list)
    skipped: list[SkippedUpdate] = field(default_factory=list)
    estimated_cost: float = 0.0
    budget: float = 0.0
