"""Route digest items onto existing wiki pages by id and title mentions."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from wiki_jobs.digest.models import FeedItem, PageUpdate, WikiPage

logger = logging.getLogger(__name__)

PAGE_SUFFIXES = (".mdx", ".md")
MIN_MATCH_TERM_LENGTH = 4
MAX_DIRECTION_ITEMS = 5
_FRONT_MATTER_DELIMITER = "---"


@dataclass(slots=True)
class _PageMatches:
    page: WikiPage
    items: list[FeedItem] = field(default_factory=list)


def load_page_index(content_dir: Path) -> list[WikiPage]:
    """Index every page file under `content_dir`; ids come from file names."""

    if not content_dir.is_dir():
        logger.warning("Content directory %s does not exist; page index is empty", content_dir)
        return []

    pages: dict[str, WikiPage] = {}
    for path in sorted(content_dir.rglob("*")):
        if path.suffix not in PAGE_SUFFIXES or not path.is_file():
            continue
        page_id = path.parent.name if path.stem == "index" else path.stem
        if not page_id or page_id.startswith(("_", ".")) or page_id in pages:
            continue
        front_matter = read_front_matter(path)
        pages[page_id] = WikiPage(
            page_id=page_id,
            title=front_matter.get("title") or page_id.replace("-", " ").title(),
            path=path,
        )
    return list(pages.values())


def read_front_matter(path: Path) -> dict[str, str]:
    """Top-level scalar `key: value` pairs from a leading `---` block."""

    try:
        lines = path.read_text("utf-8").splitlines()
    except (OSError, UnicodeDecodeError):
        return {}
    if not lines or lines[0].strip() != _FRONT_MATTER_DELIMITER:
        return {}

    values: dict[str, str] = {}
    for line in lines[1:]:
        if line.strip() == _FRONT_MATTER_DELIMITER:
            break
        if line.startswith((" ", "\t", "-", "#")) or ":" not in line:
            continue
        key, _, raw_value = line.partition(":")
        value = raw_value.strip().strip("\"'")
        if value:
            values[key.strip()] = value
    return values


def tier_for_match_count(count: int) -> str:
    """More independent mentions warrant a deeper rewrite."""

    if count >= 4:  # noqa: PLR2004
        return "deep"
    if count >= 2:  # noqa: PLR2004
        return "standard"
    return "polish"


def route_items(
    items: Iterable[FeedItem],
    pages: Sequence[WikiPage],
    *,
    max_pages: int,
) -> list[PageUpdate]:
    """Plan page updates ordered by how many items mention each page."""

    matchers = [(page, _page_pattern(page)) for page in pages]
    matches: dict[str, _PageMatches] = {}
    for item in items:
        text = f"{item.title}\n{item.summary or ''}".lower()
        for page, pattern in matchers:
            if pattern is not None and pattern.search(text):
                matches.setdefault(page.page_id, _PageMatches(page=page)).items.append(item)

    ranked = sorted(matches.values(), key=lambda match: (-len(match.items), match.page.page_id))
    updates = [
        PageUpdate(
            page_id=match.page.page_id,
            tier=tier_for_match_count(len(match.items)),
            directions=_directions(match.items),
            reason=f"{len(match.items)} news item(s) mention {match.page.title}",
            page_title=match.page.title,
            relevant_items=len(match.items),
        )
        for match in ranked[:max_pages]
    ]
    logger.info("Routing: %d page(s) matched, %d planned", len(ranked), len(updates))
    return updates


def _page_pattern(page: WikiPage) -> re.Pattern[str] | None:
    terms = {
        term.lower()
        for term in (page.page_id, page.page_id.replace("-", " "), page.title, *page.aliases)
        if len(term) >= MIN_MATCH_TERM_LENGTH
    }
    if not terms:
        return None
    alternatives = "|".join(re.escape(term) for term in sorted(terms, key=len, reverse=True))
    return re.compile(rf"(?<![a-z0-9])(?:{alternatives})(?![a-z0-9])")


def _directions(items: Sequence[FeedItem]) -> str:
    headlines = "; ".join(item.title for item in items[:MAX_DIRECTION_ITEMS])
    extra = len(items) - MAX_DIRECTION_ITEMS
    if extra > 0:
        headlines += f"; and {extra} more"
    return f"Incorporate recent news: {headlines}"
