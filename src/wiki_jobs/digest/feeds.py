"""RSS/Atom feed fetching and parsing."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

from defusedxml import ElementTree

from wiki_jobs.digest.models import FeedFetchFailure, FeedItem
from wiki_jobs.http.fetcher import HttpFetcher

logger = logging.getLogger(__name__)


class FeedParseError(ValueError):
    """Feed body is not RSS or Atom XML."""


@dataclass(slots=True)
class FeedFetchResult:
    items: list[FeedItem] = field(default_factory=list)
    fetched_sources: list[str] = field(default_factory=list)
    failed_sources: list[FeedFetchFailure] = field(default_factory=list)


def fetch_all_sources(
    fetcher: HttpFetcher,
    feeds: Mapping[str, str],
    *,
    source_ids: Iterable[str] | None = None,
    max_items_per_feed: int = 50,
) -> FeedFetchResult:
    """Fetch the selected feeds; a failed feed is recorded and skipped."""

    selected = dict(feeds)
    if source_ids is not None:
        wanted = list(source_ids)
        unknown = [source_id for source_id in wanted if source_id not in feeds]
        if unknown:
            logger.warning("Unknown feed source(s) ignored: %s", ", ".join(unknown))
        selected = {source_id: feeds[source_id] for source_id in wanted if source_id in feeds}

    result = FeedFetchResult()
    for source_id, url in selected.items():
        response = fetcher.fetch(url)
        if not response.is_success:
            result.failed_sources.append(
                FeedFetchFailure(source_id=source_id, url=url, error=response.error or "fetch failed"),
            )
            continue
        try:
            items = parse_feed(response.content, source_id=source_id, feed_url=url)
        except FeedParseError as error:
            result.failed_sources.append(FeedFetchFailure(source_id=source_id, url=url, error=str(error)))
            continue
        result.fetched_sources.append(source_id)
        result.items.extend(items[:max_items_per_feed])
        logger.debug("Fetched %d item(s) from %s", len(items), source_id)

    return result


def parse_feed(raw_xml: str, *, source_id: str, feed_url: str) -> list[FeedItem]:
    try:
        root = ElementTree.fromstring(raw_xml)
    except ElementTree.ParseError as error:
        raise FeedParseError(f"Invalid RSS/Atom XML from {feed_url}") from error

    root_name = _local_name(root.tag)
    if root_name == "rss":
        return _parse_rss(root, source_id, feed_url)
    if root_name == "feed":
        return _parse_atom(root, source_id, feed_url)

    if root.findall(".//item"):
        channel = root.find(".//channel")
        return _parse_rss(channel if channel is not None else root, source_id, feed_url)
    if any(_local_name(element.tag) == "entry" for element in root.iter()):
        return _parse_atom(root, source_id, feed_url)

    raise FeedParseError(f"Unsupported feed format from {feed_url}")


def _parse_rss(root: ElementTree.Element, source_id: str, feed_url: str) -> list[FeedItem]:
    channel = root.find("channel")
    container = channel if channel is not None else root

    results: list[FeedItem] = []
    for item in container:
        if _local_name(item.tag) != "item":
            continue
        title = _child_text(item, "title")
        if not title:
            continue
        results.append(
            FeedItem(
                source_id=source_id,
                title=title,
                url=_child_text(item, "link") or feed_url,
                summary=_child_text(item, "description"),
                published_at=_parse_datetime(_child_text(item, "pubDate")),
            ),
        )
    return results


def _parse_atom(root: ElementTree.Element, source_id: str, feed_url: str) -> list[FeedItem]:
    results: list[FeedItem] = []
    for entry in root.iter():
        if _local_name(entry.tag) != "entry":
            continue
        title = _child_text(entry, "title")
        if not title:
            continue
        results.append(
            FeedItem(
                source_id=source_id,
                title=title,
                url=_atom_link(entry) or feed_url,
                summary=_child_text(entry, "summary") or _child_text(entry, "content"),
                published_at=_parse_datetime(
                    _child_text(entry, "published") or _child_text(entry, "updated"),
                ),
            ),
        )
    return results


def _atom_link(entry: ElementTree.Element) -> str | None:
    fallback: str | None = None
    for child in entry:
        if _local_name(child.tag) != "link":
            continue
        href = child.attrib.get("href", "").strip()
        if not href:
            continue
        rel = child.attrib.get("rel", "").strip().lower()
        if not rel or rel == "alternate":
            return href
        fallback = fallback or href
    return fallback


def _child_text(element: ElementTree.Element, name: str) -> str | None:
    target = name.lower()
    for child in element:
        if _local_name(child.tag) != target:
            continue
        text = "".join(child.itertext()).strip()
        if text:
            return text
    return None


def _local_name(tag: str) -> str:
    if "}" in tag:
        return tag.rsplit("}", 1)[1].lower()
    return tag.lower()


def _parse_datetime(raw_value: str | None) -> datetime | None:
    if not raw_value:
        return None
    try:
        parsed = parsedate_to_datetime(raw_value)
    except (TypeError, ValueError):
        parsed = None
    if parsed is None:
        try:
            parsed = datetime.fromisoformat(raw_value)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
