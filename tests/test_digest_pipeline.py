from __future__ import annotations

import json
from datetime import UTC, date, datetime
from pathlib import Path

import allure
import httpx
import pytest

from wiki_jobs.digest.digest import SeenItemsStore, build_digest, normalize_title
from wiki_jobs.digest.feeds import FeedParseError, fetch_all_sources, parse_feed
from wiki_jobs.digest.models import FeedItem, PageUpdate, WikiPage
from wiki_jobs.digest.planning import admit_updates, estimate_cost
from wiki_jobs.digest.router import load_page_index, route_items, tier_for_match_count
from wiki_jobs.http.fetcher import HttpFetcher

pytestmark = [
    allure.epic("News Digest"),
    allure.feature("Fetch, Dedup, Route, Budget"),
]

RSS_FEED = """<?xml version="1.0"?>
<rss version="2.0"><channel>
  <title>AI News</title>
  <item>
    <title>OpenAI ships new reasoning model</title>
    <link>https://news.example/1</link>
    <description>Benchmarks improve.</description>
    <pubDate>Tue, 10 Feb 2026 09:30:00 GMT</pubDate>
  </item>
  <item><title></title><link>https://news.example/empty</link></item>
  <item><title>Compute governance bill advances</title></item>
</channel></rss>
"""

ATOM_FEED = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Lab blog</title>
  <entry>
    <title>Interpretability update</title>
    <link rel="self" href="https://lab.example/self/1"/>
    <link rel="alternate" href="https://lab.example/posts/1"/>
    <summary>Sparse autoencoders at scale.</summary>
    <updated>2026-02-11T08:00:00Z</updated>
  </entry>
</feed>
"""


def _item(title: str, summary: str | None = None, source_id: str = "feed") -> FeedItem:
    return FeedItem(source_id=source_id, title=title, url="https://news.example/x", summary=summary)


def _page(tmp_path: Path, relative: str, title: str | None = None) -> None:
    path = tmp_path / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    front_matter = f'---\ntitle: "{title}"\nquality: 3\n---\n' if title else ""
    path.write_text(f"{front_matter}Body.\n", "utf-8")


def test_parse_rss_items() -> None:
    items = parse_feed(RSS_FEED, source_id="ai-news", feed_url="https://news.example/rss")

    assert [item.title for item in items] == ["OpenAI ships new reasoning model", "Compute governance bill advances"]
    assert items[0].url == "https://news.example/1"
    assert items[0].summary == "Benchmarks improve."
    assert items[0].published_at == datetime(2026, 2, 10, 9, 30, tzinfo=UTC)
    assert items[1].url == "https://news.example/rss"


def test_parse_atom_prefers_alternate_link() -> None:
    items = parse_feed(ATOM_FEED, source_id="lab", feed_url="https://lab.example/atom")

    assert len(items) == 1
    assert items[0].url == "https://lab.example/posts/1"
    assert items[0].summary == "Sparse autoencoders at scale."
    assert items[0].published_at == datetime(2026, 2, 11, 8, 0, tzinfo=UTC)


def test_parse_feed_rejects_garbage() -> None:
    with pytest.raises(FeedParseError):
        parse_feed("not xml at all", source_id="x", feed_url="https://x.example")
    with pytest.raises(FeedParseError):
        parse_feed("<html><body/></html>", source_id="x", feed_url="https://x.example")


def test_fetch_all_sources_records_failures() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "news.example":
            return httpx.Response(200, text=RSS_FEED)
        if request.url.host == "lab.example":
            return httpx.Response(200, text=ATOM_FEED)
        return httpx.Response(503)

    feeds = {
        "ai-news": "https://news.example/rss",
        "lab": "https://lab.example/atom",
        "down": "https://down.example/rss",
    }
    with HttpFetcher(transport=httpx.MockTransport(handler)) as fetcher:
        result = fetch_all_sources(fetcher, feeds, max_items_per_feed=1)
        selected = fetch_all_sources(fetcher, feeds, source_ids=["lab", "missing"])

    assert result.fetched_sources == ["ai-news", "lab"]
    assert [item.title for item in result.items] == ["OpenAI ships new reasoning model", "Interpretability update"]
    assert [(failure.source_id, failure.error) for failure in result.failed_sources] == [("down", "HTTP 503")]
    assert selected.fetched_sources == ["lab"]


def test_build_digest_dedups_within_run_and_across_runs() -> None:
    items = [
        _item("OpenAI ships new model!"),
        _item("openai ships NEW model", source_id="other"),
        _item("Old story we already covered"),
        _item("Hi"),
        _item("Fresh governance news"),
    ]
    seen_before = {normalize_title("Old story we already covered")}

    digest = build_digest(items, fetched_sources=["feed", "other"], previously_seen=seen_before)

    assert [item.title for item in digest.items] == ["OpenAI ships new model!", "Fresh governance news"]
    assert digest.duplicates == 1
    assert digest.previously_seen == 1


def test_normalize_title() -> None:
    assert normalize_title("  Hello, World! ") == "helloworld"
    assert len(normalize_title("x" * 100)) == 60


def test_seen_items_store_prunes_expired_entries(tmp_path: Path) -> None:
    path = tmp_path / "state" / "seen.json"
    store = SeenItemsStore(path, retention_days=90)

    assert store.load(today=date(2026, 2, 1)) == set()
    assert store.record([_item("Breaking story one"), _item("Hi")], today=date(2025, 10, 1)) == 1
    assert store.record([_item("Breaking story two")], today=date(2026, 1, 20)) == 1
    assert store.record([_item("Breaking story two")], today=date(2026, 1, 21)) == 0

    assert store.load(today=date(2026, 2, 1)) == {"breakingstorytwo"}
    assert json.loads(path.read_text("utf-8")) == {"seen_items": {"breakingstorytwo": "2026-01-20"}}


def test_seen_items_store_ignores_corrupt_state(tmp_path: Path) -> None:
    path = tmp_path / "seen.json"
    path.write_text("{not json", "utf-8")
    assert SeenItemsStore(path).load() == set()


def test_load_page_index_reads_titles_and_index_pages(tmp_path: Path) -> None:
    _page(tmp_path, "ai/alignment.mdx", "AI Alignment")
    _page(tmp_path, "compute-governance/index.mdx", "Compute Governance")
    _page(tmp_path, "openai.md")
    _page(tmp_path, "_drafts.mdx", "Draft")
    (tmp_path / "notes.txt").write_text("ignored", "utf-8")

    pages = {page.page_id: page.title for page in load_page_index(tmp_path)}

    assert pages == {
        "alignment": "AI Alignment",
        "compute-governance": "Compute Governance",
        "openai": "Openai",
    }
    assert load_page_index(tmp_path / "missing") == []


def test_route_items_ranks_pages_by_mentions(tmp_path: Path) -> None:
    pages = [
        WikiPage(page_id="openai", title="OpenAI", path=tmp_path / "openai.mdx"),
        WikiPage(page_id="compute-governance", title="Compute Governance", path=tmp_path / "cg.mdx"),
        WikiPage(page_id="anthropic", title="Anthropic", path=tmp_path / "a.mdx"),
        WikiPage(page_id="ai", title="AI", path=tmp_path / "ai.mdx"),
    ]
    items = [
        _item("OpenAI ships new model"),
        _item("Regulators look at OpenAI", "compute governance debate"),
        _item("OpenAI and partners", None),
        _item("Reopenairing is not a word"),
        _item("Compute governance bill advances"),
    ]

    updates = route_items(items, pages, max_pages=5)

    assert [(update.page_id, update.tier, update.relevant_items) for update in updates] == [
        ("openai", "standard", 3),
        ("compute-governance", "standard", 2),
    ]
    assert updates[0].directions.startswith("Incorporate recent news: OpenAI ships new model; ")
    assert updates[0].reason == "3 news item(s) mention OpenAI"
    assert len(route_items(items, pages, max_pages=1)) == 1


def test_tier_for_match_count() -> None:
    assert [tier_for_match_count(count) for count in (1, 2, 3, 4, 9)] == [
        "polish",
        "standard",
        "standard",
        "deep",
        "deep",
    ]


def test_budget_admission_stops_at_first_overrun() -> None:
    updates = [
        PageUpdate(page_id="a", tier="standard"),
        PageUpdate(page_id="b", tier="deep"),
        PageUpdate(page_id="c", tier="polish"),
    ]

    plan = admit_updates(updates, budget=10.0)

    assert [update.page_id for update in plan.admitted] == ["a"]
    assert [skipped.page_id for skipped in plan.skipped] == ["b", "c"]
    assert plan.estimated_cost == 6.5
    assert plan.skipped[0].reason == "budget exceeded ($6.50 of $10.00 used)"
    assert estimate_cost("unknown") == 6.5


def test_zero_budget_admits_nothing() -> None:
    plan = admit_updates([PageUpdate(page_id="a", tier="polish")], budget=0)
    assert plan.admitted == []
    assert len(plan.skipped) == 1
