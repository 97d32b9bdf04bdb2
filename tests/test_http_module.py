"""Tests for the feed HTTP fetcher."""

from __future__ import annotations

import httpx

from wiki_jobs.http.fetcher import DEFAULT_USER_AGENT, HttpFetcher


def _fetcher(handler) -> HttpFetcher:
    return HttpFetcher(transport=httpx.MockTransport(handler))


class TestHttpFetcher:
    def test_fetch_success(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["User-Agent"] == DEFAULT_USER_AGENT
            return httpx.Response(200, text="<rss/>", headers={"content-type": "application/rss+xml"})

        with _fetcher(handler) as fetcher:
            result = fetcher.fetch("https://news.example/rss")
        assert result.is_success
        assert result.content == "<rss/>"
        assert result.content_type == "application/rss+xml"
        assert result.error is None

    def test_fetch_http_error_status(self):
        with _fetcher(lambda request: httpx.Response(404)) as fetcher:
            result = fetcher.fetch("https://news.example/missing")
        assert not result.is_success
        assert result.status_code == 404
        assert result.error == "HTTP 404"

    def test_fetch_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("slow", request=request)

        with _fetcher(handler) as fetcher:
            result = fetcher.fetch("https://news.example/slow")
        assert not result.is_success
        assert result.status_code == 0
        assert result.error == "timeout"

    def test_fetch_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with _fetcher(handler) as fetcher:
            result = fetcher.fetch("https://news.example/down")
        assert not result.is_success
        assert result.error == "refused"

    def test_fetch_follows_redirects(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/old":
                return httpx.Response(301, headers={"location": "https://news.example/new"})
            return httpx.Response(200, text="moved")

        with _fetcher(handler) as fetcher:
            result = fetcher.fetch("https://news.example/old")
        assert result.content == "moved"
