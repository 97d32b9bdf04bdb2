"""HTTP client for news feeds with retries and timeout."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; WikiJobsBot/0.1; feed digest)"


@dataclass(slots=True)
class FetchResult:
    """Result of an HTTP fetch operation."""

    url: str
    status_code: int
    content: str
    content_type: str
    is_success: bool
    error: str | None = None


class HttpFetcher:
    """HTTP client wrapper with retry, timeout, and user-agent configuration."""

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._timeout = httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds))
        self._client = httpx.Client(
            timeout=self._timeout,
            headers={
                "User-Agent": user_agent,
                "Accept": "application/rss+xml, application/atom+xml, application/xml;q=0.9, */*;q=0.8",
            },
            transport=transport or httpx.HTTPTransport(retries=max_retries),
            follow_redirects=True,
        )

    def fetch(self, url: str) -> FetchResult:
        """Fetch URL content, returning structured result."""

        try:
            response = self._client.get(url)
        except httpx.TimeoutException:
            logger.warning("Timeout fetching %s", url)
            return _failed(url, "timeout")
        except httpx.HTTPError as exc:
            logger.warning("HTTP error fetching %s: %s", url, exc)
            return _failed(url, str(exc))

        return FetchResult(
            url=url,
            status_code=response.status_code,
            content=response.text,
            content_type=response.headers.get("content-type", ""),
            is_success=response.is_success,
            error=None if response.is_success else f"HTTP {response.status_code}",
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpFetcher:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _failed(url: str, error: str) -> FetchResult:
    return FetchResult(
        url=url,
        status_code=0,
        content="",
        content_type="",
        is_success=False,
        error=error,
    )
