"""Runtime configuration for the job store client, worker, and job handlers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

DEFAULT_IMPROVE_COMMAND = "crux content improve {page_id} --tier={tier} --directions={directions} --apply"
DEFAULT_CREATE_COMMAND = "crux content create {title} --tier={tier} --apply"
DEFAULT_VERIFY_COMMAND = "crux citations verify {page_id}"
DEFAULT_VALIDATE_COMMAND = "crux validate gate --fix"


@dataclass(slots=True)
class StoreSettings:
    """Job store HTTP endpoint settings."""

    server_url: str = ""
    api_key: str = ""
    timeout_seconds: float = 5.0
    batch_timeout_seconds: float = 30.0


@dataclass(slots=True)
class WorkerSettings:
    """Worker loop defaults (CLI flags override them)."""

    worker_id: str | None = None
    max_jobs: int = 1
    poll_interval_seconds: float = 30.0
    error_max_chars: int = 500


@dataclass(slots=True)
class RepositorySettings:
    """Version-control and review-system settings used by batch commits."""

    trunk_branch: str = "main"
    remote: str = "origin"
    pr_command: str = "gh"
    validate_command: str = DEFAULT_VALIDATE_COMMAND
    validate_timeout_seconds: int = 600
    git_timeout_seconds: int = 120
    push_timeout_seconds: int = 60
    pr_timeout_seconds: int = 30
    bot_name: str = "wiki-jobs-bot"
    bot_email: str = "bot@wiki-jobs.local"
    content_prefixes: tuple[str, ...] = ("content/docs/", "data/")
    content_suffixes: tuple[str, ...] = (".mdx", ".yaml", ".yml")


@dataclass(slots=True)
class DigestSettings:
    """News digest settings for the auto-update fan-out job."""

    feeds: dict[str, str] = field(default_factory=dict)
    seen_items_path: Path = Path(".wiki_jobs/seen_items.json")
    seen_items_retention_days: int = 90
    content_dir: Path = Path("content/docs")
    request_timeout_seconds: float = 30.0
    max_items_per_feed: int = 50


@dataclass(slots=True)
class ContentSettings:
    """Shell command templates for content-producing job handlers."""

    improve_command: str = DEFAULT_IMPROVE_COMMAND
    create_command: str = DEFAULT_CREATE_COMMAND
    verify_command: str = DEFAULT_VERIFY_COMMAND
    command_timeout_seconds: int = 1_800


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    store: StoreSettings = field(default_factory=StoreSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    repository: RepositorySettings = field(default_factory=RepositorySettings)
    digest: DigestSettings = field(default_factory=DigestSettings)
    content: ContentSettings = field(default_factory=ContentSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            store=StoreSettings(
                server_url=os.getenv("WIKI_JOBS_SERVER_URL", "").strip().rstrip("/"),
                api_key=os.getenv("WIKI_JOBS_SERVER_API_KEY", "").strip(),
                timeout_seconds=_env_float("WIKI_JOBS_SERVER_TIMEOUT_SECONDS", 5.0),
                batch_timeout_seconds=_env_float("WIKI_JOBS_SERVER_BATCH_TIMEOUT_SECONDS", 30.0),
            ),
            worker=WorkerSettings(
                worker_id=os.getenv("WIKI_JOBS_WORKER_ID") or None,
                max_jobs=_env_int("WIKI_JOBS_WORKER_MAX_JOBS", 1),
                poll_interval_seconds=_env_float("WIKI_JOBS_WORKER_POLL_INTERVAL_SECONDS", 30.0),
                error_max_chars=_env_int("WIKI_JOBS_WORKER_ERROR_MAX_CHARS", 500),
            ),
            repository=RepositorySettings(
                trunk_branch=os.getenv("WIKI_JOBS_TRUNK_BRANCH", "main"),
                remote=os.getenv("WIKI_JOBS_GIT_REMOTE", "origin"),
                pr_command=os.getenv("WIKI_JOBS_PR_COMMAND", "gh"),
                validate_command=os.getenv("WIKI_JOBS_VALIDATE_COMMAND", DEFAULT_VALIDATE_COMMAND),
                validate_timeout_seconds=_env_int("WIKI_JOBS_VALIDATE_TIMEOUT_SECONDS", 600),
                git_timeout_seconds=_env_int("WIKI_JOBS_GIT_TIMEOUT_SECONDS", 120),
                push_timeout_seconds=_env_int("WIKI_JOBS_PUSH_TIMEOUT_SECONDS", 60),
                pr_timeout_seconds=_env_int("WIKI_JOBS_PR_TIMEOUT_SECONDS", 30),
                bot_name=os.getenv("WIKI_JOBS_BOT_NAME", "wiki-jobs-bot"),
                bot_email=os.getenv("WIKI_JOBS_BOT_EMAIL", "bot@wiki-jobs.local"),
            ),
            digest=DigestSettings(
                feeds=_collect_feeds(),
                seen_items_path=Path(
                    os.getenv("WIKI_JOBS_SEEN_ITEMS_PATH", ".wiki_jobs/seen_items.json"),
                ),
                seen_items_retention_days=_env_int("WIKI_JOBS_SEEN_ITEMS_RETENTION_DAYS", 90),
                content_dir=Path(os.getenv("WIKI_JOBS_CONTENT_DIR", "content/docs")),
                request_timeout_seconds=_env_float("WIKI_JOBS_FEED_TIMEOUT_SECONDS", 30.0),
                max_items_per_feed=_env_int("WIKI_JOBS_FEED_MAX_ITEMS", 50),
            ),
            content=ContentSettings(
                improve_command=os.getenv("WIKI_JOBS_IMPROVE_COMMAND", DEFAULT_IMPROVE_COMMAND),
                create_command=os.getenv("WIKI_JOBS_CREATE_COMMAND", DEFAULT_CREATE_COMMAND),
                verify_command=os.getenv("WIKI_JOBS_VERIFY_COMMAND", DEFAULT_VERIFY_COMMAND),
                command_timeout_seconds=_env_int("WIKI_JOBS_CONTENT_TIMEOUT_SECONDS", 1800),
            ),
        )

    def validate_for_store(self) -> None:
        """Raise configuration error if the job store URL is set but malformed."""

        url = self.store.server_url
        if url:
            parsed = urlparse(url)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ValueError(
                    "Invalid WIKI_JOBS_SERVER_URL: "
                    f"{url!r}. Expected an absolute URL with http:// or https:// scheme.",
                )
        if self.store.timeout_seconds <= 0:
            raise ValueError("WIKI_JOBS_SERVER_TIMEOUT_SECONDS must be > 0.")
        if self.store.batch_timeout_seconds <= 0:
            raise ValueError("WIKI_JOBS_SERVER_BATCH_TIMEOUT_SECONDS must be > 0.")

    def validate_for_worker(self) -> None:
        """Raise configuration error for worker settings that cannot run."""

        self.validate_for_store()
        if self.worker.max_jobs <= 0:
            raise ValueError("WIKI_JOBS_WORKER_MAX_JOBS must be a positive integer.")
        if self.worker.poll_interval_seconds < 0:
            raise ValueError("WIKI_JOBS_WORKER_POLL_INTERVAL_SECONDS must be >= 0.")


def _collect_feeds() -> dict[str, str]:
    """Parse `WIKI_JOBS_FEEDS` as comma-separated `<source_id>|<feed_url>` pairs."""

    raw = os.getenv("WIKI_JOBS_FEEDS", "").strip()
    if not raw:
        return {}

    feeds: dict[str, str] = {}
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        if "|" not in token:
            raise ValueError(
                f"Invalid WIKI_JOBS_FEEDS entry: {token!r}. Expected format '<source_id>|<feed_url>'.",
            )
        source_id, feed_url = token.split("|", 1)
        source_id = source_id.strip()
        feed_url = feed_url.strip()
        parsed = urlparse(feed_url)
        if not source_id or parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(f"Invalid WIKI_JOBS_FEEDS entry: {token!r}.")
        feeds[source_id] = feed_url
    return feeds


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid numeric value for {name}: {value!r}") from error
