from __future__ import annotations

from pathlib import Path

import allure
import pytest

from wiki_jobs.config import Settings, StoreSettings, WorkerSettings

pytestmark = [
    allure.epic("Job Queue"),
    allure.feature("Configuration"),
]


def test_from_env_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("WIKI_JOBS_SERVER_URL", "WIKI_JOBS_SERVER_API_KEY", "WIKI_JOBS_FEEDS", "WIKI_JOBS_WORKER_MAX_JOBS"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.store.server_url == ""
    assert settings.store.timeout_seconds == 5.0
    assert settings.store.batch_timeout_seconds == 30.0
    assert settings.worker.max_jobs == 1
    assert settings.worker.poll_interval_seconds == 30.0
    assert settings.digest.feeds == {}
    assert settings.digest.seen_items_retention_days == 90
    assert settings.repository.trunk_branch == "main"


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WIKI_JOBS_SERVER_URL", "https://jobs.example/ ")
    monkeypatch.setenv("WIKI_JOBS_SERVER_API_KEY", " token ")
    monkeypatch.setenv("WIKI_JOBS_WORKER_MAX_JOBS", "7")
    monkeypatch.setenv("WIKI_JOBS_WORKER_POLL_INTERVAL_SECONDS", "2.5")
    monkeypatch.setenv("WIKI_JOBS_FEEDS", "news|https://news.example/rss, lab|https://lab.example/atom.xml")
    monkeypatch.setenv("WIKI_JOBS_SEEN_ITEMS_PATH", "state/seen.json")
    monkeypatch.setenv("WIKI_JOBS_PR_COMMAND", "hub")

    settings = Settings.from_env()

    assert settings.store.server_url == "https://jobs.example"
    assert settings.store.api_key == "token"
    assert settings.worker.max_jobs == 7
    assert settings.worker.poll_interval_seconds == 2.5
    assert settings.digest.feeds == {
        "news": "https://news.example/rss",
        "lab": "https://lab.example/atom.xml",
    }
    assert settings.digest.seen_items_path == Path("state/seen.json")
    assert settings.repository.pr_command == "hub"


@pytest.mark.parametrize("raw", ["no-separator", "news|ftp://news.example/rss", "|https://news.example/rss"])
def test_from_env_rejects_bad_feed_entries(monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
    monkeypatch.setenv("WIKI_JOBS_FEEDS", raw)

    with pytest.raises(ValueError, match="Invalid WIKI_JOBS_FEEDS entry"):
        Settings.from_env()


def test_from_env_rejects_non_numeric_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WIKI_JOBS_WORKER_MAX_JOBS", "many")

    with pytest.raises(ValueError, match="Invalid integer value for WIKI_JOBS_WORKER_MAX_JOBS"):
        Settings.from_env()


def test_validate_for_store_rejects_relative_url() -> None:
    settings = Settings(store=StoreSettings(server_url="jobs.example"))

    with pytest.raises(ValueError, match="Invalid WIKI_JOBS_SERVER_URL"):
        settings.validate_for_store()


def test_validate_for_store_allows_missing_url() -> None:
    Settings().validate_for_store()
    Settings(store=StoreSettings(server_url="http://localhost:3000")).validate_for_store()


def test_validate_for_worker_rejects_non_positive_max_jobs() -> None:
    settings = Settings(worker=WorkerSettings(max_jobs=0))

    with pytest.raises(ValueError, match="WIKI_JOBS_WORKER_MAX_JOBS"):
        settings.validate_for_worker()
