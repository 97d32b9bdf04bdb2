"""Shared test fixtures: an in-memory job store behind httpx.MockTransport and a git sandbox."""

from __future__ import annotations

import json
import shlex
import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx
import pytest

from wiki_jobs.config import ContentSettings, RepositorySettings, Settings
from wiki_jobs.handlers.base import JobHandlerContext
from wiki_jobs.store.client import JobStoreClient

STORE_URL = "http://jobs.test"
PYTHON = shlex.quote(sys.executable)


def _now() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass
class FakeJobStore:
    """Minimal job store honouring the claim/start/complete/fail lifecycle."""

    jobs: dict[int, dict[str, Any]] = field(default_factory=dict)
    requests: list[tuple[str, str]] = field(default_factory=list)
    forced_status: dict[tuple[str, str], int] = field(default_factory=dict)
    reject_batch_create: bool = False
    next_id: int = 1

    def add_job(  # noqa: PLR0913
        self,
        job_type: str,
        *,
        params: dict[str, Any] | None = None,
        status: str = "pending",
        result: dict[str, Any] | None = None,
        error: str | None = None,
        priority: int = 0,
        max_retries: int = 3,
    ) -> dict[str, Any]:
        job = {
            "id": self.next_id,
            "type": job_type,
            "status": status,
            "params": params,
            "result": result,
            "error": error,
            "priority": priority,
            "retries": 0,
            "maxRetries": max_retries,
            "workerId": None,
            "createdAt": _now(),
            "claimedAt": None,
            "startedAt": None,
            "completedAt": None,
        }
        self.jobs[self.next_id] = job
        self.next_id += 1
        return job

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def client(self) -> JobStoreClient:
        return JobStoreClient(base_url=STORE_URL, api_key="secret", transport=self.transport())

    def handle(self, request: httpx.Request) -> httpx.Response:  # noqa: C901, PLR0911, PLR0912
        method = request.method
        path = request.url.path
        self.requests.append((method, path))
        forced = self.forced_status.get((method, path))
        if forced is not None:
            return httpx.Response(forced, json={"error": f"forced {forced}"})

        body = json.loads(request.content) if request.content else None
        if path == "/health":
            return httpx.Response(200, json={"status": "healthy"})
        if path == "/api/jobs" and method == "POST":
            if isinstance(body, list):
                if self.reject_batch_create:
                    return httpx.Response(500, json={"error": "batch insert failed"})
                return httpx.Response(201, json=[self._create(entry) for entry in body])
            return httpx.Response(201, json=self._create(body))
        if path == "/api/jobs" and method == "GET":
            return httpx.Response(200, json=self._list(request.url.params))
        if path == "/api/jobs/claim":
            return httpx.Response(200, json={"job": self._claim(body)})
        if path == "/api/jobs/stats":
            return httpx.Response(200, json=self._stats())
        if path == "/api/jobs/sweep":
            return httpx.Response(200, json={"swept": 0, "jobs": []})

        parts = path.strip("/").split("/")
        job = self.jobs.get(int(parts[2])) if len(parts) >= 3 and parts[2].isdigit() else None  # noqa: PLR2004
        if job is None:
            return httpx.Response(404, json={"error": "not_found"})
        action = parts[3] if len(parts) > 3 else None  # noqa: PLR2004
        if action is None and method == "GET":
            return httpx.Response(200, json=job)
        if action == "start" and job["status"] == "claimed":
            job.update(status="running", startedAt=_now())
            return httpx.Response(200, json=job)
        if action == "complete" and job["status"] == "running":
            job.update(status="completed", result=body.get("result"), completedAt=_now())
            return httpx.Response(200, json=job)
        if action == "fail" and job["status"] in {"running", "claimed"}:
            job["retries"] += 1
            job["error"] = body.get("error")
            retried = job["retries"] < job["maxRetries"]
            if retried:
                job.update(status="pending", workerId=None, claimedAt=None, startedAt=None)
            else:
                job.update(status="failed", completedAt=_now())
            return httpx.Response(200, json={**job, "retried": retried})
        if action == "cancel" and job["status"] in {"pending", "claimed"}:
            job.update(status="cancelled", completedAt=_now())
            return httpx.Response(200, json=job)
        return httpx.Response(404, json={"error": "not_found"})

    def _create(self, entry: dict[str, Any]) -> dict[str, Any]:
        return self.add_job(
            entry["type"],
            params=entry.get("params"),
            priority=entry.get("priority", 0),
            max_retries=entry.get("maxRetries", 3),
        )

    def _list(self, params: httpx.QueryParams) -> dict[str, Any]:
        rows = sorted(self.jobs.values(), key=lambda job: job["id"], reverse=True)
        if params.get("status"):
            rows = [job for job in rows if job["status"] == params["status"]]
        if params.get("type"):
            rows = [job for job in rows if job["type"] == params["type"]]
        limit = int(params.get("limit", 50))
        offset = int(params.get("offset", 0))
        return {"entries": rows[offset : offset + limit], "total": len(rows), "limit": limit, "offset": offset}

    def _claim(self, body: dict[str, Any]) -> dict[str, Any] | None:
        pending = [
            job
            for job in self.jobs.values()
            if job["status"] == "pending" and (not body.get("type") or job["type"] == body["type"])
        ]
        if not pending:
            return None
        job = sorted(pending, key=lambda job: (-job["priority"], job["id"]))[0]
        job.update(status="claimed", workerId=body["workerId"], claimedAt=_now())
        return job

    def _stats(self) -> dict[str, Any]:
        by_type: dict[str, dict[str, Any]] = {}
        for job in self.jobs.values():
            entry = by_type.setdefault(
                job["type"],
                {"byStatus": {}, "avgDurationMs": None, "failureRate": 0.0},
            )
            entry["byStatus"][job["status"]] = entry["byStatus"].get(job["status"], 0) + 1
        return {"totalJobs": len(self.jobs), "byType": by_type}


@pytest.fixture()
def fake_store() -> FakeJobStore:
    return FakeJobStore()


@pytest.fixture()
def store_client(fake_store: FakeJobStore):
    client = fake_store.client()
    yield client
    client.close()


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        repository=RepositorySettings(
            pr_command="wiki-jobs-missing-pr-cli",
            validate_command=f"{PYTHON} -c pass",
            bot_name="test-bot",
            bot_email="bot@example.test",
        ),
        content=ContentSettings(command_timeout_seconds=60),
    )


@pytest.fixture()
def handler_context(tmp_path: Path, settings: Settings, store_client: JobStoreClient) -> JobHandlerContext:
    return JobHandlerContext(
        worker_id="test-worker-1",
        project_root=tmp_path,
        settings=settings,
        store=store_client,
    )


def git(cwd: Path, *args: str) -> str:
    completed = subprocess.run(  # noqa: S603
        ["git", *args],  # noqa: S607
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return completed.stdout.strip()


@pytest.fixture()
def git_repo(tmp_path: Path) -> Path:
    """Working clone on `main` with one content page, pushed to a bare `origin`."""

    if shutil.which("git") is None:
        pytest.skip("git is not installed")

    origin = tmp_path / "origin.git"
    work = tmp_path / "work"
    origin.mkdir()
    work.mkdir()
    git(origin, "init", "--bare", "--quiet")
    git(origin, "symbolic-ref", "HEAD", "refs/heads/main")
    git(work, "init", "--quiet")
    git(work, "symbolic-ref", "HEAD", "refs/heads/main")
    git(work, "config", "user.name", "Test User")
    git(work, "config", "user.email", "test@example.test")
    git(work, "config", "commit.gpgsign", "false")

    page = work / "content" / "docs" / "existing.mdx"
    page.parent.mkdir(parents=True)
    page.write_text("---\ntitle: Existing\n---\nOriginal text.\n", "utf-8")
    (work / "README.md").write_text("sandbox\n", "utf-8")
    git(work, "add", ".")
    git(work, "commit", "--quiet", "-m", "initial")
    git(work, "remote", "add", "origin", str(origin))
    git(work, "push", "--quiet", "-u", "origin", "main")
    return work


@pytest.fixture()
def run_git():
    return git
