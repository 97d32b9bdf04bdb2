"""Thin git wrapper plus working-tree snapshot helpers used by job handlers."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

from wiki_jobs.process import CommandResult, run_command
from wiki_jobs.store.models import FileChange

logger = logging.getLogger(__name__)

MAX_BRANCH_NAME_LENGTH = 100
DEFAULT_GIT_TIMEOUT_SECONDS = 120
_INVALID_BRANCH_CHARS = re.compile(r"[^A-Za-z0-9\-_/]")
_EDGE_PUNCTUATION = re.compile(r"^[.\-/]+|[.\-/]+$")


class GitError(RuntimeError):
    """A git step that must succeed did not."""

    def __init__(self, message: str, *, result: CommandResult | None = None) -> None:
        super().__init__(message)
        self.result = result


class Git:
    """Run git commands inside one working tree with bounded timeouts."""

    def __init__(
        self,
        root: Path,
        *,
        timeout_seconds: float = DEFAULT_GIT_TIMEOUT_SECONDS,
        executable: str = "git",
    ) -> None:
        self.root = root
        self.timeout_seconds = timeout_seconds
        self.executable = executable

    def run(
        self,
        *args: str,
        timeout_seconds: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        return run_command(
            [self.executable, *args],
            cwd=self.root,
            timeout_seconds=timeout_seconds or self.timeout_seconds,
            env=env,
        )

    def run_checked(
        self,
        *args: str,
        timeout_seconds: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        result = self.run(*args, timeout_seconds=timeout_seconds, env=env)
        if not result.ok:
            raise GitError(f"git {args[0] if args else ''} failed: {result.describe_failure()}", result=result)
        return result

    def lines(self, *args: str) -> list[str]:
        """Non-empty stripped stdout lines of a command that must succeed."""

        result = self.run_checked(*args)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def has_staged_changes(self) -> bool:
        # `diff --quiet` exits 1 when there are differences.
        return self.run("diff", "--staged", "--quiet").exit_code != 0


def sanitize_branch_name(raw: str, *, fallback: str = "batch") -> str:
    """Make `raw` safe to use as a branch name.

    The result uses only letters, digits, `-`, `_` and `/`, never starts or
    ends with `.`, `-` or `/`, has no `..` or `//`, and is at most 100
    characters long. Applying it twice gives the same result.
    """

    name = _INVALID_BRANCH_CHARS.sub("-", raw)
    while "//" in name:
        name = name.replace("//", "/")
    name = _EDGE_PUNCTUATION.sub("", name)
    name = _EDGE_PUNCTUATION.sub("", name[:MAX_BRANCH_NAME_LENGTH])
    if not name:
        return fallback
    return name


def capture_git_state(git: Git) -> dict[str, str]:
    """Map tracked paths to their index blob hashes (`git ls-files -s`)."""

    result = git.run("ls-files", "-s", "-z")
    if not result.ok:
        logger.warning("Could not capture git state: %s", result.describe_failure())
        return {}

    hashes: dict[str, str] = {}
    for entry in _nul_separated(result.stdout):
        meta, sep, path = entry.partition("\t")
        if not sep:
            continue
        fields = meta.split()
        if len(fields) >= 2:  # noqa: PLR2004
            hashes[path] = fields[1]
    return hashes


def restore_git_state(git: Git, clean_paths: Sequence[str] = ("content/", "data/")) -> None:
    """Best-effort reset of tracked changes and removal of untracked content files."""

    reset = git.run("checkout", "--", ".")
    if not reset.ok:
        logger.warning("Could not reset working tree: %s", reset.describe_failure())
    if clean_paths:
        clean = git.run("clean", "-fd", *clean_paths)
        if not clean.ok:
            logger.warning("Could not clean untracked files: %s", clean.describe_failure())


def collect_changed_files(
    git: Git,
    path_filter: Callable[[str], bool] | None = None,
) -> list[FileChange]:
    """Current content of every file that differs from HEAD, including untracked ones.

    Files that cannot be read are reported as deletions.
    """

    changed: dict[str, None] = {}
    diff = git.run("diff", "--name-only", "-z", "HEAD")
    untracked = git.run("ls-files", "--others", "--exclude-standard", "-z")
    if not diff.ok or not untracked.ok:
        failed = diff if not diff.ok else untracked
        logger.warning("Could not list changed files: %s", failed.describe_failure())
        return []
    for output in (diff.stdout, untracked.stdout):
        for path in _nul_separated(output):
            changed[path] = None

    changes: list[FileChange] = []
    for relative_path in changed:
        if path_filter is not None and not path_filter(relative_path):
            continue
        try:
            content: str | None = (git.root / relative_path).read_text("utf-8")
        except (OSError, UnicodeDecodeError):
            content = None
        changes.append(FileChange(path=relative_path, content=content))
    return changes


def _nul_separated(output: str) -> list[str]:
    # `-z` output keeps paths verbatim instead of quoting non-ASCII names.
    return [entry for entry in output.split("\0") if entry]
