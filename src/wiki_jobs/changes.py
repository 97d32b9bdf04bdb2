"""File-change sets: content allow-list, merging, and guarded application."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from wiki_jobs.store.models import FileChange

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_PREFIXES = ("content/docs/", "data/")
DEFAULT_CONTENT_SUFFIXES = (".mdx", ".yaml", ".yml")


@dataclass(slots=True)
class ApplyResult:
    """What `apply_file_changes` wrote, and why the rest was refused."""

    applied_paths: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def applied(self) -> int:
        return len(self.applied_paths)


def is_content_file(
    path: str,
    *,
    prefixes: Iterable[str] = DEFAULT_CONTENT_PREFIXES,
    suffixes: Iterable[str] = DEFAULT_CONTENT_SUFFIXES,
) -> bool:
    """Return whether a relative path is wiki content that jobs may rewrite."""

    posix = path.replace("\\", "/")
    if any(part.startswith(".") for part in PurePosixPath(posix).parts[:-1]):
        return False
    if any(posix.startswith(prefix) for prefix in prefixes):
        return True
    return any(posix.endswith(suffix) for suffix in suffixes)


def merge_file_changes(change_sets: Iterable[Iterable[FileChange]]) -> list[FileChange]:
    """Merge change sets by path; later sets win, order follows first appearance."""

    merged: dict[str, FileChange] = {}
    for changes in change_sets:
        for change in changes:
            merged[change.path] = change
    return list(merged.values())


def apply_file_changes(
    root: Path,
    changes: Iterable[FileChange],
    *,
    prefixes: Iterable[str] = DEFAULT_CONTENT_PREFIXES,
    suffixes: Iterable[str] = DEFAULT_CONTENT_SUFFIXES,
) -> ApplyResult:
    """Write or delete each change under `root`, refusing unsafe paths."""

    resolved_root = root.resolve()
    prefix_list = tuple(prefixes)
    suffix_list = tuple(suffixes)
    outcome = ApplyResult()

    for change in changes:
        target = (resolved_root / change.path).resolve()
        if target != resolved_root and not target.is_relative_to(resolved_root):
            outcome.errors.append(f"{change.path}: path traversal detected (resolves outside project root)")
            continue
        if not is_content_file(change.path, prefixes=prefix_list, suffixes=suffix_list):
            outcome.errors.append(f"{change.path}: not a content file (skipped for safety)")
            continue

        try:
            if change.content is None:
                target.unlink()
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(change.content, "utf-8")
        except OSError as error:
            outcome.errors.append(f"{change.path}: {error.strerror or error}")
            continue
        outcome.applied_paths.append(change.path)

    if outcome.errors:
        logger.warning("Refused %d file change(s) while applying", len(outcome.errors))
    return outcome
