"""Digest building: deduplicate fetched items within a run and across runs."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from datetime import UTC, date, datetime, timedelta
from pathlib import Path

from wiki_jobs.digest.models import Digest, FeedFetchFailure, FeedItem

logger = logging.getLogger(__name__)

MIN_TITLE_KEY_LENGTH = 5
TITLE_KEY_LENGTH = 60
_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_title(title: str) -> str:
    """Dedup key: lowercase alphanumerics of the title, capped at 60 characters."""

    return _NON_ALNUM.sub("", title.lower())[:TITLE_KEY_LENGTH]


def build_digest(
    items: Iterable[FeedItem],
    *,
    fetched_sources: list[str] | None = None,
    failed_sources: list[FeedFetchFailure] | None = None,
    previously_seen: set[str] | None = None,
) -> Digest:
    """Keep the first item per title key, dropping trivial and already seen titles."""

    seen_before = previously_seen or set()
    seen: set[str] = set(seen_before)
    digest = Digest(
        fetched_sources=list(fetched_sources or []),
        failed_sources=list(failed_sources or []),
    )
    for item in items:
        key = normalize_title(item.title)
        if len(key) < MIN_TITLE_KEY_LENGTH:
            continue
        if key in seen:
            if key in seen_before:
                digest.previously_seen += 1
            else:
                digest.duplicates += 1
            continue
        seen.add(key)
        digest.items.append(item)

    logger.info(
        "Digest: %d relevant item(s), %d duplicate(s), %d seen in prior runs",
        len(digest.items),
        digest.duplicates,
        digest.previously_seen,
    )
    return digest


class SeenItemsStore:
    """JSON state file mapping title keys to the date they were first seen."""

    def __init__(self, path: Path, *, retention_days: int = 90) -> None:
        self.path = path
        self.retention_days = retention_days

    def load(self, *, today: date | None = None) -> set[str]:
        """Return keys seen within the retention window, pruning older ones on disk."""

        entries = self._read()
        cutoff = (today or datetime.now(tz=UTC).date()) - timedelta(days=self.retention_days)
        kept: dict[str, str] = {}
        for key, first_seen in entries.items():
            try:
                if date.fromisoformat(first_seen) >= cutoff:
                    kept[key] = first_seen
            except (TypeError, ValueError):
                continue
        if len(kept) != len(entries):
            self._write(kept)
        return set(kept)

    def record(self, items: Iterable[FeedItem], *, today: date | None = None) -> int:
        """Merge the title keys of `items` into the state file; returns how many were new."""

        stamp = (today or datetime.now(tz=UTC).date()).isoformat()
        entries = self._read()
        added = 0
        for item in items:
            key = normalize_title(item.title)
            if len(key) < MIN_TITLE_KEY_LENGTH or key in entries:
                continue
            entries[key] = stamp
            added += 1
        if added:
            self._write(entries)
        return added

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text("utf-8"))
        except (OSError, json.JSONDecodeError) as error:
            logger.warning("Ignoring unreadable seen-items state %s: %s", self.path, error)
            return {}
        seen_items = payload.get("seen_items") if isinstance(payload, dict) else None
        if not isinstance(seen_items, dict):
            return {}
        return {str(key): str(value) for key, value in seen_items.items()}

    def _write(self, entries: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({"seen_items": entries}, indent=2, sort_keys=True), "utf-8")
