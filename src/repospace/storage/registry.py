"""
Category index of saved repositories.

Persists a single JSON document mapping category name to the repositories
saved under it. The document is re-read and rewritten as a whole on every
mutation; a missing or unreadable document counts as an empty index.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Dict, List, Optional

from ..exceptions import UnsafePathError
from ..logger import get_logger
from ..models import RepositorySummary
from ..settings import settings
from .paths import ArchivePathPolicy

log = get_logger(__name__)

CategoryIndex = Dict[str, List[RepositorySummary]]

INDEX_FILENAME = ".repospace-index.json"


class RepositoryIndex:
    """JSON-backed category index."""

    def __init__(
        self,
        index_path: Optional[Path] = None,
        path_policy: Optional[ArchivePathPolicy] = None,
    ) -> None:
        self.path_policy = path_policy or ArchivePathPolicy()
        self.index_path = index_path or settings.index_path or (self.path_policy.base_dir / INDEX_FILENAME)
        self._entries: CategoryIndex = {}

    def load(self) -> CategoryIndex:
        """Reload the index from disk, falling back to an empty index."""
        self._entries = {}
        if not self.index_path.exists():
            return self._entries
        try:
            data = json.loads(self.index_path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("index root must be an object")
            entries: CategoryIndex = {}
            for category, payloads in data.items():
                entries[category] = [RepositorySummary.from_json(payload) for payload in payloads]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            log.warning("index_load_failed", path=str(self.index_path), error=str(exc))
            return self._entries
        self._entries = entries
        log.debug("index_loaded", categories=len(self._entries))
        return self._entries

    def save(self) -> None:
        data = {
            category: [summary.to_json() for summary in summaries]
            for category, summaries in self._entries.items()
        }
        self.index_path.parent.mkdir(parents=True, exist_ok=True)
        staging = self.index_path.with_name(self.index_path.name + ".tmp")
        staging.write_text(json.dumps(data, indent=2), encoding="utf-8")
        os.replace(staging, self.index_path)
        log.debug("index_persisted", categories=len(self._entries))

    def list(self) -> CategoryIndex:
        return {category: list(summaries) for category, summaries in self.load().items()}

    def contains(self, full_name: str, category: Optional[str]) -> bool:
        return any(summary.full_name == full_name for summary in self.list_by_category(category))

    def add(self, summary: RepositorySummary, category: Optional[str]) -> bool:
        """Register ``summary`` under ``category``; False when it is already there."""
        category = self.path_policy.category_name(category)
        entries = self.load()
        bucket = entries.get(category, [])
        if any(existing.full_name == summary.full_name for existing in bucket):
            log.info("repository_already_indexed", name=summary.full_name, category=category)
            return False
        local_path = self.path_policy.resolve(summary.full_name, category)
        entries[category] = bucket + [summary.registered(category, local_path)]
        self.save()
        log.info("repository_indexed", name=summary.full_name, category=category)
        return True

    def list_by_category(self, category: Optional[str]) -> List[RepositorySummary]:
        try:
            category = self.path_policy.category_name(category)
        except UnsafePathError:
            return []
        return list(self.load().get(category, []))

    def categories(self) -> List[str]:
        return sorted(self.load())

    def categories_for(self, full_name: str) -> List[str]:
        """Categories whose index bucket holds ``full_name``."""
        return sorted(
            category
            for category, summaries in self.load().items()
            if any(summary.full_name == full_name for summary in summaries)
        )

    def remove(self, full_name: str, category: Optional[str]) -> bool:
        category = self.path_policy.category_name(category)
        entries = self.load()
        bucket = entries.get(category)
        if bucket is None:
            return False
        remaining = [summary for summary in bucket if summary.full_name != full_name]
        if len(remaining) == len(bucket):
            return False
        if remaining:
            entries[category] = remaining
        else:
            entries.pop(category)
            log.info("category_pruned", category=category)
        self.save()
        log.info("repository_unindexed", name=full_name, category=category)
        return True
