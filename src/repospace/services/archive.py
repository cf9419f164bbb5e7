"""
Archive orchestration: save, inspect, and remove local repository copies.
"""
from __future__ import annotations

import asyncio
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from ..archive import ArchiveWriter, TreeFetcher
from ..exceptions import ArchiveConflictError, ArchiveRemoveError, UnsafePathError
from ..logger import get_logger
from ..models import ArchiveManifest, Coordinate, RepositorySummary, SaveResult, StorageUsage
from ..sources import GitHubSource, RepositorySource
from ..storage import ArchivePathPolicy, RepositoryIndex

log = get_logger(__name__)


@dataclass
class SaveCallbacks:
    stage: Optional[Callable[[str], None]] = None
    file_fetched: Optional[Callable[[str], None]] = None
    file_written: Optional[Callable[[str], None]] = None


class ArchiveManager:
    """High-level service that chains index lookups, tree fetching, and archive writes.

    The index entry is only registered once the files and the manifest are on
    disk, so a failed save never leaves an entry pointing at a missing archive.
    Callers must not run two saves of the same repository and category at once.
    """

    def __init__(
        self,
        source: Optional[RepositorySource] = None,
        index: Optional[RepositoryIndex] = None,
        writer: Optional[ArchiveWriter] = None,
        path_policy: Optional[ArchivePathPolicy] = None,
        fetcher: Optional[TreeFetcher] = None,
    ) -> None:
        self.path_policy = path_policy or (index.path_policy if index else ArchivePathPolicy())
        self.index = index or RepositoryIndex(path_policy=self.path_policy)
        self.writer = writer or ArchiveWriter()
        self._source = source
        self._fetcher = fetcher
        self._owns_source = source is None
        self._owns_fetcher = fetcher is None

    @property
    def source(self) -> RepositorySource:
        # Created on first use so read-only operations never open a client.
        if self._source is None:
            self._source = GitHubSource()
        return self._source

    @property
    def fetcher(self) -> TreeFetcher:
        if self._fetcher is None:
            self._fetcher = TreeFetcher(self.source)
        return self._fetcher

    @property
    def archive_root(self) -> Path:
        return self.path_policy.base_dir

    def ensure_root(self) -> Path:
        self.archive_root.mkdir(parents=True, exist_ok=True)
        return self.archive_root

    async def aclose(self) -> None:
        close = getattr(self._source, "aclose", None)
        if close is not None:
            await close()
        if self._owns_source:
            # The next use opens a fresh client.
            self._source = None
            if self._owns_fetcher:
                self._fetcher = None

    async def save(
        self,
        summary: RepositorySummary,
        category: Optional[str] = None,
        callbacks: Optional[SaveCallbacks] = None,
    ) -> SaveResult:
        """Fetch the whole remote tree of ``summary`` and archive it under ``category``."""
        cb = callbacks or SaveCallbacks()
        category = self.path_policy.category_name(category)
        destination = self.path_policy.resolve(summary.full_name, category)

        if await asyncio.to_thread(self.index.contains, summary.full_name, category):
            log.info("repository_already_saved", name=summary.full_name, category=category)
            return SaveResult(added=False, full_name=summary.full_name, category=category, path=destination)

        owner = await asyncio.to_thread(self._directory_owner, summary.full_name, category, destination)
        if owner is not None:
            raise ArchiveConflictError(
                "Archive directory belongs to another repository",
                name=summary.full_name,
                category=category,
                owner=owner,
            )

        if cb.stage:
            cb.stage("fetch_started")
        entries = await self.fetcher.fetch_all(
            Coordinate.parse(summary.full_name),
            progress_callback=cb.file_fetched,
        )
        if cb.stage:
            cb.stage("fetch_completed")

        if cb.stage:
            cb.stage("write_started")
        await self.writer.write(
            destination,
            entries,
            repo_name=summary.full_name,
            progress_callback=cb.file_written,
        )
        if cb.stage:
            cb.stage("write_completed")

        added = await asyncio.to_thread(self.index.add, summary, category)
        if not added:  # pragma: no cover - concurrent save of the same pair
            log.warning("repository_indexed_concurrently", name=summary.full_name, category=category)
        manifest = await asyncio.to_thread(self.writer.read_manifest, destination)
        log.info("repository_saved", name=summary.full_name, category=category, path=str(destination))
        return SaveResult(
            added=added,
            full_name=summary.full_name,
            category=category,
            path=destination,
            manifest=manifest,
            summary=summary,
        )

    def _directory_owner(self, full_name: str, category: str, destination: Path) -> Optional[str]:
        """Name of a different repository that maps onto ``destination``, if any.

        ``a-b/c`` and ``a/b-c`` share a directory name, so the index entries of
        the category and the manifest on disk are both consulted.
        """
        directory_name = destination.name
        for entry in self.index.list_by_category(category):
            if entry.full_name != full_name and self.path_policy.directory_name(entry.full_name) == directory_name:
                return entry.full_name
        manifest = self.writer.read_manifest(destination)
        if manifest is not None and manifest.repo_name != full_name:
            return manifest.repo_name
        return None

    def _resolve_or_none(self, full_name: str, category: Optional[str]) -> Optional[Path]:
        try:
            return self.path_policy.resolve(full_name, category)
        except UnsafePathError:
            log.debug("invalid_repository_lookup", name=full_name, category=category)
            return None

    async def exists(self, full_name: str, category: Optional[str] = None) -> bool:
        """Whether an archive directory exists; only the default category is checked when none is given."""
        path = self._resolve_or_none(full_name, category)
        if path is None:
            return False
        return await asyncio.to_thread(path.exists)

    async def locate(self, full_name: str) -> List[str]:
        """Categories that hold an archive directory for ``full_name``."""
        return await asyncio.to_thread(self._locate_sync, full_name)

    def _locate_sync(self, full_name: str) -> List[str]:
        try:
            directory_name = self.path_policy.directory_name(full_name)
        except UnsafePathError:
            return []
        if not self.archive_root.is_dir():
            return []
        return sorted(
            category.name
            for category in self.archive_root.iterdir()
            if category.is_dir() and (category / directory_name).is_dir()
        )

    async def stats(self, full_name: str, category: Optional[str] = None) -> Optional[ArchiveManifest]:
        path = self._resolve_or_none(full_name, category)
        if path is None:
            return None
        manifest = await asyncio.to_thread(self.writer.read_manifest, path)
        if manifest is not None and manifest.repo_name != full_name:
            return None
        return manifest

    async def list_files(self, full_name: str, category: Optional[str] = None) -> List[str]:
        path = self._resolve_or_none(full_name, category)
        if path is None:
            return []
        return await asyncio.to_thread(self.writer.list_files, path)

    async def remove(self, full_name: str, category: Optional[str] = None) -> bool:
        """Drop the index entry and the archive directory; True when either existed.

        A directory holding another repository's archive (see :meth:`_directory_owner`)
        is left in place.
        """
        category = self.path_policy.category_name(category)
        path = self.path_policy.resolve(full_name, category)
        errors: List[BaseException] = []
        removed = False

        try:
            removed = await asyncio.to_thread(self.index.remove, full_name, category)
        except OSError as exc:
            log.error("index_removal_failed", name=full_name, category=category, error=str(exc))
            errors.append(exc)

        owner = await asyncio.to_thread(self._directory_owner, full_name, category, path)
        try:
            if owner is not None:
                log.warning("archive_owned_by_other_repository", name=full_name, owner=owner, path=str(path))
            elif await asyncio.to_thread(path.exists):
                await asyncio.to_thread(shutil.rmtree, path)
                removed = True
                log.info("repository_files_removed", path=str(path))
        except OSError as exc:
            log.error("archive_removal_failed", path=str(path), error=str(exc))
            errors.append(exc)

        if errors:
            raise ArchiveRemoveError("Removing repository failed", name=full_name, category=category) from errors[0]
        return removed

    async def usage(self) -> StorageUsage:
        return await asyncio.to_thread(self._usage_sync)

    def _usage_sync(self) -> StorageUsage:
        usage = StorageUsage(base_path=self.archive_root)
        try:
            with os.scandir(self.archive_root) as entries:
                categories = [entry.path for entry in entries if entry.is_dir(follow_symlinks=False)]
        except OSError:
            return usage
        for category in categories:
            try:
                with os.scandir(category) as entries:
                    repo_count = sum(1 for entry in entries if entry.is_dir(follow_symlinks=False))
            except OSError as exc:
                log.warning("usage_category_unreadable", path=category, error=str(exc))
                continue
            usage.repo_count += repo_count
            usage.total_size_bytes += _directory_size(Path(category))
        return usage


def _directory_size(path: Path) -> int:
    """Recursive size of ``path``; unreadable directories count as zero."""
    size = 0
    try:
        with os.scandir(path) as entries:
            for entry in entries:
                if entry.is_dir(follow_symlinks=False):
                    size += _directory_size(Path(entry.path))
                elif entry.is_file(follow_symlinks=False):
                    size += entry.stat(follow_symlinks=False).st_size
    except OSError as exc:
        log.warning("usage_directory_unreadable", path=str(path), error=str(exc))
        return 0
    return size
