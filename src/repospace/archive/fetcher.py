"""
Remote tree walking.

Produces every file under a coordinate as a flat, pre-ordered list of
:class:`FileEntry`. Any listing or content failure aborts the whole walk so a
partial tree never reaches the writer.
"""
from __future__ import annotations

from typing import Callable, Iterator, List, Optional

from ..exceptions import FileLimitExceededError, RepoSpaceError, SourceError
from ..logger import get_logger
from ..models import Coordinate, DirectoryEntry, FileEntry
from ..settings import settings
from ..sources import RepositorySource

log = get_logger(__name__)


class TreeFetcher:
    """Walks a remote repository directory by directory."""

    def __init__(
        self,
        source: RepositorySource,
        max_files: Optional[int] = None,
    ) -> None:
        self.source = source
        self.max_files = max_files if max_files is not None else settings.max_files

    async def fetch_all(
        self,
        coordinate: Coordinate,
        progress_callback: Optional[Callable[[str], None]] = None,
    ) -> List[FileEntry]:
        files: List[FileEntry] = []
        # One iterator per open directory; the top of the stack is the
        # directory currently being walked.
        pending: List[Iterator[DirectoryEntry]] = [
            iter(await self._list(coordinate, coordinate.path))
        ]
        while pending:
            entry = next(pending[-1], None)
            if entry is None:
                pending.pop()
                continue
            if entry.type == "dir":
                pending.append(iter(await self._list(coordinate, entry.path)))
                continue
            if self.max_files is not None and len(files) >= self.max_files:
                raise FileLimitExceededError(
                    "Repository exceeds the configured file limit",
                    repo=coordinate.full_name,
                    limit=self.max_files,
                )
            files.append(await self._fetch_file(coordinate, entry.path))
            if progress_callback:
                progress_callback(entry.path)

        log.info("tree_fetched", repo=coordinate.full_name, path=coordinate.path or "/", files=len(files))
        return files

    async def _list(self, coordinate: Coordinate, path: str) -> List[DirectoryEntry]:
        try:
            return await self.source.list_directory(coordinate.owner, coordinate.name, path)
        except RepoSpaceError:
            log.error("directory_listing_failed", repo=coordinate.full_name, path=path)
            raise
        except Exception as exc:
            log.error("directory_listing_failed", repo=coordinate.full_name, path=path, error=str(exc))
            raise SourceError("Listing directory failed", cause=exc, repo=coordinate.full_name, path=path) from exc

    async def _fetch_file(self, coordinate: Coordinate, path: str) -> FileEntry:
        try:
            content = await self.source.get_file_content(coordinate.owner, coordinate.name, path)
        except RepoSpaceError:
            log.error("file_fetch_failed", repo=coordinate.full_name, path=path)
            raise
        except Exception as exc:
            log.error("file_fetch_failed", repo=coordinate.full_name, path=path, error=str(exc))
            raise SourceError("Fetching file failed", cause=exc, repo=coordinate.full_name, path=path) from exc
        return FileEntry(path=path, content=content.data, is_binary=content.is_binary)
