"""
Contract for remote repository providers.
"""
from __future__ import annotations

from typing import List, Protocol

from ..models import DirectoryEntry, FileContent, RepositorySummary


class RepositorySource(Protocol):
    """Protocol representing a remote code-hosting service."""

    async def search(self, query: str, page: int = 1) -> List[RepositorySummary]:
        ...

    async def get_repository(self, owner: str, name: str) -> RepositorySummary:
        ...

    async def list_directory(self, owner: str, name: str, path: str = "") -> List[DirectoryEntry]:
        ...

    async def get_file_content(self, owner: str, name: str, path: str) -> FileContent:
        """Return the raw bytes of a file, tagged as binary or UTF-8 text."""
        ...
