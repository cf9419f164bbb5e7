"""
On-disk layout of the archive: ``<archive_root>/<category>/<owner>-<repo>/``.

Every path handed to the writer goes through this module, so nothing written
by an archive operation can land outside the archive root.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from ..exceptions import UnsafePathError
from ..settings import settings

NAME_JOINER = "-"
_FORBIDDEN_SEGMENTS = {"", ".", ".."}


def _forbidden_characters() -> List[str]:
    chars = ["/", "\\", "\x00"]
    for separator in (os.sep, os.altsep):
        if separator and separator not in chars:
            chars.append(separator)
    return chars


def _check_segment(segment: str, kind: str, original: str) -> None:
    if segment in _FORBIDDEN_SEGMENTS:
        raise UnsafePathError(f"Invalid {kind}", value=original)
    if any(char in segment for char in _forbidden_characters()):
        raise UnsafePathError(f"Path separator or control character in {kind}", value=original)


def split_relative_path(relative_path: str) -> List[str]:
    """Split a slash-separated repository path into validated segments."""
    if not relative_path or relative_path.startswith("/"):
        raise UnsafePathError("Repository file paths must be relative", value=relative_path)
    segments = relative_path.split("/")
    for segment in segments:
        _check_segment(segment, "file path", relative_path)
    return segments


def safe_join(root: Path, relative_path: str) -> Path:
    """Join a repository-relative path onto ``root`` without leaving it."""
    return root.joinpath(*split_relative_path(relative_path))


class ArchivePathPolicy:
    """Maps (repository full name, category) to the archive directory for it."""

    def __init__(
        self,
        base_dir: Optional[Path] = None,
        default_category: Optional[str] = None,
    ) -> None:
        self.base_dir = base_dir or settings.archive_root
        self.default_category = default_category or settings.default_category

    def category_name(self, category: Optional[str]) -> str:
        name = (category or "").strip() or self.default_category
        _check_segment(name, "category", name)
        return name

    def directory_name(self, full_name: str) -> str:
        """``owner/repo`` -> ``owner-repo``; anything but exactly one separator is rejected."""
        parts = full_name.strip().split("/")
        if len(parts) != 2:
            raise UnsafePathError("Expected an 'owner/name' repository", value=full_name)
        for part in parts:
            _check_segment(part, "repository name", full_name)
        return NAME_JOINER.join(parts)

    def category_dir(self, category: Optional[str] = None) -> Path:
        return self.base_dir / self.category_name(category)

    def resolve(self, full_name: str, category: Optional[str] = None) -> Path:
        return self.category_dir(category) / self.directory_name(full_name)
