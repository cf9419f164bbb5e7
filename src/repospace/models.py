"""
Data model shared by the index, the fetcher, the writer, and the outer surfaces.

Persisted shapes use the camelCase keys of the on-disk formats so archives and
indexes stay interchangeable with other RepoSpace clients.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Literal, Optional

DEFAULT_DESCRIPTION = "No description"
DEFAULT_LANGUAGE = "Unknown"


def utc_timestamp(moment: Optional[datetime] = None) -> str:
    """Return an ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""
    moment = (moment or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class RepositorySummary:
    """Identity and display data for a remote repository."""

    full_name: str
    clone_url: str = ""
    description: Optional[str] = None
    language: Optional[str] = None
    stars: int = 0
    category: Optional[str] = None
    saved_at: Optional[str] = None
    local_path: Optional[str] = None

    @property
    def owner(self) -> str:
        return self.full_name.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.full_name.split("/", 1)[-1]

    def registered(self, category: str, local_path: Path, saved_at: Optional[str] = None) -> "RepositorySummary":
        """Return the fully-populated copy stored in the category index."""
        return replace(
            self,
            description=self.description or DEFAULT_DESCRIPTION,
            language=self.language or DEFAULT_LANGUAGE,
            stars=self.stars or 0,
            category=category,
            saved_at=saved_at or utc_timestamp(),
            local_path=str(local_path),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "fullName": self.full_name,
            "cloneUrl": self.clone_url,
            "description": self.description,
            "language": self.language,
            "stars": self.stars,
            "savedAt": self.saved_at,
            "localPath": self.local_path,
            "category": self.category,
        }

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "RepositorySummary":
        return cls(
            full_name=payload["fullName"],
            clone_url=payload.get("cloneUrl") or "",
            description=payload.get("description"),
            language=payload.get("language"),
            stars=int(payload.get("stars") or 0),
            category=payload.get("category"),
            saved_at=payload.get("savedAt"),
            local_path=payload.get("localPath"),
        )


@dataclass(frozen=True)
class Coordinate:
    """Location in the remote source: owner, repository name, and a starting subpath."""

    owner: str
    name: str
    path: str = ""

    @classmethod
    def parse(cls, full_name: str, path: str = "") -> "Coordinate":
        owner, _, name = full_name.partition("/")
        if not owner or not name:
            raise ValueError(f"Expected an 'owner/name' repository, got {full_name!r}")
        return cls(owner=owner, name=name, path=path.strip("/"))

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class FileContent:
    """Raw file payload tagged once, at the source boundary, as binary or UTF-8 text."""

    data: bytes
    is_binary: bool


@dataclass(frozen=True)
class DirectoryEntry:
    path: str
    type: Literal["file", "dir"]


@dataclass(frozen=True)
class FileEntry:
    """A single repository file on its way from the source to disk."""

    path: str
    content: bytes
    is_binary: bool = False

    @classmethod
    def text(cls, path: str, text: str) -> "FileEntry":
        return cls(path=path, content=text.encode("utf-8"), is_binary=False)

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class ArchiveManifest:
    """Bookkeeping written next to an archived repository's files."""

    repo_name: str
    downloaded_at: str
    file_count: int
    total_size_bytes: int

    def to_json(self) -> Dict[str, Any]:
        return {
            "repoName": self.repo_name,
            "downloadedAt": self.downloaded_at,
            "fileCount": self.file_count,
            "totalSize": self.total_size_bytes,
        }

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "ArchiveManifest":
        return cls(
            repo_name=payload["repoName"],
            downloaded_at=payload["downloadedAt"],
            file_count=int(payload["fileCount"]),
            total_size_bytes=int(payload["totalSize"]),
        )


@dataclass
class StorageUsage:
    total_size_bytes: int = 0
    repo_count: int = 0
    base_path: Optional[Path] = None


@dataclass
class SaveResult:
    """Outcome of an archive save; ``added`` is False when the entry already existed."""

    added: bool
    full_name: str
    category: str
    path: Path
    manifest: Optional[ArchiveManifest] = None
    summary: Optional[RepositorySummary] = field(default=None, repr=False)
