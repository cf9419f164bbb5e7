from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Tuple

import pytest

from repospace.models import DirectoryEntry, FileContent, RepositorySummary
from repospace.storage import ArchivePathPolicy, RepositoryIndex


class FakeSource:
    """In-memory repository tree keyed by slash-separated file path."""

    def __init__(self, files: Dict[str, Tuple[bytes, bool]], fail_on: Iterable[str] = ()) -> None:
        self.files = files
        self.fail_on = set(fail_on)
        self.calls: List[Tuple[str, str]] = []
        self.closed = False

    async def search(self, query: str, page: int = 1) -> List[RepositorySummary]:
        return [RepositorySummary(full_name="octo/hello", clone_url="https://x/hello.git", stars=42)]

    async def get_repository(self, owner: str, name: str) -> RepositorySummary:
        return RepositorySummary(
            full_name=f"{owner}/{name}",
            clone_url=f"https://x/{name}.git",
            language="Go",
            stars=42,
        )

    async def list_directory(self, owner: str, name: str, path: str = "") -> List[DirectoryEntry]:
        self.calls.append(("list", path))
        if path in self.fail_on:
            raise RuntimeError(f"listing {path} failed")
        prefix = f"{path}/" if path else ""
        children: Dict[str, str] = {}
        for file_path in self.files:
            if not file_path.startswith(prefix):
                continue
            head, separator, _ = file_path[len(prefix):].partition("/")
            children[prefix + head] = "dir" if separator else "file"
        return [DirectoryEntry(path=child, type=kind) for child, kind in sorted(children.items())]

    async def get_file_content(self, owner: str, name: str, path: str) -> FileContent:
        self.calls.append(("get", path))
        if path in self.fail_on:
            raise RuntimeError(f"fetching {path} failed")
        data, is_binary = self.files[path]
        return FileContent(data=data, is_binary=is_binary)

    async def aclose(self) -> None:
        self.closed = True


BINARY_PAYLOAD = bytes(range(17))

HELLO_TREE: Dict[str, Tuple[bytes, bool]] = {
    "README.md": (b"hi", False),
    "bin/app": (BINARY_PAYLOAD, True),
}


@pytest.fixture
def archive_root(tmp_path: Path) -> Path:
    return tmp_path / "RepoSpace"


@pytest.fixture
def policy(archive_root: Path) -> ArchivePathPolicy:
    return ArchivePathPolicy(base_dir=archive_root, default_category="uncategorized")


@pytest.fixture
def index(tmp_path: Path, policy: ArchivePathPolicy) -> RepositoryIndex:
    return RepositoryIndex(index_path=tmp_path / "state" / "index.json", path_policy=policy)


@pytest.fixture
def hello_source() -> FakeSource:
    return FakeSource(dict(HELLO_TREE))
