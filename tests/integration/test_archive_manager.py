import json
import os
from pathlib import Path
from typing import Dict

import pytest

from repospace.archive import MANIFEST_FILENAME
from repospace.exceptions import (
    ArchiveConflictError,
    ArchiveRemoveError,
    ArchiveWriteError,
    SourceError,
    UnsafePathError,
)
from repospace.models import RepositorySummary
from repospace.services import ArchiveManager, SaveCallbacks
from repospace.sources import GitHubSource
from repospace.storage import RepositoryIndex

from conftest import BINARY_PAYLOAD, HELLO_TREE, FakeSource

HELLO = RepositorySummary(full_name="octo/hello", clone_url="https://x/hello.git", language="Go", stars=42)


def _snapshot(root: Path) -> Dict[str, bytes]:
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


def _manager(source: FakeSource, index: RepositoryIndex) -> ArchiveManager:
    return ArchiveManager(source=source, index=index)


@pytest.mark.asyncio
async def test_save_archives_tree_and_registers_entry(
    hello_source: FakeSource, index: RepositoryIndex, archive_root: Path
) -> None:
    manager = _manager(hello_source, index)

    result = await manager.save(HELLO, "tools")

    destination = archive_root / "tools" / "octo-hello"
    assert result.added is True
    assert result.path == destination
    assert (destination / "README.md").read_text(encoding="utf-8") == "hi"
    assert (destination / "bin" / "app").read_bytes() == BINARY_PAYLOAD
    manifest = json.loads((destination / MANIFEST_FILENAME).read_text(encoding="utf-8"))
    assert manifest["repoName"] == "octo/hello"
    assert manifest["fileCount"] == 2
    assert manifest["totalSize"] == 19
    assert result.manifest is not None and result.manifest.total_size_bytes == 19

    [entry] = index.list_by_category("tools")
    assert entry.local_path == str(destination)
    assert entry.language == "Go"
    assert entry.stars == 42


@pytest.mark.asyncio
async def test_second_save_is_a_noop(hello_source: FakeSource, index: RepositoryIndex, archive_root: Path) -> None:
    manager = _manager(hello_source, index)
    assert (await manager.save(HELLO, "tools")).added is True
    calls_after_first = list(hello_source.calls)
    disk_after_first = _snapshot(archive_root)

    second = await manager.save(HELLO, "tools")

    assert second.added is False
    assert second.manifest is None
    assert hello_source.calls == calls_after_first
    assert _snapshot(archive_root) == disk_after_first
    assert len(index.list_by_category("tools")) == 1


@pytest.mark.asyncio
async def test_exists_checks_default_category_unless_given(
    hello_source: FakeSource, index: RepositoryIndex
) -> None:
    manager = _manager(hello_source, index)
    await manager.save(HELLO, "tools")

    assert await manager.exists("octo/hello") is False
    assert await manager.exists("octo/hello", "tools") is True
    assert await manager.locate("octo/hello") == ["tools"]
    assert await manager.exists("../../etc") is False

    await manager.save(HELLO)
    assert await manager.exists("octo/hello") is True
    assert await manager.locate("octo/hello") == ["tools", "uncategorized"]


@pytest.mark.asyncio
async def test_stats_and_files(hello_source: FakeSource, index: RepositoryIndex) -> None:
    manager = _manager(hello_source, index)
    await manager.save(HELLO, "tools")

    manifest = await manager.stats("octo/hello", "tools")
    assert manifest is not None
    assert manifest.file_count == 2
    assert manifest.downloaded_at.endswith("Z")
    assert await manager.stats("octo/hello") is None
    assert await manager.stats("not-a-repo") is None
    assert await manager.list_files("octo/hello", "tools") == ["README.md", "bin/app"]
    assert await manager.list_files("octo/hello", "elsewhere") == []


@pytest.mark.asyncio
async def test_category_isolation(index: RepositoryIndex, archive_root: Path) -> None:
    source = FakeSource({"main.c": (b"int main;", False)})
    manager = _manager(source, index)
    summary = RepositorySummary(full_name="a/b", clone_url="https://x/b.git")

    assert (await manager.save(summary, "x")).added
    assert (await manager.save(summary, "y")).added
    assert index.categories() == ["x", "y"]

    assert await manager.remove("a/b", "x") is True

    assert index.categories() == ["y"]
    assert not (archive_root / "x" / "a-b").exists()
    assert (archive_root / "y" / "a-b" / "main.c").read_bytes() == b"int main;"
    assert await manager.stats("a/b", "y") is not None


@pytest.mark.asyncio
async def test_remove_tolerates_missing_entry_and_files(hello_source: FakeSource, index: RepositoryIndex) -> None:
    manager = _manager(hello_source, index)
    assert await manager.remove("octo/hello", "tools") is False


@pytest.mark.asyncio
async def test_remove_cleans_orphaned_files_without_index_entry(
    hello_source: FakeSource, index: RepositoryIndex, archive_root: Path
) -> None:
    manager = _manager(hello_source, index)
    await manager.save(HELLO, "tools")
    index.remove("octo/hello", "tools")

    assert await manager.remove("octo/hello", "tools") is True
    assert not (archive_root / "tools" / "octo-hello").exists()


@pytest.mark.asyncio
async def test_remove_attempts_both_steps_before_failing(
    hello_source: FakeSource, index: RepositoryIndex, monkeypatch: pytest.MonkeyPatch
) -> None:
    manager = _manager(hello_source, index)
    await manager.save(HELLO, "tools")

    def refuse(path):
        raise PermissionError(f"cannot remove {path}")

    monkeypatch.setattr("repospace.services.archive.shutil.rmtree", refuse)

    with pytest.raises(ArchiveRemoveError) as excinfo:
        await manager.remove("octo/hello", "tools")
    assert isinstance(excinfo.value.__cause__, PermissionError)
    assert index.list_by_category("tools") == []


@pytest.mark.asyncio
async def test_fetch_failure_commits_nothing(index: RepositoryIndex, archive_root: Path) -> None:
    source = FakeSource(dict(HELLO_TREE), fail_on={"bin/app"})
    manager = _manager(source, index)

    with pytest.raises(SourceError):
        await manager.save(HELLO, "tools")

    assert index.list() == {}
    assert not (archive_root / "tools" / "octo-hello").exists()
    assert await manager.stats("octo/hello", "tools") is None


@pytest.mark.asyncio
async def test_write_failure_leaves_no_index_entry(
    hello_source: FakeSource, index: RepositoryIndex, archive_root: Path
) -> None:
    archive_root.mkdir(parents=True)
    (archive_root / "tools").write_text("in the way")
    manager = _manager(hello_source, index)

    with pytest.raises(ArchiveWriteError):
        await manager.save(HELLO, "tools")

    assert index.list() == {}


@pytest.mark.asyncio
async def test_save_rejects_unsafe_names_before_fetching(hello_source: FakeSource, index: RepositoryIndex) -> None:
    manager = _manager(hello_source, index)

    with pytest.raises(UnsafePathError):
        await manager.save(RepositorySummary(full_name="octo/../../etc"), "tools")
    with pytest.raises(UnsafePathError):
        await manager.save(HELLO, "../outside")
    assert hello_source.calls == []


@pytest.mark.asyncio
async def test_save_reports_progress(hello_source: FakeSource, index: RepositoryIndex) -> None:
    stages, fetched, written = [], [], []
    manager = _manager(hello_source, index)

    await manager.save(
        HELLO,
        "tools",
        callbacks=SaveCallbacks(stage=stages.append, file_fetched=fetched.append, file_written=written.append),
    )

    assert stages == ["fetch_started", "fetch_completed", "write_started", "write_completed"]
    assert fetched == written == ["README.md", "bin/app"]


@pytest.mark.asyncio
async def test_usage_on_empty_or_missing_root(hello_source: FakeSource, index: RepositoryIndex, archive_root: Path) -> None:
    manager = _manager(hello_source, index)

    usage = await manager.usage()
    assert (usage.total_size_bytes, usage.repo_count) == (0, 0)

    manager.ensure_root()
    usage = await manager.usage()
    assert (usage.total_size_bytes, usage.repo_count) == (0, 0)
    assert usage.base_path == archive_root


@pytest.mark.asyncio
async def test_usage_sums_archived_bytes(index: RepositoryIndex, archive_root: Path) -> None:
    manager = _manager(FakeSource(dict(HELLO_TREE)), index)
    await manager.save(HELLO, "tools")
    await manager.save(HELLO, "misc")

    usage = await manager.usage()

    expected = sum(
        os.path.getsize(path) for path in archive_root.rglob("*") if path.is_file()
    )
    assert usage.repo_count == 2
    assert usage.total_size_bytes == expected
    assert usage.total_size_bytes >= 2 * 19


@pytest.mark.asyncio
async def test_usage_counts_unreadable_directories_as_zero(
    hello_source: FakeSource, index: RepositoryIndex, monkeypatch: pytest.MonkeyPatch
) -> None:
    manager = _manager(hello_source, index)
    await manager.save(HELLO, "tools")
    real_scandir = os.scandir

    def flaky_scandir(path):
        if str(path).endswith("bin"):
            raise PermissionError(path)
        return real_scandir(path)

    monkeypatch.setattr("repospace.services.archive.os.scandir", flaky_scandir)

    usage = await manager.usage()
    destination = manager.path_policy.resolve("octo/hello", "tools")
    expected = (destination / "README.md").stat().st_size + (destination / MANIFEST_FILENAME).stat().st_size
    assert usage.repo_count == 1
    assert usage.total_size_bytes == expected


MAIN_C = {"main.c": (b"int main;", False)}


@pytest.mark.asyncio
async def test_colliding_name_cannot_overwrite_archive(index: RepositoryIndex, archive_root: Path) -> None:
    manager = _manager(FakeSource(dict(MAIN_C)), index)
    await manager.save(RepositorySummary(full_name="a-b/c"), "x")
    before = _snapshot(archive_root)

    with pytest.raises(ArchiveConflictError) as excinfo:
        await manager.save(RepositorySummary(full_name="a/b-c"), "x")

    assert excinfo.value.status_code == 409
    assert excinfo.value.context["owner"] == "a-b/c"
    assert _snapshot(archive_root) == before
    assert [repo.full_name for repo in index.list_by_category("x")] == ["a-b/c"]
    assert (await manager.stats("a-b/c", "x")).repo_name == "a-b/c"
    assert await manager.stats("a/b-c", "x") is None
    assert (await manager.save(RepositorySummary(full_name="a/b-c"), "y")).added is True


@pytest.mark.asyncio
async def test_colliding_name_is_detected_from_manifest(index: RepositoryIndex) -> None:
    manager = _manager(FakeSource(dict(MAIN_C)), index)
    await manager.save(RepositorySummary(full_name="a-b/c"), "x")
    index.remove("a-b/c", "x")

    with pytest.raises(ArchiveConflictError):
        await manager.save(RepositorySummary(full_name="a/b-c"), "x")
    assert (await manager.stats("a-b/c", "x")).repo_name == "a-b/c"


@pytest.mark.asyncio
async def test_colliding_name_cannot_remove_archive(index: RepositoryIndex, archive_root: Path) -> None:
    manager = _manager(FakeSource(dict(MAIN_C)), index)
    await manager.save(RepositorySummary(full_name="a-b/c"), "x")

    assert await manager.remove("a/b-c", "x") is False

    assert (archive_root / "x" / "a-b-c" / "main.c").read_bytes() == b"int main;"
    assert index.categories_for("a-b/c") == ["x"]
    assert await manager.remove("a-b/c", "x") is True
    assert not (archive_root / "x" / "a-b-c").exists()


@pytest.mark.asyncio
async def test_resave_over_stale_directory_replaces_old_files(index: RepositoryIndex) -> None:
    summary = RepositorySummary(full_name="o/r")
    await _manager(FakeSource({"old.txt": (b"old", False)}), index).save(summary, "x")
    index.remove("o/r", "x")

    manager = _manager(FakeSource({"new.txt": (b"new", False)}), index)
    result = await manager.save(summary, "x")

    files = await manager.list_files("o/r", "x")
    assert files == ["new.txt"]
    assert result.manifest is not None
    assert result.manifest.file_count == len(files)


@pytest.mark.asyncio
async def test_save_clears_leftovers_of_failed_write(
    hello_source: FakeSource, index: RepositoryIndex, archive_root: Path
) -> None:
    leftover = archive_root / "tools" / "octo-hello" / "half-written.txt"
    leftover.parent.mkdir(parents=True)
    leftover.write_text("partial", encoding="utf-8")
    manager = _manager(hello_source, index)

    result = await manager.save(HELLO, "tools")

    assert result.added is True
    assert not leftover.exists()
    assert await manager.list_files("octo/hello", "tools") == ["README.md", "bin/app"]


@pytest.mark.asyncio
async def test_aclose_closes_injected_source(hello_source: FakeSource, index: RepositoryIndex) -> None:
    manager = _manager(hello_source, index)
    await manager.aclose()
    assert hello_source.closed is True
    assert manager.source is hello_source


@pytest.mark.asyncio
async def test_aclose_reopens_default_source_on_next_use(index: RepositoryIndex) -> None:
    manager = ArchiveManager(index=index)
    first = manager.source
    assert isinstance(first, GitHubSource)

    await manager.aclose()

    second = manager.source
    assert second is not first
    assert manager.fetcher.source is second
    await manager.aclose()
