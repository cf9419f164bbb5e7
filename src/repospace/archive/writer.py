"""
Materializes fetched files under an archive directory and records its manifest.

Whatever the destination held before is cleared first, so the manifest always
describes exactly the files on disk. Writes are not transactional: a failure
part-way leaves whatever was already written in place and surfaces as
:class:`ArchiveWriteError`.
"""
from __future__ import annotations

import asyncio
import json
import shutil
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from ..exceptions import ArchiveWriteError
from ..logger import get_logger
from ..models import ArchiveManifest, FileEntry, utc_timestamp
from ..storage.paths import safe_join

log = get_logger(__name__)

MANIFEST_FILENAME = ".repospace-meta.json"


class ArchiveWriter:
    """Writes repository files with byte-for-byte fidelity for binary content."""

    manifest_filename = MANIFEST_FILENAME

    async def write(
        self,
        destination: Path,
        entries: Sequence[FileEntry],
        repo_name: Optional[str] = None,
        progress_callback: Optional[Callable[[str], None]] = None,
    ) -> Path:
        """Write ``entries`` under ``destination`` and return the manifest path."""
        return await asyncio.to_thread(
            self._write_sync,
            destination,
            entries,
            repo_name or destination.name,
            progress_callback,
        )

    def _prepare(self, destination: Path, entries: Sequence[FileEntry]) -> List[Tuple[Path, FileEntry, Optional[str]]]:
        """Validate every entry before the first byte hits the disk."""
        planned: List[Tuple[Path, FileEntry, Optional[str]]] = []
        for entry in entries:
            target = safe_join(destination, entry.path)
            text: Optional[str] = None
            if not entry.is_binary:
                try:
                    text = entry.content.decode("utf-8")
                except UnicodeDecodeError as exc:
                    raise ArchiveWriteError("Text entry is not valid UTF-8", path=entry.path) from exc
            planned.append((target, entry, text))
        return planned

    def _write_sync(
        self,
        destination: Path,
        entries: Sequence[FileEntry],
        repo_name: str,
        progress_callback: Optional[Callable[[str], None]],
    ) -> Path:
        planned = self._prepare(destination, entries)
        total_size = 0
        try:
            if destination.exists():
                log.info("stale_archive_cleared", destination=str(destination))
                shutil.rmtree(destination)
            destination.mkdir(parents=True, exist_ok=True)
            for target, entry, text in planned:
                target.parent.mkdir(parents=True, exist_ok=True)
                if text is None:
                    target.write_bytes(entry.content)
                    total_size += len(entry.content)
                else:
                    target.write_text(text, encoding="utf-8", newline="")
                    total_size += len(text.encode("utf-8"))
                if progress_callback:
                    progress_callback(entry.path)

            manifest = ArchiveManifest(
                repo_name=repo_name,
                downloaded_at=utc_timestamp(),
                file_count=len(planned),
                total_size_bytes=total_size,
            )
            manifest_path = destination / self.manifest_filename
            manifest_path.write_text(json.dumps(manifest.to_json(), indent=2), encoding="utf-8")
        except OSError as exc:
            log.error("archive_write_failed", destination=str(destination), error=str(exc))
            raise ArchiveWriteError("Writing archive failed", destination=str(destination)) from exc

        log.info(
            "archive_written",
            destination=str(destination),
            files=manifest.file_count,
            total_size=manifest.total_size_bytes,
        )
        return manifest_path

    def read_manifest(self, destination: Path) -> Optional[ArchiveManifest]:
        """Return the manifest stored in ``destination``, or None when absent or unreadable."""
        manifest_path = destination / self.manifest_filename
        if not manifest_path.is_file():
            return None
        try:
            return ArchiveManifest.from_json(json.loads(manifest_path.read_text(encoding="utf-8")))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            log.warning("manifest_unreadable", path=str(manifest_path), error=str(exc))
            return None

    def list_files(self, destination: Path) -> List[str]:
        """Repository files under ``destination`` as sorted slash-separated paths."""
        if not destination.is_dir():
            return []
        manifest_path = destination / self.manifest_filename
        return sorted(
            path.relative_to(destination).as_posix()
            for path in destination.rglob("*")
            if path.is_file() and path != manifest_path
        )
