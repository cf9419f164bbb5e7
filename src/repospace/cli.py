"""
Command line interface for the local repository archive.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Optional, TypeVar

import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from .exceptions import RepoSpaceError, UnsafePathError
from .logger import configure_logging, get_logger, redirect_logging_to_file
from .models import Coordinate
from .services import ArchiveManager, SaveCallbacks
from .settings import settings
from .sources import GitHubSource
from .storage import ArchivePathPolicy, RepositoryIndex
from .utils import format_file_size
from .version import __version__

app = typer.Typer(name="repospace", help="Save GitHub repositories into a local, categorized archive.")
configure_logging(enable_console=False)
log = get_logger(__name__)
console = Console()

T = TypeVar("T")


def _run(coro: Awaitable[T]) -> T:
    """Run ``coro`` and turn archive failures into CLI exit codes."""
    try:
        return asyncio.run(coro)  # type: ignore[arg-type]
    except UnsafePathError as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=2)
    except RepoSpaceError as exc:
        log.error("command_failed", error=str(exc))
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=1)


def _index() -> RepositoryIndex:
    return RepositoryIndex()


def _manager() -> ArchiveManager:
    return ArchiveManager()


@app.callback()
def main(
    log_file: Optional[Path] = typer.Option(
        None,
        "--log",
        help="Append detailed logs to the given file.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug details."),
) -> None:
    """Save GitHub repositories into a local, categorized archive."""
    level = logging.DEBUG if verbose else logging.INFO
    if log_file:
        redirect_logging_to_file(log_file, level=level)
    elif verbose:
        configure_logging(level=level, enable_console=True)


@app.command()
def search(
    query: str = typer.Argument(..., help="GitHub search query."),
    page: int = typer.Option(1, "--page", "-p", min=1, help="Result page."),
) -> None:
    """Search GitHub repositories, most starred first."""

    async def _search():
        async with GitHubSource() as source:
            return await source.search(query, page=page)

    results = _run(_search())
    if not results:
        typer.echo("No repositories found.")
        return
    table = Table("Repository", "Stars", "Language", "Description")
    for repo in results:
        table.add_row(repo.full_name, str(repo.stars), repo.language or "-", repo.description or "")
    console.print(table)


@app.command()
def save(
    full_name: str = typer.Argument(..., help="Repository as owner/name."),
    category: str = typer.Option(
        settings.default_category, "--category", "-c", help="Category to save under."
    ),
) -> None:
    """Download every file of a repository into the archive."""
    try:
        coordinate = Coordinate.parse(full_name)
    except ValueError as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=2)

    with Progress(
        TextColumn("{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        fetch_task = progress.add_task("Fetching files", total=None)
        write_task = progress.add_task("Writing files", total=None)
        fetched = 0

        def on_fetched(path: str) -> None:
            nonlocal fetched
            fetched += 1
            progress.update(fetch_task, description=f"Fetching {path}")

        def on_written(path: str) -> None:
            progress.update(write_task, advance=1, description=f"Writing {path}")

        def on_stage(stage: str) -> None:
            if stage == "fetch_completed":
                progress.update(
                    fetch_task,
                    total=max(fetched, 1),
                    completed=max(fetched, 1),
                    description=f"Fetched {fetched} files",
                )
            elif stage == "write_started":
                progress.update(write_task, total=max(fetched, 1), completed=0)
            elif stage == "write_completed":
                progress.update(write_task, completed=max(fetched, 1), description="Write complete")

        async def _save():
            manager = _manager()
            try:
                summary = await manager.source.get_repository(coordinate.owner, coordinate.name)
                return await manager.save(
                    summary,
                    category,
                    callbacks=SaveCallbacks(stage=on_stage, file_fetched=on_fetched, file_written=on_written),
                )
            finally:
                await manager.aclose()

        result = _run(_save())

    if not result.added:
        typer.echo(f"Repository already exists in \"{result.category}\" category: {result.path}")
        return
    manifest = result.manifest
    details = (
        f" files={manifest.file_count} size={format_file_size(manifest.total_size_bytes)}"
        if manifest
        else ""
    )
    typer.echo(f"Saved {result.full_name} -> {result.path}{details}")


@app.command("list")
def list_repos(
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Only this category."),
) -> None:
    """List saved repositories grouped by category."""
    index = _index()
    entries = index.list()
    if category is not None:
        entries = {category: entries[category]} if category in entries else {}
    if not entries:
        typer.echo("No saved repositories.")
        return
    for name in sorted(entries):
        typer.echo(f"[{name}]")
        for repo in entries[name]:
            typer.echo(f"- {repo.full_name} stars={repo.stars} language={repo.language} saved={repo.saved_at}")


@app.command()
def categories() -> None:
    """List categories that hold saved repositories."""
    for name in _index().categories():
        typer.echo(name)


@app.command()
def files(
    full_name: str = typer.Argument(..., help="Repository as owner/name."),
    category: Optional[str] = typer.Option(None, "--category", "-c"),
) -> None:
    """List the archived files of a repository."""
    paths = _run(_manager().list_files(full_name, category))
    if not paths:
        typer.echo("No archived files.")
        return
    for path in paths:
        typer.echo(path)


@app.command()
def stats(
    full_name: str = typer.Argument(..., help="Repository as owner/name."),
    category: Optional[str] = typer.Option(None, "--category", "-c"),
) -> None:
    """Show the manifest of an archived repository."""
    manifest = _run(_manager().stats(full_name, category))
    if manifest is None:
        typer.echo(f"No archive found for {full_name}.")
        raise typer.Exit(code=1)
    typer.echo(
        f"{manifest.repo_name}: files={manifest.file_count} "
        f"size={format_file_size(manifest.total_size_bytes)} downloaded={manifest.downloaded_at}"
    )


@app.command()
def exists(
    full_name: str = typer.Argument(..., help="Repository as owner/name."),
    category: Optional[str] = typer.Option(None, "--category", "-c"),
    any_category: bool = typer.Option(False, "--all", help="Look in every category."),
) -> None:
    """Check whether a repository is archived locally (exit code 1 when not)."""
    manager = _manager()
    if any_category:
        found = _run(manager.locate(full_name))
        if found:
            typer.echo(f"{full_name} archived in: {', '.join(found)}")
            return
    elif _run(manager.exists(full_name, category)):
        typer.echo(f"{full_name} is archived.")
        return
    typer.echo(f"{full_name} is not archived.")
    raise typer.Exit(code=1)


@app.command()
def remove(
    full_name: str = typer.Argument(..., help="Repository as owner/name."),
    category: str = typer.Option(settings.default_category, "--category", "-c"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not prompt for confirmation."),
) -> None:
    """Remove a repository's index entry and archived files."""
    if not yes and not typer.confirm(f"Remove {full_name} from \"{category}\"?", default=False):
        typer.echo("Removal aborted.")
        raise typer.Exit()
    removed = _run(_manager().remove(full_name, category))
    typer.echo(f"Removed {full_name}." if removed else f"{full_name} was not saved in \"{category}\".")


@app.command()
def usage() -> None:
    """Show disk usage of the archive."""
    result = _run(_manager().usage())
    typer.echo(
        f"{result.repo_count} repositories, {format_file_size(result.total_size_bytes)} in {result.base_path}"
    )


@app.command()
def root() -> None:
    """Show the archive root and index locations."""
    policy = ArchivePathPolicy()
    typer.echo(f"Archive root: {policy.base_dir}")
    typer.echo(f"Index: {RepositoryIndex(path_policy=policy).index_path}")
    typer.echo(f"Version: {__version__}")


if __name__ == "__main__":  # pragma: no cover
    app()
