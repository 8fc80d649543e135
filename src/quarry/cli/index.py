"""quarry index: build or refresh a project's index.

Runs one incremental pass: only new or changed files are re-chunked, and
only chunks without a vector are embedded.
"""

from __future__ import annotations

import asyncio
import warnings
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from quarry.cli.errors import (
    err_config,
    err_index_failed,
    err_no_api_key,
    err_not_a_directory,
    err_schema_version,
    warn_cancelled,
)
from quarry.config import ConfigError, QuarryConfig, load_config
from quarry.db.migrations import SchemaVersionError
from quarry.index.indexer import Indexer
from quarry.index.progress import IndexProgress, IndexStatus
from quarry.index.store import IndexWriteError

console = Console()


def index_cmd(
    path: Annotated[
        Path,
        typer.Argument(help="Project root to index."),
    ] = Path("."),
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompts."),
    ] = False,
) -> None:
    """Index every matching file under PATH into PATH/.quarry/index.db."""
    root = path.resolve()
    if not root.is_dir():
        console.print(err_not_a_directory(str(path)))
        raise typer.Exit(1)

    cfg = load_project_config(root)
    indexer = Indexer(root, cfg)

    if not indexer.pipeline.available:
        console.print(err_no_api_key(cfg.embedding.model))
        if not yes and not typer.confirm("  Index without embeddings?", default=True):
            console.print("  [dim]Skipped.[/]")
            raise typer.Exit(0)

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        progress = _run_with_progress(indexer)

    for w in caught:
        console.print(f"  [yellow]⚠[/] {w.message}")

    if progress.status is IndexStatus.ERROR:
        console.print(err_index_failed(progress.error or "unknown error"))
        raise typer.Exit(1)
    if progress.status is not IndexStatus.READY:
        console.print(warn_cancelled())
        raise typer.Exit(1)

    console.print(
        f"[green]✓[/] Indexed [bold]{indexer.store.file_count()}[/] files: "
        f"{progress.total_chunks} chunks, {progress.embedded_chunks} embedded"
    )


def load_project_config(root: Path) -> QuarryConfig:
    """Load config for *root*, printing an actionable error on failure."""
    try:
        return load_config(root)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc


def _run_with_progress(indexer: Indexer) -> IndexProgress:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        transient=True,
        console=console,
    ) as bar:
        task = bar.add_task("Opening index…", total=None)

        def _on_progress(p: IndexProgress) -> None:
            if p.status is IndexStatus.CHUNKING:
                bar.update(task, description="Chunking…", total=p.total_files or None, completed=p.processed_files)
            elif p.status is IndexStatus.EMBEDDING:
                pending = p.total_chunks or None
                bar.update(task, description="Embedding…", total=pending, completed=p.embedded_chunks)
            else:
                bar.update(task, description=f"{p.status.value.capitalize()}…")

        unsubscribe = indexer.subscribe(_on_progress)
        try:
            return asyncio.run(_open_and_index(indexer))
        finally:
            unsubscribe()


async def _open_and_index(indexer: Indexer) -> IndexProgress:
    try:
        indexer.store.open()
    except SchemaVersionError as exc:
        console.print(err_schema_version(exc.found, exc.supported))
        raise typer.Exit(1) from exc
    try:
        return await indexer.index_workspace()
    finally:
        try:
            indexer.close()
        except IndexWriteError as exc:
            console.print(err_index_failed(str(exc)))
            raise typer.Exit(1) from exc
