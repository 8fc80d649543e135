"""quarry sync: push changed files' chunks to the indexing backend."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from quarry.cli.errors import (
    err_no_index,
    err_no_project_id,
    err_no_sync_url,
    err_schema_version,
    err_sync_failed,
)
from quarry.cli.index import load_project_config
from quarry.config import index_dir
from quarry.db.migrations import SchemaVersionError
from quarry.index.indexer import INDEX_DB_NAME
from quarry.index.store import IndexStore
from quarry.sync.service import HttpSyncBackend, SyncError, SyncService

console = Console()


def sync_cmd(
    path: Annotated[
        Path,
        typer.Option("--path", "-p", help="Project root."),
    ] = Path("."),
    project_id: Annotated[
        str | None,
        typer.Option("--project-id", help="Backend project id (overrides sync.project_id)."),
    ] = None,
) -> None:
    """Sync the local index with the remote indexing service."""
    root = path.resolve()
    cfg = load_project_config(root)

    if not cfg.sync.url:
        console.print(err_no_sync_url())
        raise typer.Exit(1)
    pid = project_id or cfg.sync.project_id
    if not pid:
        console.print(err_no_project_id())
        raise typer.Exit(1)

    db_path = index_dir(root) / INDEX_DB_NAME
    if not db_path.exists():
        console.print(err_no_index(str(path)))
        raise typer.Exit(1)

    store = IndexStore(db_path)
    try:
        store.open()
    except SchemaVersionError as exc:
        console.print(err_schema_version(exc.found, exc.supported))
        raise typer.Exit(1) from exc

    service = SyncService(store, HttpSyncBackend(cfg.sync.url), root, index_dir(root))
    try:
        result = service.sync(pid)
    except SyncError as exc:
        console.print(err_sync_failed(str(exc)))
        raise typer.Exit(1) from exc
    finally:
        store.close()

    if not (result.inserted or result.updated or result.deleted):
        console.print("[dim]Already in sync.[/]")
        return
    console.print(
        f"[green]✓[/] Synced: {result.inserted} inserted, "
        f"{result.updated} updated, {result.deleted} deleted"
    )
