"""quarry status: index overview for a project.

Shows the index file, file/chunk/embedding counts, the Merkle root hash and
the index preferences summary (files matching the patterns but not indexed).
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel

from quarry.cli.errors import err_schema_version
from quarry.cli.index import load_project_config
from quarry.config import QuarryConfig, index_dir
from quarry.db.migrations import SchemaVersionError
from quarry.index.indexer import INDEX_DB_NAME
from quarry.index.store import IndexStore
from quarry.ingest.embeddings import provider_from_config
from quarry.ingest.preferences import scan_preferences, stats
from quarry.sync.merkle import tree_from_store

console = Console()


def status_cmd(
    path: Annotated[
        Path,
        typer.Option("--path", "-p", help="Project root."),
    ] = Path("."),
) -> None:
    """Show index status: files, chunks, embeddings and root hash."""
    root = path.resolve()
    cfg = load_project_config(root)
    db_path = index_dir(root) / INDEX_DB_NAME

    if not db_path.exists():
        console.print(
            Panel(
                "[yellow]No index found.[/]\n"
                f"  Run:  quarry index {path}",
                title="[bold]Index[/]",
                expand=False,
            )
        )
        _show_preferences_panel(root, cfg, indexed=[])
        return

    store = IndexStore(db_path)
    try:
        store.open()
    except SchemaVersionError as exc:
        console.print(err_schema_version(exc.found, exc.supported))
        raise typer.Exit(1) from exc

    try:
        _show_index_panel(root, db_path, store, cfg)
        _show_preferences_panel(root, cfg, indexed=store.indexed_paths())
    finally:
        store.close()


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_index_panel(root: Path, db_path: Path, store: IndexStore, cfg: QuarryConfig) -> None:
    size_mb = db_path.stat().st_size / (1024 * 1024)
    chunks = store.chunk_count()
    embedded = store.embedding_count()
    tree = tree_from_store(store, root)

    if chunks and embedded == chunks:
        state = "[green]✓ ready[/]"
    elif embedded:
        state = f"[yellow]partial ({chunks - embedded} chunks without embeddings)[/]"
    elif chunks:
        state = "[yellow]keyword search only (no embeddings)[/]"
    else:
        state = "[dim]empty[/]"

    provider = provider_from_config(cfg.embedding.to_embedding_config())
    model_note = "" if provider is not None else " [yellow](no API key)[/]"

    lines = [
        f"Index:      {db_path} ({size_mb:.1f} MB)",
        f"Files: [bold]{store.file_count()}[/]  |  "
        f"Chunks: [bold]{chunks:,}[/]  |  "
        f"Embeddings: [bold]{embedded:,}[/]",
        f"State:      {state}",
        f"Model:      {cfg.embedding.model}{model_note}",
        f"Root hash:  [dim]{tree.root_hash[:16]}[/]",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Index[/]", expand=False))


def _show_preferences_panel(root: Path, cfg: QuarryConfig, indexed: list[str]) -> None:
    files = scan_preferences(
        root, cfg.index.include_patterns, cfg.index.exclude_patterns, indexed_paths=indexed
    )
    summary = stats(files)
    lines = [
        f"Project files: [bold]{summary.total}[/]  |  "
        f"Indexed: [bold]{summary.indexed}[/]  |  "
        f"Pending: [bold]{summary.should_index}[/]",
        f"Patterns: [dim]{', '.join(cfg.index.include_patterns)}[/]",
    ]
    if summary.should_index:
        lines.append(f"  Run:  quarry index {root}")
    console.print(Panel("\n".join(lines), title="[bold]Preferences[/]", expand=False))
