"""quarry search: rank indexed chunks against a query."""

from __future__ import annotations

import asyncio
import warnings
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from quarry.cli.errors import err_no_index, err_schema_version
from quarry.cli.index import load_project_config
from quarry.config import index_dir
from quarry.db.migrations import SchemaVersionError
from quarry.index.indexer import INDEX_DB_NAME, Indexer
from quarry.search.engine import SearchResult

console = Console()

_SNIPPET_CHARS = 160


def search_cmd(
    query: Annotated[str, typer.Argument(help="Search query.")],
    path: Annotated[
        Path,
        typer.Option("--path", "-p", help="Project root."),
    ] = Path("."),
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", min=1, help="Maximum number of results."),
    ] = None,
    min_score: Annotated[
        float | None,
        typer.Option("--min-score", help="Minimum cosine similarity for semantic results."),
    ] = None,
    file_type: Annotated[
        list[str] | None,
        typer.Option("--type", "-t", help="File extension filter, e.g. .md (repeatable)."),
    ] = None,
) -> None:
    """Search the project index."""
    root = path.resolve()
    if not (index_dir(root) / INDEX_DB_NAME).exists():
        console.print(err_no_index(str(path)))
        raise typer.Exit(1)

    cfg = load_project_config(root)
    indexer = Indexer(root, cfg)
    try:
        indexer.store.open()
    except SchemaVersionError as exc:
        console.print(err_schema_version(exc.found, exc.supported))
        raise typer.Exit(1) from exc

    try:
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            results = asyncio.run(
                indexer.search(query, limit=limit, min_score=min_score, file_types=file_type)
            )
    finally:
        indexer.store.close()

    for w in caught:
        console.print(f"[yellow]⚠[/] {w.message}")

    if not results:
        console.print("[dim]No results.[/]")
        return

    console.print(_results_table(results, root))


def _results_table(results: list[SearchResult], root: Path) -> Table:
    mode = results[0].mode
    table = Table(title=f"Results ({mode})", show_lines=False)
    table.add_column("#", style="dim", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("File")
    table.add_column("Where", style="dim")
    table.add_column("Text")

    for rank, result in enumerate(results, start=1):
        chunk = result.chunk
        try:
            file_label = str(Path(chunk.file_path).relative_to(root))
        except ValueError:
            file_label = chunk.file_path
        where = chunk.heading_path or chunk.speaker or f"@{chunk.start_offset}"
        snippet = " ".join(chunk.content.split())
        if len(snippet) > _SNIPPET_CHARS:
            snippet = snippet[: _SNIPPET_CHARS - 1] + "…"
        table.add_row(str(rank), f"{result.score:.3f}", escape(file_label), escape(where), escape(snippet))
    return table
