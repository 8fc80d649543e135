"""Quarry CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from quarry.cli.index import index_cmd
from quarry.cli.search import search_cmd
from quarry.cli.status import status_cmd
from quarry.cli.sync import sync_cmd


def _version_callback(value: bool) -> None:
    if value:
        try:
            ver = importlib.metadata.version("quarry")
        except importlib.metadata.PackageNotFoundError:
            ver = "dev"
        typer.echo(f"quarry {ver}")
        raise typer.Exit()


app = typer.Typer(
    name="quarry",
    help=(
        "Quarry: incremental document index and semantic search.\n\n"
        "  quarry index   Chunk and embed new or changed files.\n"
        "  quarry search  Query the index (keyword fallback without an API key)."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Quarry: incremental document index and semantic search."""


app.command("index")(index_cmd)
app.command("search")(search_cmd)
app.command("status")(status_cmd)
app.command("sync")(sync_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed Quarry version."""
    try:
        ver = importlib.metadata.version("quarry")
    except importlib.metadata.PackageNotFoundError:
        ver = "dev"
    typer.echo(f"quarry {ver}")


if __name__ == "__main__":
    app()
