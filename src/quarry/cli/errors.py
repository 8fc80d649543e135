"""Quarry rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from quarry.cli.errors import err_no_index
    console.print(err_no_index(path))
    raise typer.Exit(1)
"""

from __future__ import annotations

from quarry.ingest.embeddings import required_api_key


def err_no_api_key(model: str) -> str:
    """No API key for the embedding *model*; search falls back to keywords.

    Example:
        No API key for 'openai/text-embedding-3-small'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_var = required_api_key(model) or "OPENAI_API_KEY"
    return (
        f"[yellow]Warning:[/] No API key for '{model}'. "
        "Chunks are stored without embeddings and search uses keyword matching.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_not_a_directory(path: str) -> str:
    return (
        f"[red]Error:[/] '{path}' is not a directory.\n"
        "  Pass the project root:  quarry index <project-dir>"
    )


def err_no_index(project: str) -> str:
    """No index has been built for *project* yet."""
    return (
        f"[red]Error:[/] No index found for '{project}'.\n"
        f"  Run:  quarry index {project}"
    )


def err_config(message: str) -> str:
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix quarry.yaml (or ~/.quarry/config.yaml) and retry."
    )


def err_schema_version(found: int, supported: int) -> str:
    return (
        f"[red]Error:[/] Index schema version {found} is newer than this Quarry "
        f"(supports {supported}).\n"
        "  Upgrade:  pip install -U quarry\n"
        "  Or delete .quarry/index.db and re-run:  quarry index"
    )


def err_index_failed(message: str) -> str:
    return (
        f"[red]Error:[/] Indexing failed: {message}\n"
        "  Check that .quarry/ is writable, then re-run:  quarry index"
    )


def err_no_sync_url() -> str:
    return (
        "[red]Error:[/] No sync URL configured.\n"
        "  Set sync.url in quarry.yaml or:  export QUARRY_SYNC_URL=https://..."
    )


def err_no_project_id() -> str:
    return (
        "[red]Error:[/] No sync project id.\n"
        "  Pass --project-id or set sync.project_id in quarry.yaml."
    )


def err_sync_failed(message: str) -> str:
    return f"[red]Error:[/] Sync failed: {message}"


def warn_cancelled() -> str:
    return (
        "[yellow]⚠[/] Indexing was interrupted. Work done so far is kept.\n"
        "  Re-run:  quarry index  to finish."
    )
