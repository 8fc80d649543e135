"""Tests for quarry rich error messages."""

from __future__ import annotations

import pytest

from quarry.cli.errors import (
    err_config,
    err_index_failed,
    err_no_api_key,
    err_no_index,
    err_no_project_id,
    err_no_sync_url,
    err_not_a_directory,
    err_schema_version,
    err_sync_failed,
    warn_cancelled,
)


def _has_action(msg: str) -> bool:
    """Every error must contain an actionable instruction."""
    lower = msg.lower()
    return any(kw in lower for kw in ["run:", "set:", "upgrade:", "export ", "pass ", "fix ", "re-run"])


# ---------------------------------------------------------------------------
# err_no_api_key
# ---------------------------------------------------------------------------


def test_err_no_api_key_names_model_and_env_var() -> None:
    msg = err_no_api_key("voyage/voyage-3")
    assert "voyage/voyage-3" in msg
    assert "VOYAGE_API_KEY" in msg


def test_err_no_api_key_mentions_keyword_fallback() -> None:
    assert "keyword" in err_no_api_key("openai/text-embedding-3-small").lower()


def test_err_no_api_key_keyless_provider_falls_back_to_openai_hint() -> None:
    assert "OPENAI_API_KEY" in err_no_api_key("ollama/nomic-embed-text")


# ---------------------------------------------------------------------------
# Remaining helpers
# ---------------------------------------------------------------------------


def test_err_no_index_contains_path() -> None:
    msg = err_no_index("docs/")
    assert "docs/" in msg
    assert "quarry index docs/" in msg


def test_err_schema_version_contains_versions() -> None:
    msg = err_schema_version(3, 1)
    assert "3" in msg and "supports 1" in msg


def test_err_sync_failed_contains_message() -> None:
    assert "409 conflict" in err_sync_failed("409 conflict")


@pytest.mark.parametrize(
    "msg",
    [
        err_no_api_key("openai/text-embedding-3-small"),
        err_not_a_directory("x"),
        err_no_index("x"),
        err_config("bad value"),
        err_schema_version(2, 1),
        err_index_failed("disk full"),
        err_no_sync_url(),
        err_no_project_id(),
        warn_cancelled(),
    ],
)
def test_errors_are_actionable(msg: str) -> None:
    assert _has_action(msg), msg
