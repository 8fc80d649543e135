"""Tests for the quarry index command."""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import yaml
from typer.testing import CliRunner

from quarry.cli.main import app
from quarry.db.connection import Database
from quarry.db.schema import initialize

runner = CliRunner()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _project(root: Path) -> Path:
    (root / "notes.md").write_text(
        "# Setup\n\nInstall the package with pip and configure the embedding model first.\n",
        encoding="utf-8",
    )
    (root / "todo.txt").write_text(
        "Remember to water the plants before the long weekend trip starts.\n", encoding="utf-8"
    )
    return root


def _fake_embedding(model, input):
    return SimpleNamespace(data=[{"index": i, "embedding": [1.0, float(i)]} for i in range(len(input))])


@pytest.fixture
def no_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("QUARRY_EMBEDDING_MODEL", raising=False)


# ---------------------------------------------------------------------------
# quarry index
# ---------------------------------------------------------------------------


def test_index_without_api_key_stores_chunks(tmp_path: Path, no_key: None) -> None:
    root = _project(tmp_path)
    result = runner.invoke(app, ["index", str(root), "--yes"])

    assert result.exit_code == 0, result.output
    assert "No API key" in result.output
    assert "Indexed 2 files" in result.output
    assert "0 embedded" in result.output
    assert (root / ".quarry" / "index.db").exists()


def test_index_declined_without_api_key(tmp_path: Path, no_key: None) -> None:
    root = _project(tmp_path)
    result = runner.invoke(app, ["index", str(root)], input="n\n")

    assert result.exit_code == 0
    assert "Skipped" in result.output
    assert not (root / ".quarry" / "index.db").exists()


def test_index_with_api_key_embeds(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.delenv("QUARRY_EMBEDDING_MODEL", raising=False)
    root = _project(tmp_path)
    (root / "quarry.yaml").write_text(yaml.dump({"embedding": {"batch_delay": 0}}), encoding="utf-8")

    with patch("quarry.ingest.embeddings.litellm.embedding", side_effect=_fake_embedding) as mock_embed:
        result = runner.invoke(app, ["index", str(root)])

    assert result.exit_code == 0, result.output
    assert mock_embed.called
    assert "2 chunks, 2 embedded" in result.output


def test_index_second_run_embeds_nothing_new(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.delenv("QUARRY_EMBEDDING_MODEL", raising=False)
    root = _project(tmp_path)

    with patch("quarry.ingest.embeddings.litellm.embedding", side_effect=_fake_embedding) as mock_embed:
        runner.invoke(app, ["index", str(root)])
        calls = mock_embed.call_count
        result = runner.invoke(app, ["index", str(root)])

    assert result.exit_code == 0, result.output
    assert mock_embed.call_count == calls


def test_index_not_a_directory(tmp_path: Path) -> None:
    result = runner.invoke(app, ["index", str(tmp_path / "missing")])
    assert result.exit_code == 1
    assert "not a directory" in result.output


def test_index_invalid_config(tmp_path: Path) -> None:
    (tmp_path / "quarry.yaml").write_text(yaml.dump({"chunkers": {"max_chars": 0}}), encoding="utf-8")
    result = runner.invoke(app, ["index", str(tmp_path), "--yes"])
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


def test_index_newer_schema(tmp_path: Path, no_key: None) -> None:
    root = _project(tmp_path)
    conn = Database(root / ".quarry" / "index.db").connect()
    initialize(conn)
    conn.execute("INSERT INTO schema_version (version) VALUES (99)")
    conn.commit()
    conn.close()

    result = runner.invoke(app, ["index", str(root), "--yes"])
    assert result.exit_code == 1
    assert "schema version 99" in result.output
