"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from quarry.db.connection import Database
from quarry.db.models import Chunk, ChunkType
from quarry.db.schema import initialize


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "index.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def make_chunk():
    """Factory for chunks whose content matches their offsets in a fake source."""

    def _make(file_path: str = "/proj/a.md", content: str = "Some chunk text", start: int = 0, **kw):
        return Chunk(
            file_path=file_path,
            chunk_type=kw.pop("chunk_type", ChunkType.PARAGRAPH),
            content=content,
            start_offset=start,
            end_offset=start + len(content),
            **kw,
        )

    return _make


@pytest.fixture(autouse=True)
def _isolated_global_config(tmp_path_factory, monkeypatch):
    """Never read the developer's real ~/.quarry/config.yaml during tests."""
    missing = tmp_path_factory.mktemp("global") / "config.yaml"
    monkeypatch.setattr("quarry.config._GLOBAL_CONFIG_PATH", missing)
