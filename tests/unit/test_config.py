"""Tests for the quarry config loader."""

from __future__ import annotations

import warnings
from pathlib import Path

import pytest
import yaml

from quarry.config import (
    INDEX_DIR_NAME,
    ConfigError,
    QuarryConfig,
    index_dir,
    load_config,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: dict) -> None:
    path.write_text(yaml.dump(data), encoding="utf-8")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("QUARRY_EMBEDDING_MODEL", raising=False)
    monkeypatch.delenv("QUARRY_SYNC_URL", raising=False)


@pytest.fixture
def missing_global(tmp_path: Path) -> Path:
    return tmp_path / "nonexistent" / "config.yaml"


# ---------------------------------------------------------------------------
# Defaults with no config files present
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_files(tmp_path: Path, missing_global: Path) -> None:
    """No config files → all hardcoded defaults."""
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)

    assert cfg.embedding.model == "openai/text-embedding-3-small"
    assert cfg.embedding.batch_size == 100
    assert cfg.embedding.batch_delay == pytest.approx(0.2)
    assert cfg.chunkers.max_chars == 3200
    assert cfg.chunkers.min_chars == 50
    assert cfg.search.limit == 10
    assert cfg.search.min_score == pytest.approx(0.3)
    assert cfg.store.debounce_seconds == pytest.approx(0.5)
    assert cfg.index.include_patterns == [".md", ".markdown", ".txt", ".transcript.json"]
    assert ".quarry" in cfg.index.exclude_patterns
    assert cfg.index.auto_index is False
    assert cfg.sync.url is None


def test_dataclass_defaults_match_loader(tmp_path: Path, missing_global: Path) -> None:
    assert load_config(project_dir=tmp_path, global_config_path=missing_global) == QuarryConfig()


def test_load_config_global_empty_file(tmp_path: Path) -> None:
    """Empty global config file → defaults (no crash)."""
    global_cfg = tmp_path / "config.yaml"
    global_cfg.write_text("# nothing here\n", encoding="utf-8")

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.search.limit == 10


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def test_load_config_project_overrides_global(tmp_path: Path) -> None:
    """Per-project quarry.yaml overrides global config, field by field."""
    global_cfg = tmp_path / "global.yaml"
    _write_yaml(global_cfg, {"search": {"limit": 20, "min_score": 0.5}})
    _write_yaml(tmp_path / "quarry.yaml", {"search": {"limit": 5}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.search.limit == 5
    assert cfg.search.min_score == pytest.approx(0.5)  # global value preserved


def test_load_config_index_section(tmp_path: Path, missing_global: Path) -> None:
    _write_yaml(
        tmp_path / "quarry.yaml",
        {
            "index": {
                "include_patterns": ["**/*.md"],
                "exclude_patterns": ["drafts"],
                "auto_index": True,
                "yield_every": 3,
            }
        },
    )
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.index.include_patterns == ["**/*.md"]
    assert cfg.index.exclude_patterns == ["drafts"]
    assert cfg.index.auto_index is True
    assert cfg.index.yield_every == 3


def test_load_config_chunker_and_embedding_sections(tmp_path: Path, missing_global: Path) -> None:
    _write_yaml(
        tmp_path / "quarry.yaml",
        {
            "chunkers": {"max_chars": 800, "min_chars": 20, "merge_gap_seconds": 5},
            "embedding": {"model": "ollama/nomic-embed-text", "batch_size": 16, "max_retries": 5},
        },
    )
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)

    settings = cfg.chunkers.to_settings()
    assert (settings.max_chars, settings.min_chars) == (800, 20)
    assert settings.merge_gap_seconds == pytest.approx(5.0)

    emb = cfg.embedding.to_embedding_config()
    assert emb.model == "ollama/nomic-embed-text"
    assert emb.batch_size == 16
    assert emb.max_retries == 5


def test_load_config_sync_section(tmp_path: Path, missing_global: Path) -> None:
    _write_yaml(
        tmp_path / "quarry.yaml",
        {"sync": {"url": "https://index.example.com", "project_id": 42}},
    )
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.sync.url == "https://index.example.com"
    assert cfg.sync.project_id == "42"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "data, fragment",
    [
        ({"chunkers": {"max_chars": 0}}, "max_chars"),
        ({"chunkers": {"max_chars": 100, "min_chars": 200}}, "min_chars"),
        ({"embedding": {"batch_size": 0}}, "batch_size"),
        ({"embedding": {"batch_delay": -1}}, "batch_delay"),
        ({"embedding": {"max_retries": -1}}, "max_retries"),
        ({"index": {"yield_every": 0}}, "yield_every"),
        ({"index": {"include_patterns": []}}, "include_patterns"),
        ({"search": {"min_score": 2}}, "min_score"),
        ({"store": {"debounce_seconds": -0.1}}, "debounce_seconds"),
        ({"sync": {"url": "ftp://files.example.com"}}, "sync.url"),
        ({"search": {"limit": "many"}}, "Invalid config value"),
        ({"index": {"include_patterns": {"md": True}}}, "list of strings"),
    ],
)
def test_invalid_values_raise(tmp_path: Path, missing_global: Path, data: dict, fragment: str) -> None:
    _write_yaml(tmp_path / "quarry.yaml", data)
    with pytest.raises(ConfigError, match=fragment):
        load_config(project_dir=tmp_path, global_config_path=missing_global)


def test_malformed_yaml_raises(tmp_path: Path, missing_global: Path) -> None:
    (tmp_path / "quarry.yaml").write_text("search: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="Cannot parse"):
        load_config(project_dir=tmp_path, global_config_path=missing_global)


def test_non_mapping_yaml_raises(tmp_path: Path, missing_global: Path) -> None:
    (tmp_path / "quarry.yaml").write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(project_dir=tmp_path, global_config_path=missing_global)


# ---------------------------------------------------------------------------
# API key validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "bad_key",
    ["api_key", "apikey", "OPENAI_API_KEY", "secret", "password", "token", "api-key"],
)
def test_global_config_rejects_api_key_fields(tmp_path: Path, bad_key: str) -> None:
    """Global config containing API key-like field names raises ConfigError."""
    global_cfg = tmp_path / "config.yaml"
    global_cfg.write_text(f"{bad_key}: sk-abc123\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="forbidden key"):
        load_config(project_dir=tmp_path, global_config_path=global_cfg)


def test_global_config_rejects_nested_api_key(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"embedding": {"api_key": "sk-secret"}})

    with pytest.raises(ConfigError, match="forbidden key"):
        load_config(project_dir=tmp_path, global_config_path=global_cfg)


def test_legitimate_keys_are_not_flagged(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"chunkers": {"max_chars": 1000}, "embedding": {"batch_size": 10}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.chunkers.max_chars == 1000


# ---------------------------------------------------------------------------
# Unknown key warnings
# ---------------------------------------------------------------------------


def test_unknown_top_level_key_warns(tmp_path: Path) -> None:
    """Unknown top-level key in config emits UserWarning (not error)."""
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"unknown_section": {"foo": "bar"}})

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)

    assert any("unknown_section" in str(w.message) for w in caught)
    assert cfg.search.limit == 10


# ---------------------------------------------------------------------------
# Environment variable overrides
# ---------------------------------------------------------------------------


def test_env_var_embedding_model_override(
    tmp_path: Path, missing_global: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """QUARRY_EMBEDDING_MODEL env var overrides config file value."""
    _write_yaml(tmp_path / "quarry.yaml", {"embedding": {"model": "openai/text-embedding-3-small"}})
    monkeypatch.setenv("QUARRY_EMBEDDING_MODEL", "openai/text-embedding-3-large")

    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.embedding.model == "openai/text-embedding-3-large"


def test_env_var_sync_url_is_validated(
    tmp_path: Path, missing_global: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("QUARRY_SYNC_URL", "not-a-url")
    with pytest.raises(ConfigError, match="sync.url"):
        load_config(project_dir=tmp_path, global_config_path=missing_global)


# ---------------------------------------------------------------------------
# index_dir
# ---------------------------------------------------------------------------


def test_index_dir(tmp_path: Path) -> None:
    assert index_dir(tmp_path) == tmp_path / INDEX_DIR_NAME
