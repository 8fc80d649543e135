"""Quarry configuration loader.

Priority (high → low):
  1. CLI flags              (handled at call site, not in this module)
  2. Environment variables  (QUARRY_EMBEDDING_MODEL, QUARRY_SYNC_URL)
  3. Per-project quarry.yaml  (project root)
  4. Global ~/.quarry/config.yaml  (defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from quarry.ingest.dispatch import ChunkerSettings
from quarry.ingest.embeddings import EmbeddingConfig
from quarry.ingest.scanner import DEFAULT_EXCLUDE_PATTERNS, DEFAULT_INCLUDE_PATTERNS

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".quarry"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "quarry.yaml"

INDEX_DIR_NAME: str = ".quarry"

# Fields that suggest an API key; forbidden in global config.
# Does NOT match legitimate keys like max_chars or batch_size.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["index", "embedding", "chunkers", "search", "store", "sync"]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class IndexCfg:
    """Which files are indexed and how the run paces itself (quarry.yaml: index:)."""

    include_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_INCLUDE_PATTERNS))
    exclude_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))
    auto_index: bool = False
    yield_every: int = 10


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (quarry.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    batch_size: int = 100
    batch_delay: float = 0.2
    max_retries: int = 3

    def to_embedding_config(self) -> EmbeddingConfig:
        return EmbeddingConfig(
            model=self.model,
            batch_size=self.batch_size,
            batch_delay=self.batch_delay,
            max_retries=self.max_retries,
        )


@dataclass
class ChunkersCfg:
    """Chunk size bounds (quarry.yaml: chunkers:)."""

    max_chars: int = 3200
    min_chars: int = 50
    merge_gap_seconds: float = 2.0

    def to_settings(self) -> ChunkerSettings:
        return ChunkerSettings(
            max_chars=self.max_chars,
            min_chars=self.min_chars,
            merge_gap_seconds=self.merge_gap_seconds,
        )


@dataclass
class SearchCfg:
    """Search defaults (quarry.yaml: search:)."""

    limit: int = 10
    min_score: float = 0.3


@dataclass
class StoreCfg:
    """Index persistence (quarry.yaml: store:)."""

    debounce_seconds: float = 0.5


@dataclass
class SyncCfg:
    """Remote sync target (quarry.yaml: sync:)."""

    url: str | None = None
    project_id: str | None = None


@dataclass
class QuarryConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    index: IndexCfg = field(default_factory=IndexCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    chunkers: ChunkersCfg = field(default_factory=ChunkersCfg)
    search: SearchCfg = field(default_factory=SearchCfg)
    store: StoreCfg = field(default_factory=StoreCfg)
    sync: SyncCfg = field(default_factory=SyncCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Cannot parse '{path}': {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"'{path}' must contain a mapping at the top level.")
    return data


def _validate(cfg: QuarryConfig) -> None:
    """Raise ConfigError for values the indexer cannot run with."""
    ch = cfg.chunkers
    if ch.max_chars < 1:
        raise ConfigError(f"chunkers.max_chars must be >= 1, got {ch.max_chars}.")
    if not 0 <= ch.min_chars <= ch.max_chars:
        raise ConfigError(
            f"chunkers.min_chars ({ch.min_chars}) must be between 0 and "
            f"chunkers.max_chars ({ch.max_chars})."
        )
    if ch.merge_gap_seconds < 0:
        raise ConfigError("chunkers.merge_gap_seconds must not be negative.")
    if cfg.embedding.batch_size < 1:
        raise ConfigError(f"embedding.batch_size must be >= 1, got {cfg.embedding.batch_size}.")
    if cfg.embedding.batch_delay < 0:
        raise ConfigError("embedding.batch_delay must not be negative.")
    if cfg.embedding.max_retries < 0:
        raise ConfigError("embedding.max_retries must not be negative.")
    if cfg.index.yield_every < 1:
        raise ConfigError(f"index.yield_every must be >= 1, got {cfg.index.yield_every}.")
    if not cfg.index.include_patterns:
        raise ConfigError("index.include_patterns must list at least one pattern.")
    if cfg.search.limit < 1:
        raise ConfigError(f"search.limit must be >= 1, got {cfg.search.limit}.")
    if not -1.0 <= cfg.search.min_score <= 1.0:
        raise ConfigError(f"search.min_score must be in [-1, 1], got {cfg.search.min_score}.")
    if cfg.store.debounce_seconds < 0:
        raise ConfigError("store.debounce_seconds must not be negative.")
    if cfg.sync.url and not cfg.sync.url.startswith(("http://", "https://")):
        raise ConfigError(f"sync.url must be an http(s) URL: '{cfg.sync.url}'")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _str_list(value: Any, name: str) -> list[str]:
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigError(f"{name} must be a list of strings.")
    return [str(v) for v in value]


def _cfg_from_dict(data: dict[str, Any]) -> QuarryConfig:
    """Build a *QuarryConfig* from a merged raw YAML dict."""
    cfg = QuarryConfig()

    try:
        if "index" in data:
            i = data["index"] or {}
            cfg.index = IndexCfg(
                include_patterns=_str_list(
                    i.get("include_patterns", cfg.index.include_patterns), "index.include_patterns"
                ),
                exclude_patterns=_str_list(
                    i.get("exclude_patterns", cfg.index.exclude_patterns), "index.exclude_patterns"
                ),
                auto_index=bool(i.get("auto_index", cfg.index.auto_index)),
                yield_every=int(i.get("yield_every", cfg.index.yield_every)),
            )

        if "embedding" in data:
            e = data["embedding"] or {}
            cfg.embedding = EmbeddingCfg(
                model=str(e.get("model", cfg.embedding.model)),
                batch_size=int(e.get("batch_size", cfg.embedding.batch_size)),
                batch_delay=float(e.get("batch_delay", cfg.embedding.batch_delay)),
                max_retries=int(e.get("max_retries", cfg.embedding.max_retries)),
            )

        if "chunkers" in data:
            ch = data["chunkers"] or {}
            cfg.chunkers = ChunkersCfg(
                max_chars=int(ch.get("max_chars", cfg.chunkers.max_chars)),
                min_chars=int(ch.get("min_chars", cfg.chunkers.min_chars)),
                merge_gap_seconds=float(
                    ch.get("merge_gap_seconds", cfg.chunkers.merge_gap_seconds)
                ),
            )

        if "search" in data:
            s = data["search"] or {}
            cfg.search = SearchCfg(
                limit=int(s.get("limit", cfg.search.limit)),
                min_score=float(s.get("min_score", cfg.search.min_score)),
            )

        if "store" in data:
            st = data["store"] or {}
            cfg.store = StoreCfg(
                debounce_seconds=float(st.get("debounce_seconds", cfg.store.debounce_seconds)),
            )

        if "sync" in data:
            sy = data["sync"] or {}
            cfg.sync = SyncCfg(
                url=sy.get("url") or cfg.sync.url,
                project_id=str(sy["project_id"]) if sy.get("project_id") else cfg.sync.project_id,
            )
    except ConfigError:
        raise
    except (TypeError, ValueError, AttributeError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    return cfg


def _apply_env_overrides(cfg: QuarryConfig) -> QuarryConfig:
    """Apply QUARRY_* environment variable overrides (layer 2)."""
    if model := os.environ.get("QUARRY_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if url := os.environ.get("QUARRY_SYNC_URL"):
        cfg.sync.url = url
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> QuarryConfig:
    """Load and return a merged *QuarryConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *quarry.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged and validated *QuarryConfig*.

    Raises:
        ConfigError: If a file cannot be parsed, the global config contains
            API-key-like fields, or a value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = _read_yaml(global_path)
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = _read_yaml(project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg


def index_dir(project_dir: Path) -> Path:
    """Directory holding a project's index files."""
    return project_dir / INDEX_DIR_NAME
