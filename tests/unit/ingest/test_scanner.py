"""Tests for project file scanning."""

from __future__ import annotations

from pathlib import Path

import pytest

from quarry.ingest.scanner import (
    DEFAULT_EXCLUDE_PATTERNS,
    DEFAULT_INCLUDE_PATTERNS,
    is_indexable,
    matches_exclude,
    matches_include,
    normalize_include,
    scan,
)


def _write(root: Path, rel: str, text: str = "content") -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def project(tmp_path: Path) -> Path:
    _write(tmp_path, "b.txt")
    _write(tmp_path, "a.md")
    _write(tmp_path, "docs/c.markdown")
    _write(tmp_path, "docs/call.transcript.json")
    _write(tmp_path, "docs/data.json")
    _write(tmp_path, "script.py")
    _write(tmp_path, "node_modules/pkg/readme.md")
    _write(tmp_path, ".git/notes.md")
    _write(tmp_path, ".quarry/cache.md")
    return tmp_path


def _rel(files, root):
    return [Path(f.path).relative_to(root).as_posix() for f in files]


def test_scan_returns_indexable_files_in_sorted_order(project):
    files = scan(project)
    assert _rel(files, project) == [
        "a.md",
        "b.txt",
        "docs/c.markdown",
        "docs/call.transcript.json",
    ]


def test_scan_reads_content(project):
    files = scan(project)
    assert all(f.content == "content" for f in files)


def test_scan_is_deterministic(project):
    assert _rel(scan(project), project) == _rel(scan(project), project)


def test_excluded_directories_are_pruned(project):
    paths = _rel(scan(project), project)
    assert not any(p.startswith(("node_modules", ".git", ".quarry")) for p in paths)


def test_custom_exclude_pattern(project):
    files = scan(project, DEFAULT_INCLUDE_PATTERNS, [*DEFAULT_EXCLUDE_PATTERNS, "docs"])
    assert _rel(files, project) == ["a.md", "b.txt"]


def test_glob_include_patterns_reduce_to_suffix(project):
    files = scan(project, ["**/*.md", "*.transcript.json"], DEFAULT_EXCLUDE_PATTERNS)
    assert _rel(files, project) == ["a.md", "docs/call.transcript.json"]


def test_invalid_utf8_is_skipped_with_warning(project):
    (project / "bad.txt").write_bytes(b"\xff\xfe\xfa not utf-8")
    with pytest.warns(UserWarning, match="bad.txt"):
        files = scan(project)
    assert "bad.txt" not in _rel(files, project)
    assert "a.md" in _rel(files, project)


def test_missing_root_warns_and_returns_empty(tmp_path):
    with pytest.warns(UserWarning):
        assert scan(tmp_path / "missing") == []


@pytest.mark.parametrize(
    "raw, expected",
    [("**/*.md", ".md"), ("*.MD", ".md"), (".txt", ".txt"), ("*.transcript.json", ".transcript.json"), ("notes_*.txt", "notes_*.txt")],
)
def test_normalize_include(raw, expected):
    assert normalize_include(raw) == expected


def test_matches_include_is_case_insensitive():
    assert matches_include("README.MD", [".md"])
    assert not matches_include("readme.mdx", [".md"])


def test_matches_include_name_glob():
    assert matches_include("notes_2024.txt", ["notes_*.txt"])
    assert not matches_include("other.txt", ["notes_*.txt"])


def test_matches_exclude_exact_and_glob():
    assert matches_exclude("node_modules", DEFAULT_EXCLUDE_PATTERNS) == "node_modules"
    assert matches_exclude("build-1", ["build-*"]) == "build-*"
    assert matches_exclude("src", DEFAULT_EXCLUDE_PATTERNS) is None


def test_is_indexable():
    assert is_indexable("/p/x/call.transcript.json")
    assert not is_indexable("/p/x/data.json")
