"""Project file scanning.

Walks a project tree in sorted order, pruning excluded names before include
matching, and returns a fresh ``(path, content)`` snapshot of every indexable
file. Nothing is cached between calls.
"""

from __future__ import annotations

import fnmatch
import os
import warnings
from collections.abc import Iterable
from pathlib import Path

from quarry.db.models import ProjectFile

DEFAULT_INCLUDE_PATTERNS: tuple[str, ...] = (".md", ".markdown", ".txt", ".transcript.json")
DEFAULT_EXCLUDE_PATTERNS: tuple[str, ...] = (".quarry", ".git", ".vscode", "node_modules", ".DS_Store")

_GLOB_CHARS = set("*?[")


def normalize_include(pattern: str) -> str:
    """Reduce an include pattern to a lower-cased suffix where possible.

    ``**/*.md``, ``*.md`` and ``.md`` all become ``.md``. Patterns that still
    contain glob characters afterwards (``notes_*.txt``) are kept as name
    globs.
    """
    p = pattern.replace("\\", "/").rsplit("/", 1)[-1]
    if p.startswith("*") and not _GLOB_CHARS.intersection(p[1:]):
        p = p[1:]
    return p.lower()


def matches_include(name: str, patterns: Iterable[str]) -> bool:
    lower = name.lower()
    for raw in patterns:
        pattern = normalize_include(raw)
        if _GLOB_CHARS.intersection(pattern):
            if fnmatch.fnmatch(lower, pattern):
                return True
        elif lower.endswith(pattern):
            return True
    return False


def matches_exclude(name: str, patterns: Iterable[str]) -> str | None:
    """Return the first exclude pattern matching the path segment *name*."""
    for pattern in patterns:
        if name == pattern or fnmatch.fnmatchcase(name, pattern):
            return pattern
    return None


def iter_candidates(
    root: Path, exclude_patterns: Iterable[str]
) -> Iterable[Path]:
    """Yield every non-excluded file under *root*, depth-first in sorted order.

    Unreadable directories are skipped with a warning.
    """
    excludes = tuple(exclude_patterns)
    try:
        entries = sorted(os.scandir(root), key=lambda e: e.name)
    except OSError as exc:
        warnings.warn(f"Skipping unreadable directory '{root}': {exc}", UserWarning, stacklevel=2)
        return

    for entry in entries:
        if matches_exclude(entry.name, excludes):
            continue
        path = Path(entry.path)
        if entry.is_dir(follow_symlinks=False):
            yield from iter_candidates(path, excludes)
        elif entry.is_file():
            yield path


def scan(
    root: Path | str,
    include_patterns: Iterable[str] = DEFAULT_INCLUDE_PATTERNS,
    exclude_patterns: Iterable[str] = DEFAULT_EXCLUDE_PATTERNS,
) -> list[ProjectFile]:
    """Return ``ProjectFile`` snapshots for all indexable files under *root*.

    A file that cannot be read or decoded as UTF-8 is skipped with a
    ``UserWarning``; the scan continues.
    """
    includes = tuple(include_patterns)
    files: list[ProjectFile] = []
    for path in iter_candidates(Path(root), exclude_patterns):
        if not matches_include(path.name, includes):
            continue
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            warnings.warn(f"Skipping unreadable file '{path}': {exc}", UserWarning, stacklevel=2)
            continue
        files.append(ProjectFile(path=str(path), content=content))
    return files


def is_indexable(path: str, include_patterns: Iterable[str] = DEFAULT_INCLUDE_PATTERNS) -> bool:
    return matches_include(Path(path).name, include_patterns)
