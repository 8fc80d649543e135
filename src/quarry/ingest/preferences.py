"""Index preferences report: which project files are, or should be, indexed."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from quarry.ingest.scanner import iter_candidates, matches_include


@dataclass
class IndexableFile:
    path: str
    file_name: str
    size: int
    is_indexed: bool
    should_index: bool
    reason: str | None = None


@dataclass
class PreferenceStats:
    total: int
    indexed: int
    should_index: int


def scan_preferences(
    root: Path | str,
    include_patterns: Iterable[str],
    exclude_patterns: Iterable[str],
    indexed_paths: Iterable[str] = (),
) -> list[IndexableFile]:
    """List every non-excluded file under *root* with its indexing status.

    ``should_index`` means the file matches an include pattern;
    ``is_indexed`` means it currently has chunks in the index.
    """
    includes = tuple(include_patterns)
    indexed = set(indexed_paths)
    files: list[IndexableFile] = []
    for path in iter_candidates(Path(root), exclude_patterns):
        should_index = matches_include(path.name, includes)
        is_indexed = str(path) in indexed
        try:
            size = path.stat().st_size
        except OSError:
            size = 0
        files.append(
            IndexableFile(
                path=str(path),
                file_name=path.name,
                size=size,
                is_indexed=is_indexed,
                should_index=should_index,
                reason=_reason(path, should_index, is_indexed),
            )
        )
    return files


def _reason(path: Path, should_index: bool, is_indexed: bool) -> str | None:
    if should_index and not is_indexed:
        return "Matches indexing pattern"
    if not should_index:
        ext = path.suffix or "(none)"
        return f"File extension not in indexing patterns ({ext})"
    return None


def stats(files: Iterable[IndexableFile]) -> PreferenceStats:
    files = list(files)
    return PreferenceStats(
        total=len(files),
        indexed=sum(1 for f in files if f.is_indexed),
        should_index=sum(1 for f in files if f.should_index and not f.is_indexed),
    )
