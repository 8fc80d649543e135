"""Content-hash change detection.

Pure functions: no file I/O, no store access. The caller hands in the fresh
scan and the stored hash table and gets back what must be (re)indexed and
what must be dropped.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from quarry.db.models import FileHashRecord, ProjectFile


def compute_hash(content: str) -> str:
    """SHA-256 hex digest of the UTF-8 bytes of *content*."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


@dataclass
class PendingFile:
    """A scanned file that needs (re)indexing, with its fresh hash."""

    path: str
    content: str
    hash: str


@dataclass
class ChangeSet:
    to_index: list[PendingFile] = field(default_factory=list)
    to_remove: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_index and not self.to_remove


def classify_file(
    file: ProjectFile, stored_hashes: Mapping[str, FileHashRecord | str]
) -> PendingFile | None:
    """Return a PendingFile if *file* is new or changed, else None."""
    new_hash = compute_hash(file.content)
    stored = stored_hashes.get(file.path)
    stored_hash = stored.hash if isinstance(stored, FileHashRecord) else stored
    if stored_hash == new_hash:
        return None
    return PendingFile(file.path, file.content, new_hash)


def removed_paths(
    stored_hashes: Mapping[str, object], scanned_paths: Iterable[str]
) -> list[str]:
    """Stored paths that are absent from the scan, sorted."""
    seen = set(scanned_paths)
    return sorted(p for p in stored_hashes if p not in seen)


def diff_files(
    files: Iterable[ProjectFile],
    stored_hashes: Mapping[str, FileHashRecord | str],
) -> ChangeSet:
    """Classify *files* against *stored_hashes*.

    A file is ``to_index`` when no hash is stored for its path or the stored
    hash differs; ``to_remove`` lists stored paths missing from the scan
    (sorted). Everything else is ``unchanged``.
    """
    changes = ChangeSet()
    seen: list[str] = []
    for f in files:
        seen.append(f.path)
        pending = classify_file(f, stored_hashes)
        if pending is None:
            changes.unchanged.append(f.path)
        else:
            changes.to_index.append(pending)

    changes.to_remove = removed_paths(stored_hashes, seen)
    return changes
