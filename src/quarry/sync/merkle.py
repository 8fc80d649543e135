"""Merkle tree over the index, for incremental sync.

Leaves are per file: the SHA-256 of the file's sorted chunk hashes, so chunk
order does not matter. The root is the SHA-256 of the ``path:leaf`` pairs of
all files sorted by path and joined by ``|`` (``sha256("empty")`` for an empty
tree). Everything here is pure; fetching and pushing trees lives in
:mod:`quarry.sync.service`.
"""

from __future__ import annotations

import hashlib
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from quarry.db.models import utc_now
from quarry.index.store import IndexStore

_EMPTY_ROOT_INPUT = "empty"

ADDED = "added"
MODIFIED = "modified"
REMOVED = "removed"


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def chunk_hash(content: str) -> str:
    return _sha256(content)


def file_leaf_hash(chunk_hashes: Iterable[str]) -> str:
    """Order-independent hash of one file's chunk hashes."""
    return _sha256("\n".join(sorted(chunk_hashes)))


def root_hash(file_hashes: Mapping[str, str]) -> str:
    if not file_hashes:
        return _sha256(_EMPTY_ROOT_INPUT)
    combined = "|".join(f"{path}:{file_hashes[path]}" for path in sorted(file_hashes))
    return _sha256(combined)


@dataclass
class MerkleTree:
    root_hash: str
    file_hashes: dict[str, str] = field(default_factory=dict)
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        """Remote wire form."""
        return {
            "rootHash": self.root_hash,
            "fileHashes": dict(self.file_hashes),
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MerkleTree:
        """Parse the remote wire form.

        Raises:
            ValueError: If ``rootHash`` or ``fileHashes`` is missing or malformed.
        """
        root = data.get("rootHash")
        hashes = data.get("fileHashes")
        if not isinstance(root, str) or not isinstance(hashes, Mapping):
            raise ValueError("Merkle tree must have a string 'rootHash' and a 'fileHashes' mapping")
        return cls(
            root_hash=root,
            file_hashes={str(k): str(v) for k, v in hashes.items()},
            created_at=str(data.get("createdAt") or utc_now()),
        )


@dataclass
class ChangedFile:
    path: str
    change_type: str
    hash: str | None = None


def build_tree(files: Iterable[tuple[str, Iterable[str]]]) -> MerkleTree:
    """Build a tree from ``(path, chunk_hashes)`` pairs."""
    leaves = {path: file_leaf_hash(hashes) for path, hashes in files}
    ordered = {path: leaves[path] for path in sorted(leaves)}
    return MerkleTree(root_hash=root_hash(ordered), file_hashes=ordered)


def relative_path(project_root: Path | str, path: str) -> str:
    """POSIX path of *path* relative to *project_root*; unchanged if outside it."""
    root = str(project_root).replace("\\", "/").rstrip("/")
    normalized = path.replace("\\", "/")
    if normalized.startswith(root + "/"):
        return normalized[len(root) + 1 :]
    return path


def tree_from_store(store: IndexStore, project_root: Path | str) -> MerkleTree:
    """Build the local tree from every indexed file in *store*.

    Paths are made relative to *project_root* so trees built on different
    machines compare equal.
    """
    files = []
    for path in store.get_all_file_hashes():
        chunks = store.get_chunks_for_file(path)
        files.append((relative_path(project_root, path), [chunk_hash(c.content) for c in chunks]))
    return build_tree(files)


def diff_trees(local: MerkleTree, remote: MerkleTree | None) -> list[ChangedFile]:
    """Files that differ between *local* and *remote*, sorted by path.

    A missing remote tree means every local file is ``added``.
    """
    if remote is None:
        return [ChangedFile(p, ADDED, h) for p, h in sorted(local.file_hashes.items())]
    if local.root_hash == remote.root_hash:
        return []

    changes: list[ChangedFile] = []
    for path in sorted(set(local.file_hashes) | set(remote.file_hashes)):
        mine = local.file_hashes.get(path)
        theirs = remote.file_hashes.get(path)
        if theirs is None:
            changes.append(ChangedFile(path, ADDED, mine))
        elif mine is None:
            changes.append(ChangedFile(path, REMOVED))
        elif mine != theirs:
            changes.append(ChangedFile(path, MODIFIED, mine))
    return changes


def compare_trees(local: MerkleTree, remote: MerkleTree | None) -> list[str]:
    return [c.path for c in diff_trees(local, remote)]


def to_native_path(project_root: Path | str, rel_path: str) -> str:
    """Inverse of :func:`relative_path` for paths stored by the indexer."""
    if os.path.isabs(rel_path):
        return rel_path
    return str(Path(project_root).joinpath(*rel_path.split("/")))
