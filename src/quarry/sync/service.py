"""Remote sync: push the chunks of changed files to the indexing backend.

A sync builds the local Merkle tree from the store, fetches the remote tree,
diffs the two and pushes one payload per changed file together with the
local tree. The backend is an external collaborator behind
:class:`SyncBackend`; :class:`HttpSyncBackend` talks to the HTTP API:

  GET  {base}/api/indexing/projects/{id}/merkle   → tree or 404
  POST {base}/api/indexing/projects/{id}/chunks   ← {merkleTree, changedFiles}
"""

from __future__ import annotations

import json
import os
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from quarry.db.models import Chunk
from quarry.index.store import IndexStore
from quarry.sync.merkle import (
    REMOVED,
    ChangedFile,
    MerkleTree,
    diff_trees,
    relative_path,
    to_native_path,
    tree_from_store,
)

MERKLE_FILE_NAME = "merkle.json"
_TIMEOUT = 30  # seconds
_USER_AGENT = "quarry/0.1"
_TOKEN_ENV = "QUARRY_SYNC_TOKEN"


class SyncError(RuntimeError):
    """Raised when the sync backend rejects a request or cannot be reached."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


@dataclass
class ChunkSyncPayload:
    """Chunks of one changed file; removed files carry no chunks."""

    file_path: str
    chunks: list[dict[str, Any]] = field(default_factory=list)
    file_hash: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"filePath": self.file_path, "chunks": self.chunks}
        if self.file_hash is not None:
            data["fileHash"] = self.file_hash
        return data


@dataclass
class SyncResult:
    inserted: int = 0
    updated: int = 0
    deleted: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncResult:
        return cls(
            inserted=int(data.get("inserted", 0)),
            updated=int(data.get("updated", 0)),
            deleted=int(data.get("deleted", 0)),
        )


class SyncBackend(Protocol):
    def fetch_tree(self, project_id: str) -> MerkleTree | None: ...

    def push_chunks(
        self, project_id: str, tree: MerkleTree, payloads: list[ChunkSyncPayload]
    ) -> SyncResult: ...


# ------------------------------------------------------------------
# HTTP backend
# ------------------------------------------------------------------


def error_for_status(status: int, body: str = "") -> SyncError:
    """Map an HTTP error status to a user-facing :class:`SyncError`."""
    if status == 409:
        return SyncError("File changed during sync. Please try again.", status)
    if status == 429:
        return SyncError("Rate limit exceeded. Please try again later.", status)
    if status >= 500:
        return SyncError("Server error. Please try again later.", status)
    if status in (401, 403):
        return SyncError("Authentication failed. Check QUARRY_SYNC_TOKEN.", status)
    return SyncError(body.strip() or f"Sync failed: {status}", status)


class HttpSyncBackend:
    """:class:`SyncBackend` over the indexing HTTP API.

    Args:
        base_url: Service root, e.g. ``https://index.example.com``.
        token: Bearer token. Defaults to ``$QUARRY_SYNC_TOKEN``.
    """

    def __init__(self, base_url: str, token: str | None = None) -> None:
        parsed = urllib.parse.urlparse(base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Sync URL must be an http(s) URL: '{base_url}'")
        self.base_url = base_url.rstrip("/")
        self.token = token if token is not None else os.getenv(_TOKEN_ENV)

    def _url(self, project_id: str, leaf: str) -> str:
        pid = urllib.parse.quote(project_id, safe="")
        return f"{self.base_url}/api/indexing/projects/{pid}/{leaf}"

    def _headers(self, json_body: bool = False) -> dict[str, str]:
        headers = {"User-Agent": _USER_AGENT, "Accept": "application/json"}
        if json_body:
            headers["Content-Type"] = "application/json"
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _send(self, request: urllib.request.Request) -> Any:
        try:
            with urllib.request.urlopen(request, timeout=_TIMEOUT) as response:
                raw = response.read()
        except urllib.error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="replace")
            raise error_for_status(exc.code, body) from exc
        except urllib.error.URLError as exc:
            raise SyncError(f"Failed to sync. Check your connection ({exc.reason}).") from exc
        try:
            return json.loads(raw.decode("utf-8")) if raw else {}
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SyncError(f"Sync backend returned invalid JSON: {exc}") from exc

    def fetch_tree(self, project_id: str) -> MerkleTree | None:
        request = urllib.request.Request(self._url(project_id, "merkle"), headers=self._headers())
        try:
            data = self._send(request)
        except SyncError as exc:
            if exc.status == 404:
                return None
            raise
        if not isinstance(data, dict) or data.get("error"):
            return None
        try:
            return MerkleTree.from_dict(data)
        except ValueError as exc:
            raise SyncError(f"Sync backend returned a malformed Merkle tree: {exc}") from exc

    def push_chunks(
        self, project_id: str, tree: MerkleTree, payloads: list[ChunkSyncPayload]
    ) -> SyncResult:
        body = json.dumps(
            {"merkleTree": tree.to_dict(), "changedFiles": [p.to_dict() for p in payloads]}
        ).encode("utf-8")
        request = urllib.request.Request(
            self._url(project_id, "chunks"),
            data=body,
            headers=self._headers(json_body=True),
            method="POST",
        )
        data = self._send(request)
        return SyncResult.from_dict(data if isinstance(data, dict) else {})


# ------------------------------------------------------------------
# Service
# ------------------------------------------------------------------


def chunk_to_wire(chunk: Chunk, project_root: Path | str) -> dict[str, Any]:
    """Wire form of a chunk, with its path relative to *project_root*."""
    data: dict[str, Any] = {
        "id": chunk.id,
        "filePath": relative_path(project_root, chunk.file_path),
        "chunkType": chunk.chunk_type.value,
        "content": chunk.content,
        "startOffset": chunk.start_offset,
        "endOffset": chunk.end_offset,
    }
    optional = {
        "headingPath": chunk.heading_path,
        "speaker": chunk.speaker,
        "startTime": chunk.start_time,
        "endTime": chunk.end_time,
    }
    data.update({k: v for k, v in optional.items() if v is not None})
    return data


class SyncService:
    """Pushes the minimal changed-file set to a :class:`SyncBackend`.

    The last local tree is kept at ``<index_dir>/merkle.json``.
    """

    def __init__(
        self,
        store: IndexStore,
        backend: SyncBackend,
        project_root: Path | str,
        index_dir: Path | str,
    ) -> None:
        self.store = store
        self.backend = backend
        self.project_root = Path(project_root)
        self.tree_path = Path(index_dir) / MERKLE_FILE_NAME

    def build_payloads(self, changes: list[ChangedFile]) -> list[ChunkSyncPayload]:
        payloads: list[ChunkSyncPayload] = []
        for change in changes:
            if change.change_type == REMOVED:
                payloads.append(ChunkSyncPayload(file_path=change.path))
                continue
            native = to_native_path(self.project_root, change.path)
            record = self.store.get_file_hash(native)
            payloads.append(
                ChunkSyncPayload(
                    file_path=change.path,
                    chunks=[
                        chunk_to_wire(c, self.project_root)
                        for c in self.store.get_chunks_for_file(native)
                    ],
                    file_hash=record.hash if record is not None else change.hash,
                )
            )
        return payloads

    def sync(self, project_id: str) -> SyncResult:
        """Sync the index with the backend project *project_id*.

        Raises:
            SyncError: If the backend rejects the request or is unreachable.
        """
        local = tree_from_store(self.store, self.project_root)
        remote = self.backend.fetch_tree(project_id)
        changes = diff_trees(local, remote)
        if not changes:
            self.save_tree(local)
            return SyncResult()

        result = self.backend.push_chunks(project_id, local, self.build_payloads(changes))
        self.save_tree(local)
        return result

    def save_tree(self, tree: MerkleTree) -> None:
        self.tree_path.parent.mkdir(parents=True, exist_ok=True)
        self.tree_path.write_text(json.dumps(tree.to_dict(), indent=2), encoding="utf-8")
