"""Tests for the sync service and its HTTP backend."""

from __future__ import annotations

import io
import json
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from quarry.index.store import IndexStore
from quarry.sync.merkle import MerkleTree, build_tree, root_hash, tree_from_store
from quarry.sync.service import (
    ChunkSyncPayload,
    HttpSyncBackend,
    SyncError,
    SyncResult,
    SyncService,
    chunk_to_wire,
    error_for_status,
)


class FakeBackend:
    def __init__(self, remote: MerkleTree | None = None, result: SyncResult | None = None):
        self.remote = remote
        self.result = result or SyncResult(inserted=1)
        self.pushes: list[tuple[str, MerkleTree, list[ChunkSyncPayload]]] = []

    def fetch_tree(self, project_id):
        return self.remote

    def push_chunks(self, project_id, tree, payloads):
        self.pushes.append((project_id, tree, payloads))
        return self.result


@pytest.fixture
def store(tmp_path, make_chunk):
    s = IndexStore(tmp_path / ".quarry" / "index.db")
    for name, text in (("a.md", "alpha section"), ("b.md", "bravo section")):
        path = str(tmp_path / name)
        s.replace_file(path, f"hash-{name}", [make_chunk(file_path=path, content=text, heading_path="Top")])
    return s


def _service(store, backend, tmp_path):
    return SyncService(store, backend, tmp_path, tmp_path / ".quarry")


def _saved_root(tmp_path):
    saved = json.loads((tmp_path / ".quarry" / "merkle.json").read_text(encoding="utf-8"))
    return saved["rootHash"]


# ---------------------------------------------------------------------------
# SyncService
# ---------------------------------------------------------------------------


def test_first_sync_pushes_every_file(store, tmp_path):
    backend = FakeBackend(remote=None)
    result = _service(store, backend, tmp_path).sync("proj-1")

    assert result == SyncResult(inserted=1)
    project_id, tree, payloads = backend.pushes[0]
    assert project_id == "proj-1"
    assert tree.root_hash == tree_from_store(store, tmp_path).root_hash
    assert [p.file_path for p in payloads] == ["a.md", "b.md"]
    assert payloads[0].file_hash == "hash-a.md"
    assert payloads[0].chunks[0]["filePath"] == "a.md"
    assert payloads[0].chunks[0]["headingPath"] == "Top"


def test_sync_in_step_pushes_nothing(store, tmp_path):
    backend = FakeBackend(remote=tree_from_store(store, tmp_path))
    service = _service(store, backend, tmp_path)
    assert service.sync("proj-1") == SyncResult()
    assert backend.pushes == []
    assert _saved_root(tmp_path) == backend.remote.root_hash


def test_sync_pushes_only_changed_and_removed(store, tmp_path, make_chunk):
    hashes = dict(tree_from_store(store, tmp_path).file_hashes)
    hashes["gone.md"] = "stale-leaf"
    remote = MerkleTree(root_hash=root_hash(hashes), file_hashes=hashes)
    path = str(tmp_path / "b.md")
    store.replace_file(path, "hash-b2", [make_chunk(file_path=path, content="bravo rewritten")])
    backend = FakeBackend(remote=remote)

    _service(store, backend, tmp_path).sync("proj-1")

    payloads = backend.pushes[0][2]
    assert [p.file_path for p in payloads] == ["b.md", "gone.md"]
    assert payloads[0].file_hash == "hash-b2"
    assert payloads[0].chunks[0]["content"] == "bravo rewritten"
    assert payloads[1].to_dict() == {"filePath": "gone.md", "chunks": []}


def test_sync_saves_tree_after_push(store, tmp_path):
    service = _service(store, FakeBackend(), tmp_path)
    assert not (tmp_path / ".quarry" / "merkle.json").exists()
    service.sync("proj-1")
    assert _saved_root(tmp_path) == tree_from_store(store, tmp_path).root_hash


def test_failed_push_does_not_save_tree(store, tmp_path):
    class FailingBackend(FakeBackend):
        def push_chunks(self, project_id, tree, payloads):
            raise SyncError("Server error. Please try again later.", 500)

    service = _service(store, FailingBackend(), tmp_path)
    with pytest.raises(SyncError):
        service.sync("proj-1")
    assert not (tmp_path / ".quarry" / "merkle.json").exists()


def test_chunk_to_wire_omits_empty_optionals(tmp_path, make_chunk):
    chunk = make_chunk(file_path=str(tmp_path / "a.md"), content="text")
    wire = chunk_to_wire(chunk, tmp_path)
    assert wire["filePath"] == "a.md"
    assert wire["chunkType"] == "paragraph"
    assert "speaker" not in wire and "startTime" not in wire


# ---------------------------------------------------------------------------
# HTTP backend
# ---------------------------------------------------------------------------


def _response(payload):
    response = MagicMock()
    response.read.return_value = json.dumps(payload).encode("utf-8")
    response.__enter__.return_value = response
    return response


def _http_error(code, body=b""):
    return urllib.error.HTTPError("http://x", code, "err", {}, io.BytesIO(body))


@pytest.mark.parametrize(
    "status, fragment",
    [
        (409, "File changed during sync"),
        (429, "Rate limit"),
        (503, "Server error"),
        (401, "Authentication failed"),
        (400, "bad project"),
    ],
)
def test_error_for_status(status, fragment):
    err = error_for_status(status, "bad project")
    assert fragment in str(err)
    assert err.status == status


def test_error_for_status_without_body():
    assert str(error_for_status(418)) == "Sync failed: 418"


def test_backend_rejects_non_http_url():
    with pytest.raises(ValueError):
        HttpSyncBackend("ftp://example.com")


def test_fetch_tree_parses_response(monkeypatch):
    monkeypatch.setenv("QUARRY_SYNC_TOKEN", "secret-token")
    tree = build_tree([("a.md", ["1"])])
    with patch("urllib.request.urlopen", return_value=_response(tree.to_dict())) as urlopen:
        fetched = HttpSyncBackend("https://index.example.com/").fetch_tree("my proj")
    assert fetched.root_hash == tree.root_hash
    request = urlopen.call_args.args[0]
    assert request.full_url == "https://index.example.com/api/indexing/projects/my%20proj/merkle"
    assert request.get_header("Authorization") == "Bearer secret-token"


def test_fetch_tree_404_means_no_remote():
    with patch("urllib.request.urlopen", side_effect=_http_error(404)):
        assert HttpSyncBackend("https://index.example.com").fetch_tree("p") is None


def test_fetch_tree_error_payload_means_no_remote():
    with patch("urllib.request.urlopen", return_value=_response({"error": "not found"})):
        assert HttpSyncBackend("https://index.example.com").fetch_tree("p") is None


def test_push_chunks_posts_tree_and_files():
    tree = build_tree([("a.md", ["1"])])
    payloads = [ChunkSyncPayload(file_path="a.md", chunks=[{"id": "c1"}], file_hash="h")]
    reply = {"inserted": 1, "updated": 2, "deleted": 3}
    with patch("urllib.request.urlopen", return_value=_response(reply)) as urlopen:
        result = HttpSyncBackend("https://index.example.com", token="t").push_chunks("p", tree, payloads)
    assert result == SyncResult(inserted=1, updated=2, deleted=3)
    request = urlopen.call_args.args[0]
    assert request.get_method() == "POST"
    body = json.loads(request.data.decode("utf-8"))
    assert body["merkleTree"]["rootHash"] == tree.root_hash
    assert body["changedFiles"] == [{"filePath": "a.md", "chunks": [{"id": "c1"}], "fileHash": "h"}]


def test_push_conflict_raises_sync_error():
    tree = build_tree([])
    with patch("urllib.request.urlopen", side_effect=_http_error(409)):
        with pytest.raises(SyncError, match="File changed during sync"):
            HttpSyncBackend("https://index.example.com").push_chunks("p", tree, [])


def test_unreachable_backend_raises_sync_error():
    with patch("urllib.request.urlopen", side_effect=urllib.error.URLError("connection refused")):
        with pytest.raises(SyncError, match="connection refused"):
            HttpSyncBackend("https://index.example.com").fetch_tree("p")
