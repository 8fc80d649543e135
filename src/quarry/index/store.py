"""In-memory index tables with a debounced SQLite backing file.

All reads and mutations hit the in-memory tables. Mutations mark the store
dirty and, when an event loop is running, schedule a flush a short time
later so bursts of writes cost one disk write. A flush rewrites the whole
snapshot in one transaction (see :class:`quarry.db.repository.Repository`).
"""

from __future__ import annotations

import asyncio
import sqlite3
import warnings
from collections.abc import Iterable, Mapping
from dataclasses import replace
from pathlib import Path

from quarry.db.connection import Database
from quarry.db.migrations import SchemaVersionError
from quarry.db.models import Chunk, FileHashRecord, IndexSnapshot, utc_now
from quarry.db.repository import Repository
from quarry.db.schema import initialize

DEFAULT_DEBOUNCE_SECONDS = 0.5


class IndexWriteError(RuntimeError):
    """Raised when the index snapshot cannot be written to disk."""


class IndexStore:
    """Chunks, file hashes and embeddings for one project.

    Args:
        db_path: SQLite file backing the store (created on first flush).
        debounce_seconds: Delay between the last mutation and the
            scheduled flush.
    """

    def __init__(
        self,
        db_path: Path | str,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self.db_path = Path(db_path)
        self.debounce_seconds = debounce_seconds
        self._chunks: dict[str, Chunk] = {}
        self._file_chunks: dict[str, list[str]] = {}
        self._hashes: dict[str, FileHashRecord] = {}
        self._embeddings: dict[str, list[float]] = {}
        self._conn: sqlite3.Connection | None = None
        self._dirty = False
        self._timer: asyncio.TimerHandle | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Load the persisted snapshot.

        A file that cannot be read as an index is moved aside to
        ``<name>.corrupt`` and the store starts empty, with a warning.

        Raises:
            SchemaVersionError: If the file was written by a newer schema.
        """
        try:
            snapshot = self._load()
        except SchemaVersionError:
            raise
        except sqlite3.DatabaseError as exc:
            warnings.warn(
                f"Index file '{self.db_path}' is unreadable ({exc}); starting with an empty index.",
                UserWarning,
                stacklevel=2,
            )
            self._discard_corrupt_file()
            snapshot = self._load()

        self._chunks = {}
        self._file_chunks = {}
        for chunk in snapshot.chunks:
            self._add_chunk(chunk)
        self._hashes = dict(snapshot.file_hashes)
        self._embeddings = {
            cid: vec for cid, vec in snapshot.embeddings.items() if cid in self._chunks
        }
        self._dirty = False

    def flush(self) -> None:
        """Write the current snapshot to disk if anything changed.

        Raises:
            IndexWriteError: If the write fails. The store stays dirty.
        """
        self._cancel_timer()
        if not self._dirty:
            return
        try:
            Repository(self._connection()).save_snapshot(self._persistable_snapshot())
        except (sqlite3.Error, OSError) as exc:
            raise IndexWriteError(f"Failed to write index '{self.db_path}': {exc}") from exc
        self._dirty = False

    def close(self) -> None:
        """Cancel any pending flush, write outstanding changes and release the file."""
        try:
            self.flush()
        finally:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert_chunks(self, chunks: Iterable[Chunk]) -> None:
        """Insert *chunks*, replacing any existing chunk with the same id in place."""
        for chunk in chunks:
            self._add_chunk(replace(chunk))
        self._mark_dirty()

    def remove_chunks_for_file(self, file_path: str) -> list[str]:
        """Drop every chunk of *file_path* and their embeddings; return the removed ids."""
        removed = self._file_chunks.pop(file_path, [])
        for chunk_id in removed:
            self._chunks.pop(chunk_id, None)
            self._embeddings.pop(chunk_id, None)
        if removed:
            self._mark_dirty()
        return list(removed)

    def set_file_hash(self, file_path: str, hash: str, chunk_count: int) -> None:
        self._hashes[file_path] = FileHashRecord(hash=hash, chunk_count=chunk_count, modified_at=utc_now())
        self._mark_dirty()

    def remove_file_hash(self, file_path: str) -> None:
        if self._hashes.pop(file_path, None) is not None:
            self._mark_dirty()

    def set_embeddings(self, embeddings: Mapping[str, list[float]]) -> int:
        """Attach vectors to chunks. Ids not in the store are ignored.

        Returns:
            The number of embeddings stored.
        """
        stored = 0
        for chunk_id, vector in embeddings.items():
            if chunk_id in self._chunks:
                self._embeddings[chunk_id] = list(vector)
                stored += 1
        if stored:
            self._mark_dirty()
        return stored

    def replace_file(self, file_path: str, hash: str, chunks: list[Chunk]) -> None:
        """Swap a file's chunks and hash record in one step.

        A file with no chunks ends up with no hash record, so it is picked
        up again on the next run.
        """
        self.remove_chunks_for_file(file_path)
        if not chunks:
            self.remove_file_hash(file_path)
            return
        self.insert_chunks(chunks)
        self.set_file_hash(file_path, hash, len(chunks))

    def remove_file(self, file_path: str) -> list[str]:
        """Drop a file's chunks, embeddings and hash record."""
        removed = self.remove_chunks_for_file(file_path)
        self.remove_file_hash(file_path)
        return removed

    # ------------------------------------------------------------------
    # Reads (copies; callers never see live store objects)
    # ------------------------------------------------------------------

    def get_chunks_for_file(self, file_path: str) -> list[Chunk]:
        return [replace(self._chunks[cid]) for cid in self._file_chunks.get(file_path, [])]

    def get_file_hash(self, file_path: str) -> FileHashRecord | None:
        record = self._hashes.get(file_path)
        return replace(record) if record is not None else None

    def get_all_file_hashes(self) -> dict[str, FileHashRecord]:
        return {path: replace(rec) for path, rec in self._hashes.items()}

    def get_all_chunks(self) -> list[Chunk]:
        """Every chunk whose file has a hash record, in insertion order."""
        return [replace(c) for c in self._chunks.values() if c.file_path in self._hashes]

    def get_chunks_without_embeddings(self) -> list[Chunk]:
        return [
            replace(c)
            for c in self._chunks.values()
            if c.file_path in self._hashes and c.id not in self._embeddings
        ]

    def get_all_embeddings(self) -> dict[str, list[float]]:
        return {cid: list(vec) for cid, vec in self._embeddings.items() if cid in self._chunks}

    def get_embedding(self, chunk_id: str) -> list[float] | None:
        vector = self._embeddings.get(chunk_id)
        return list(vector) if vector is not None else None

    def chunk_count(self) -> int:
        return len(self._chunks)

    def embedding_count(self) -> int:
        return len(self._embeddings)

    def file_count(self) -> int:
        return len(self._hashes)

    def indexed_paths(self) -> list[str]:
        return list(self._hashes)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _add_chunk(self, chunk: Chunk) -> None:
        previous = self._chunks.get(chunk.id)
        if previous is not None and previous.file_path != chunk.file_path:
            self._file_chunks[previous.file_path].remove(chunk.id)
        self._chunks[chunk.id] = chunk
        ids = self._file_chunks.setdefault(chunk.file_path, [])
        if chunk.id not in ids:
            ids.append(chunk.id)

    def _persistable_snapshot(self) -> IndexSnapshot:
        chunks = [c for c in self._chunks.values() if c.file_path in self._hashes]
        present = {c.id for c in chunks}
        return IndexSnapshot(
            chunks=chunks,
            file_hashes=dict(self._hashes),
            embeddings={cid: v for cid, v in self._embeddings.items() if cid in present},
        )

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            conn = Database(self.db_path).connect()
            try:
                initialize(conn)
            except BaseException:
                conn.close()
                raise
            self._conn = conn
        return self._conn

    def _load(self) -> IndexSnapshot:
        if not self.db_path.exists():
            return IndexSnapshot()
        return Repository(self._connection()).load_snapshot()

    def _discard_corrupt_file(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        self.db_path.replace(self.db_path.with_name(self.db_path.name + ".corrupt"))
        for suffix in ("-wal", "-shm"):
            sidecar = self.db_path.with_name(self.db_path.name + suffix)
            if sidecar.exists():
                sidecar.unlink()

    def _mark_dirty(self) -> None:
        self._dirty = True
        self._schedule_flush()

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._cancel_timer()
        self._timer = loop.call_later(self.debounce_seconds, self._timed_flush)

    def _timed_flush(self) -> None:
        self._timer = None
        try:
            self.flush()
        except IndexWriteError as exc:
            warnings.warn(f"Deferred index write failed: {exc}", UserWarning, stacklevel=2)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
