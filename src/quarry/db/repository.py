"""Repository for the persisted index snapshot.

The on-disk index is one self-consistent document per project: every save
rewrites the chunk, file-hash and embedding tables inside a single
transaction, so a failed or interrupted save leaves the previous snapshot
intact.
"""

from __future__ import annotations

import sqlite3

from quarry.db.models import Chunk, ChunkType, FileHashRecord, IndexSnapshot
from quarry.db.vectors import deserialize_vector, serialize_vector


class Repository:
    """Load/save access to the index tables.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see quarry.db.schema.initialize).
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # Snapshot load
    # ------------------------------------------------------------------

    def load_snapshot(self) -> IndexSnapshot:
        """Read the full index into memory.

        Chunks come back in their original insertion order.
        """
        file_hashes = {
            row["file_path"]: FileHashRecord(
                hash=row["hash"],
                chunk_count=row["chunk_count"],
                modified_at=row["modified_at"],
            )
            for row in self._conn.execute(
                "SELECT file_path, hash, chunk_count, modified_at FROM file_hashes"
            ).fetchall()
        }

        chunks = [
            _row_to_chunk(row)
            for row in self._conn.execute(
                """
                SELECT id, file_path, chunk_type, content, start_offset, end_offset,
                       heading_path, speaker, start_time, end_time, created_at
                FROM chunks ORDER BY seq
                """
            ).fetchall()
        ]

        embeddings = {
            row["chunk_id"]: deserialize_vector(row["vector"], row["dimensions"])
            for row in self._conn.execute(
                "SELECT chunk_id, dimensions, vector FROM embeddings"
            ).fetchall()
        }

        return IndexSnapshot(chunks=chunks, file_hashes=file_hashes, embeddings=embeddings)

    # ------------------------------------------------------------------
    # Snapshot save
    # ------------------------------------------------------------------

    def save_snapshot(self, snapshot: IndexSnapshot) -> None:
        """Replace the stored index with *snapshot* in one transaction.

        Raises:
            sqlite3.Error: On any write failure. The transaction is rolled
                back and the previously stored snapshot is kept.
        """
        with self._conn:
            self._conn.execute("DELETE FROM embeddings")
            self._conn.execute("DELETE FROM chunks")
            self._conn.execute("DELETE FROM file_hashes")

            self._conn.executemany(
                """
                INSERT INTO file_hashes (file_path, hash, chunk_count, modified_at)
                VALUES (?, ?, ?, ?)
                """,
                [
                    (path, rec.hash, rec.chunk_count, rec.modified_at)
                    for path, rec in snapshot.file_hashes.items()
                ],
            )
            self._conn.executemany(
                """
                INSERT INTO chunks (seq, id, file_path, chunk_type, content,
                                    start_offset, end_offset, heading_path, speaker,
                                    start_time, end_time, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        seq,
                        c.id,
                        c.file_path,
                        c.chunk_type.value,
                        c.content,
                        c.start_offset,
                        c.end_offset,
                        c.heading_path,
                        c.speaker,
                        c.start_time,
                        c.end_time,
                        c.created_at,
                    )
                    for seq, c in enumerate(snapshot.chunks)
                ],
            )
            self._conn.executemany(
                "INSERT INTO embeddings (chunk_id, dimensions, vector) VALUES (?, ?, ?)",
                [
                    (chunk_id, len(vector), serialize_vector(vector))
                    for chunk_id, vector in snapshot.embeddings.items()
                ],
            )


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        file_path=row["file_path"],
        chunk_type=ChunkType(row["chunk_type"]),
        content=row["content"],
        start_offset=row["start_offset"],
        end_offset=row["end_offset"],
        heading_path=row["heading_path"],
        speaker=row["speaker"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        created_at=row["created_at"],
    )
