"""Forward-only migration runner for the Quarry index schema.

The schema version is the on-disk version tag: a file written by a newer
Quarry (higher version than the last known migration) is refused rather than
silently reinterpreted.
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS file_hashes (
    file_path       TEXT PRIMARY KEY,
    hash            TEXT NOT NULL,
    chunk_count     INTEGER NOT NULL,
    modified_at     TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chunks (
    seq             INTEGER NOT NULL,
    id              TEXT PRIMARY KEY,
    file_path       TEXT NOT NULL REFERENCES file_hashes(file_path) ON DELETE CASCADE,
    chunk_type      TEXT NOT NULL,
    content         TEXT NOT NULL,
    start_offset    INTEGER NOT NULL,
    end_offset      INTEGER NOT NULL,
    heading_path    TEXT,
    speaker         TEXT,
    start_time      REAL,
    end_time        REAL,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_chunks_file_path ON chunks(file_path);

CREATE TABLE IF NOT EXISTS embeddings (
    chunk_id        TEXT PRIMARY KEY REFERENCES chunks(id) ON DELETE CASCADE,
    dimensions      INTEGER NOT NULL,
    vector          BLOB NOT NULL
);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]

LATEST_VERSION: int = MIGRATIONS[-1][0]


class SchemaVersionError(RuntimeError):
    """Raised when an index file was written by a newer schema version."""

    def __init__(self, found: int, supported: int) -> None:
        super().__init__(
            f"Index schema version {found} is newer than the supported version {supported}."
        )
        self.found = found
        self.supported = supported


def current_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied schema version (0 for a fresh database)."""
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] if row[0] is not None else 0


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any known version.

    Raises:
        SchemaVersionError: If the database is at a version newer than
            ``LATEST_VERSION``.
    """
    current = current_version(conn)
    if current > LATEST_VERSION:
        raise SchemaVersionError(current, LATEST_VERSION)

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
