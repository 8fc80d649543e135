"""Quarry database layer."""

from quarry.db.connection import Database
from quarry.db.migrations import MIGRATIONS, SchemaVersionError, run_migrations
from quarry.db.repository import Repository
from quarry.db.schema import initialize
from quarry.db.vectors import cosine_similarity, deserialize_vector, serialize_vector

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "Repository",
    "SchemaVersionError",
    "cosine_similarity",
    "deserialize_vector",
    "serialize_vector",
]
