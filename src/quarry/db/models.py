"""Domain models for the Quarry index."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class ChunkType(str, Enum):
    HEADING = "heading"
    SPEAKER_TURN = "speaker_turn"
    PARAGRAPH = "paragraph"


def new_chunk_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass
class ProjectFile:
    """One scanned file: path plus a fresh snapshot of its text."""

    path: str
    content: str


@dataclass
class Chunk:
    file_path: str
    chunk_type: ChunkType
    content: str
    start_offset: int
    end_offset: int
    heading_path: str | None = None
    speaker: str | None = None
    start_time: float | None = None
    end_time: float | None = None
    id: str = field(default_factory=new_chunk_id)
    created_at: str = field(default_factory=utc_now)


@dataclass
class FileHashRecord:
    hash: str
    chunk_count: int
    modified_at: str = field(default_factory=utc_now)


@dataclass
class IndexSnapshot:
    """Complete persisted state of one project index."""

    chunks: list[Chunk] = field(default_factory=list)
    file_hashes: dict[str, FileHashRecord] = field(default_factory=dict)
    embeddings: dict[str, list[float]] = field(default_factory=dict)
