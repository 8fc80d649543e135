"""Chunker dispatch by file name.

  *.transcript.json  → TranscriptChunker
  .md / .markdown    → MarkdownChunker
  anything else      → PlainTextChunker
"""

from __future__ import annotations

from dataclasses import dataclass

from quarry.db.models import Chunk
from quarry.ingest.base import DEFAULT_MAX_CHARS, DEFAULT_MIN_CHARS, BaseChunker
from quarry.ingest.markdown import MarkdownChunker
from quarry.ingest.plaintext import PlainTextChunker
from quarry.ingest.transcript import DEFAULT_MERGE_GAP_SECONDS, TranscriptChunker

TRANSCRIPT_SUFFIX = ".transcript.json"
MARKDOWN_EXTS = {".md", ".markdown"}


@dataclass
class ChunkerSettings:
    """Size limits shared by every chunker."""

    max_chars: int = DEFAULT_MAX_CHARS
    min_chars: int = DEFAULT_MIN_CHARS
    merge_gap_seconds: float = DEFAULT_MERGE_GAP_SECONDS


def detect_type(file_path: str) -> str:
    """Return ``"transcript"``, ``"markdown"`` or ``"plaintext"`` for *file_path*."""
    name = file_path.replace("\\", "/").rsplit("/", 1)[-1].lower()
    if name.endswith(TRANSCRIPT_SUFFIX):
        return "transcript"
    if any(name.endswith(ext) for ext in MARKDOWN_EXTS):
        return "markdown"
    return "plaintext"


def get_chunker(file_path: str, settings: ChunkerSettings | None = None) -> BaseChunker:
    """Route to the correct chunker for *file_path*."""
    s = settings or ChunkerSettings()
    kind = detect_type(file_path)
    if kind == "transcript":
        return TranscriptChunker(
            max_chars=s.max_chars,
            min_chars=s.min_chars,
            merge_gap_seconds=s.merge_gap_seconds,
        )
    if kind == "markdown":
        return MarkdownChunker(max_chars=s.max_chars, min_chars=s.min_chars)
    return PlainTextChunker(max_chars=s.max_chars, min_chars=s.min_chars)


def chunk_file(
    file_path: str, content: str, settings: ChunkerSettings | None = None
) -> list[Chunk]:
    """Chunk *content* with the chunker matching *file_path*."""
    return get_chunker(file_path, settings).chunk(file_path, content)
