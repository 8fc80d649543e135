"""Quarry ingest pipeline: scanning, change detection, chunking and embedding."""

from quarry.ingest.base import BaseChunker
from quarry.ingest.changes import ChangeSet, compute_hash, diff_files
from quarry.ingest.dispatch import ChunkerSettings, chunk_file, get_chunker
from quarry.ingest.markdown import MarkdownChunker
from quarry.ingest.plaintext import PlainTextChunker
from quarry.ingest.scanner import scan
from quarry.ingest.transcript import TranscriptChunker

__all__ = [
    "BaseChunker",
    "ChangeSet",
    "ChunkerSettings",
    "MarkdownChunker",
    "PlainTextChunker",
    "TranscriptChunker",
    "chunk_file",
    "compute_hash",
    "diff_files",
    "get_chunker",
    "scan",
]
