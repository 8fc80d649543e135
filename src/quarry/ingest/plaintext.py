"""Plain text chunker: paragraph-based."""

from __future__ import annotations

from quarry.db.models import Chunk, ChunkType
from quarry.ingest.base import BaseChunker, Span


class PlainTextChunker(BaseChunker):
    """Split plain text at blank-line paragraph boundaries.

    Strategy:
    - Each paragraph is a candidate chunk.
    - Paragraphs longer than ``max_chars`` are split at sentence boundaries.
    - A paragraph shorter than ``min_chars`` absorbs the following
      paragraph(s) until it reaches ``min_chars`` (bounded by ``max_chars``);
      a short trailing remainder is folded into the previous chunk when it
      fits.
    - Whatever is still below ``min_chars`` is dropped.
    """

    chunk_type = ChunkType.PARAGRAPH

    def chunk(self, file_path: str, content: str) -> list[Chunk]:
        if not content.strip():
            return []
        spans = self.split(content, 0, len(content))
        return [self._make_chunk(file_path, content, span) for span in spans]

    def split(self, text: str, start: int, end: int) -> list[Span]:
        """Return the kept chunk spans of ``text[start:end]``."""
        pieces = self._bounded(text, self._paragraph_spans(text, start, end))

        groups: list[Span] = []
        current: Span | None = None
        for s, e in pieces:
            if current is None:
                current = (s, e)
            elif self._is_noise(text, *current) and e - current[0] <= self.max_chars:
                current = (current[0], e)
            else:
                groups.append(current)
                current = (s, e)

        if current is not None:
            if (
                groups
                and self._is_noise(text, *current)
                and current[1] - groups[-1][0] <= self.max_chars
            ):
                groups[-1] = (groups[-1][0], current[1])
            else:
                groups.append(current)

        return [g for g in groups if not self._is_noise(text, *g)]
