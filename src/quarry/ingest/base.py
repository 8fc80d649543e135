"""Base chunker interface and offset-exact splitting helpers.

Every helper here works on ``(start, end)`` spans into the source text rather
than on copied strings, so a chunk's ``content`` is always exactly
``source[start_offset:end_offset]``.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

from quarry.db.models import Chunk, ChunkType

Span = tuple[int, int]

_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")
_SENTENCE_BREAK_RE = re.compile(r"(?<=[.!?])\s+")

DEFAULT_MAX_CHARS = 3200
DEFAULT_MIN_CHARS = 50


class BaseChunker(ABC):
    """Abstract base for all chunkers.

    Subclasses implement ``chunk()`` and build their spans with the helpers
    below. ``max_chars`` bounds a chunk's length; pieces whose stripped text
    is shorter than ``min_chars`` are treated as noise and dropped.
    """

    chunk_type: ChunkType = ChunkType.PARAGRAPH

    def __init__(
        self,
        max_chars: int = DEFAULT_MAX_CHARS,
        min_chars: int = DEFAULT_MIN_CHARS,
    ) -> None:
        if max_chars < 1:
            raise ValueError("max_chars must be >= 1")
        if not 0 <= min_chars <= max_chars:
            raise ValueError("min_chars must be in [0, max_chars]")
        self.max_chars = max_chars
        self.min_chars = min_chars

    @abstractmethod
    def chunk(self, file_path: str, content: str) -> list[Chunk]:
        """Split *content* into Chunk objects for *file_path*.

        Args:
            file_path: Path of the file the content was read from.
            content: Full decoded text of the file.

        Returns:
            Chunks in document order; empty for empty or whitespace-only input.
        """

    # ------------------------------------------------------------------
    # Span helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _trim(text: str, start: int, end: int) -> Span | None:
        """Shrink ``[start, end)`` to exclude surrounding whitespace.

        Returns None when the span holds only whitespace.
        """
        while start < end and text[start].isspace():
            start += 1
        while end > start and text[end - 1].isspace():
            end -= 1
        return (start, end) if start < end else None

    def _spans_between(
        self, pattern: re.Pattern[str], text: str, start: int, end: int
    ) -> list[Span]:
        """Return the trimmed, non-empty spans separated by *pattern* matches."""
        spans: list[Span] = []
        pos = start
        for match in pattern.finditer(text, start, end):
            trimmed = self._trim(text, pos, match.start())
            if trimmed:
                spans.append(trimmed)
            pos = match.end()
        trimmed = self._trim(text, pos, end)
        if trimmed:
            spans.append(trimmed)
        return spans

    def _paragraph_spans(self, text: str, start: int, end: int) -> list[Span]:
        return self._spans_between(_PARAGRAPH_BREAK_RE, text, start, end)

    def _sentence_spans(self, text: str, start: int, end: int) -> list[Span]:
        return self._spans_between(_SENTENCE_BREAK_RE, text, start, end)

    def _window_spans(self, text: str, start: int, end: int) -> list[Span]:
        """Hard-split ``[start, end)`` into windows of at most ``max_chars``."""
        spans: list[Span] = []
        pos = start
        while pos < end:
            trimmed = self._trim(text, pos, min(pos + self.max_chars, end))
            if trimmed:
                spans.append(trimmed)
            pos += self.max_chars
        return spans

    def _pack_spans(self, spans: list[Span]) -> list[Span]:
        """Greedily merge adjacent spans while the merged slice fits ``max_chars``."""
        packed: list[Span] = []
        current: Span | None = None
        for start, end in spans:
            if current is None:
                current = (start, end)
            elif end - current[0] <= self.max_chars:
                current = (current[0], end)
            else:
                packed.append(current)
                current = (start, end)
        if current is not None:
            packed.append(current)
        return packed

    def _split_long(self, text: str, start: int, end: int) -> list[Span]:
        """Split an over-long span at sentence boundaries.

        Sentences that are themselves longer than ``max_chars`` are cut into
        fixed windows. The resulting pieces are packed back up to ``max_chars``.
        """
        pieces: list[Span] = []
        for s, e in self._sentence_spans(text, start, end):
            if e - s > self.max_chars:
                pieces.extend(self._window_spans(text, s, e))
            else:
                pieces.append((s, e))
        return self._pack_spans(pieces)

    def _bounded(self, text: str, spans: list[Span]) -> list[Span]:
        """Replace every span longer than ``max_chars`` with its split pieces."""
        result: list[Span] = []
        for s, e in spans:
            if e - s > self.max_chars:
                result.extend(self._split_long(text, s, e))
            else:
                result.append((s, e))
        return result

    def _is_noise(self, text: str, start: int, end: int) -> bool:
        return len(text[start:end].strip()) < self.min_chars

    def _make_chunk(
        self,
        file_path: str,
        text: str,
        span: Span,
        **metadata: object,
    ) -> Chunk:
        start, end = span
        return Chunk(
            file_path=file_path,
            chunk_type=self.chunk_type,
            content=text[start:end],
            start_offset=start,
            end_offset=end,
            **metadata,  # type: ignore[arg-type]
        )
