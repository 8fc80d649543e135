"""Markdown chunker: heading-aware splits with paragraph fallback."""

from __future__ import annotations

import re
from dataclasses import dataclass

from quarry.db.models import Chunk, ChunkType
from quarry.ingest.base import BaseChunker, Span
from quarry.ingest.plaintext import PlainTextChunker

# ATX headings, H1 to H6, at the start of a line.
_HEADING_RE = re.compile(r"^(#{1,6})[ \t]+(\S[^\n]*?)(?:[ \t]+#+)?[ \t]*$", re.MULTILINE)
# Fenced code blocks; headings inside them are not split points.
_FENCE_RE = re.compile(r"^(```|~~~)[^\n]*\n.*?^\1[ \t]*$", re.MULTILINE | re.DOTALL)

HEADING_SEPARATOR = " > "


@dataclass
class _Section:
    start: int
    end: int
    heading_path: str | None


class MarkdownChunker(BaseChunker):
    """Split Markdown on heading boundaries.

    Strategy:
    - Each heading plus its body, up to the next heading of any level, is a
      *section*. Content before the first heading (preamble) is a section
      with no heading path.
    - A stack of ancestor headings yields ``heading_path``, e.g.
      ``"Methods > Sampling"``.
    - Sections longer than ``max_chars`` are split at paragraph boundaries;
      every piece keeps the section's ``heading_path``.
    - Sections and pieces shorter than ``min_chars`` are dropped.
    - If anything goes wrong while parsing, fall back to
      :class:`PlainTextChunker` for the whole document.
    """

    chunk_type = ChunkType.HEADING

    def chunk(self, file_path: str, content: str) -> list[Chunk]:
        if not content.strip():
            return []
        try:
            return self._chunk_sections(file_path, content)
        except Exception:
            fallback = PlainTextChunker(max_chars=self.max_chars, min_chars=self.min_chars)
            return fallback.chunk(file_path, content)

    def _chunk_sections(self, file_path: str, content: str) -> list[Chunk]:
        chunks: list[Chunk] = []
        for section in self._split_on_headings(content):
            span = self._trim(content, section.start, section.end)
            if span is None or self._is_noise(content, *span):
                continue

            if span[1] - span[0] <= self.max_chars:
                pieces: list[Span] = [span]
            else:
                pieces = self._pack_spans(
                    self._bounded(content, self._paragraph_spans(content, *span))
                )

            for piece in pieces:
                if self._is_noise(content, *piece):
                    continue
                chunks.append(
                    self._make_chunk(
                        file_path, content, piece, heading_path=section.heading_path
                    )
                )
        return chunks

    def _split_on_headings(self, content: str) -> list[_Section]:
        """Split *content* into heading sections covering the whole text."""
        fences = [(m.start(), m.end()) for m in _FENCE_RE.finditer(content)]
        headings = [
            m
            for m in _HEADING_RE.finditer(content)
            if not any(fs <= m.start() < fe for fs, fe in fences)
        ]

        if not headings:
            return [_Section(0, len(content), None)]

        sections: list[_Section] = []
        if headings[0].start() > 0:
            sections.append(_Section(0, headings[0].start(), None))

        stack: list[tuple[int, str]] = []
        for i, match in enumerate(headings):
            level = len(match.group(1))
            title = match.group(2).strip()
            while stack and stack[-1][0] >= level:
                stack.pop()
            stack.append((level, title))

            end = headings[i + 1].start() if i + 1 < len(headings) else len(content)
            path = HEADING_SEPARATOR.join(t for _, t in stack)
            sections.append(_Section(match.start(), end, path))

        return sections
