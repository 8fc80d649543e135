"""Transcript chunker: speaker-turn splits for ``*.transcript.json`` files.

Supported shapes:
- ``{"segments": [{...}, ...]}``
- a bare list of segment objects

Each segment is ``{"speaker"?: str, "text": str, "start"|"startTime"?: float,
"end"|"endTime"?: float}``. Consecutive segments by the same speaker with a
gap of at most ``merge_gap_seconds`` are merged into one turn.

Chunk offsets address the *rendered transcript*: the merged turn texts joined
by a blank line (see :func:`render_transcript`), not the raw JSON.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from quarry.db.models import Chunk, ChunkType
from quarry.ingest.base import DEFAULT_MAX_CHARS, DEFAULT_MIN_CHARS, BaseChunker
from quarry.ingest.plaintext import PlainTextChunker

TURN_SEPARATOR = "\n\n"
DEFAULT_MERGE_GAP_SECONDS = 2.0


class TranscriptFormatError(ValueError):
    """Raised when a transcript document does not have a supported shape."""


@dataclass
class Turn:
    text: str
    speaker: str | None = None
    start_time: float | None = None
    end_time: float | None = None


class TranscriptChunker(BaseChunker):
    """One chunk per (merged) speaker turn.

    Turns longer than ``max_chars`` are split at sentence boundaries; every
    piece keeps the turn's speaker and times. Malformed JSON falls back to
    :class:`PlainTextChunker` over the raw file content.
    """

    chunk_type = ChunkType.SPEAKER_TURN

    def __init__(
        self,
        max_chars: int = DEFAULT_MAX_CHARS,
        min_chars: int = DEFAULT_MIN_CHARS,
        merge_gap_seconds: float = DEFAULT_MERGE_GAP_SECONDS,
    ) -> None:
        super().__init__(max_chars=max_chars, min_chars=min_chars)
        self.merge_gap_seconds = merge_gap_seconds

    def chunk(self, file_path: str, content: str) -> list[Chunk]:
        if not content.strip():
            return []
        try:
            turns = merge_turns(parse_segments(content), self.merge_gap_seconds)
        except (json.JSONDecodeError, TranscriptFormatError):
            fallback = PlainTextChunker(max_chars=self.max_chars, min_chars=self.min_chars)
            return fallback.chunk(file_path, content)

        text, offsets = _render(turns)
        chunks: list[Chunk] = []
        for turn, start in zip(turns, offsets):
            span = self._trim(text, start, start + len(turn.text))
            if span is None or self._is_noise(text, *span):
                continue
            pieces = [span] if span[1] - span[0] <= self.max_chars else self._split_long(text, *span)
            for piece in pieces:
                if self._is_noise(text, *piece):
                    continue
                chunks.append(
                    self._make_chunk(
                        file_path,
                        text,
                        piece,
                        speaker=turn.speaker,
                        start_time=turn.start_time,
                        end_time=turn.end_time,
                    )
                )
        return chunks


# ------------------------------------------------------------------
# Parsing
# ------------------------------------------------------------------


def parse_segments(content: str) -> list[Turn]:
    """Parse raw transcript JSON into unmerged segments.

    Raises:
        json.JSONDecodeError: If *content* is not JSON.
        TranscriptFormatError: If the JSON is not a supported transcript shape.
    """
    data = json.loads(content)
    if isinstance(data, dict):
        data = data.get("segments")
    if not isinstance(data, list):
        raise TranscriptFormatError("Transcript must be a list of segments or {'segments': [...]}")

    segments: list[Turn] = []
    for raw in data:
        if not isinstance(raw, dict) or not isinstance(raw.get("text"), str):
            raise TranscriptFormatError(f"Invalid transcript segment: {raw!r}")
        speaker = raw.get("speaker")
        segments.append(
            Turn(
                text=raw["text"].strip(),
                speaker=str(speaker) if speaker is not None else None,
                start_time=_as_seconds(raw.get("start", raw.get("startTime"))),
                end_time=_as_seconds(raw.get("end", raw.get("endTime"))),
            )
        )
    return segments


def _as_seconds(value: object) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TranscriptFormatError(f"Invalid timestamp: {value!r}")
    return float(value)


def merge_turns(segments: list[Turn], max_gap_seconds: float) -> list[Turn]:
    """Merge consecutive same-speaker segments separated by at most *max_gap_seconds*."""
    merged: list[Turn] = []
    for seg in segments:
        if merged:
            last = merged[-1]
            gap = (seg.start_time or 0.0) - (last.end_time or 0.0)
            if seg.speaker == last.speaker and gap <= max_gap_seconds:
                last.text = f"{last.text} {seg.text}" if last.text else seg.text
                if seg.end_time is not None:
                    last.end_time = seg.end_time
                continue
        merged.append(Turn(seg.text, seg.speaker, seg.start_time, seg.end_time))
    return merged


def _render(turns: list[Turn]) -> tuple[str, list[int]]:
    """Join turn texts and return (text, start offset of each turn)."""
    offsets: list[int] = []
    pos = 0
    for turn in turns:
        offsets.append(pos)
        pos += len(turn.text) + len(TURN_SEPARATOR)
    return TURN_SEPARATOR.join(t.text for t in turns), offsets


def render_transcript(
    content: str, merge_gap_seconds: float = DEFAULT_MERGE_GAP_SECONDS
) -> str | None:
    """Return the rendered transcript text chunk offsets refer to.

    Returns None when *content* is not a parseable transcript (its chunks
    then address the raw content instead).
    """
    try:
        turns = merge_turns(parse_segments(content), merge_gap_seconds)
    except (json.JSONDecodeError, TranscriptFormatError):
        return None
    return _render(turns)[0]
