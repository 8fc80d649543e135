"""Search over the index: cosine ranking with a keyword fallback.

Semantic mode runs whenever the query can be embedded. When no vector comes
back (no provider, or the call failed) chunks are scored by keyword overlap:

  score(chunk) = matched distinct query terms / distinct query terms

Both modes sort with a stable sort, so equal scores keep store order.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from quarry.db.models import Chunk
from quarry.db.vectors import cosine_similarity
from quarry.index.store import IndexStore
from quarry.ingest.dispatch import TRANSCRIPT_SUFFIX
from quarry.ingest.embeddings import EmbeddingPipeline

DEFAULT_LIMIT = 10
DEFAULT_MIN_SCORE = 0.3
MIN_TERM_LENGTH = 3


@dataclass
class SearchResult:
    """A chunk with its relevance score.

    Attributes:
        chunk: Copy of the stored chunk.
        score: Cosine similarity (semantic) or matched-term ratio (keyword).
        mode: ``"semantic"`` or ``"keyword"``.
    """

    chunk: Chunk
    score: float
    mode: str


class SearchEngine:
    """Reads the store; never mutates it."""

    def __init__(self, store: IndexStore, pipeline: EmbeddingPipeline) -> None:
        self._store = store
        self._pipeline = pipeline

    async def search(
        self,
        query: str,
        limit: int = DEFAULT_LIMIT,
        min_score: float = DEFAULT_MIN_SCORE,
        file_types: Sequence[str] | None = None,
    ) -> list[SearchResult]:
        """Rank stored chunks against *query*, best first.

        Args:
            query: Free-text query.
            limit: Maximum number of results.
            min_score: Cosine threshold for semantic results (ignored by the
                keyword fallback, which keeps every score above zero).
            file_types: Optional extension filter such as ``[".md"]``.
        """
        if limit < 1 or not query.strip():
            return []

        vector = await self._pipeline.embed_query(query)
        if vector is not None:
            return semantic_rank(
                vector,
                self._store.get_all_chunks(),
                self._store.get_all_embeddings(),
                limit=limit,
                min_score=min_score,
                file_types=file_types,
            )
        return keyword_rank(
            query, self._store.get_all_chunks(), limit=limit, file_types=file_types
        )


# ------------------------------------------------------------------
# Ranking (pure functions over store snapshots)
# ------------------------------------------------------------------


def semantic_rank(
    query_vector: Sequence[float],
    chunks: Iterable[Chunk],
    embeddings: dict[str, list[float]],
    *,
    limit: int = DEFAULT_LIMIT,
    min_score: float = DEFAULT_MIN_SCORE,
    file_types: Sequence[str] | None = None,
) -> list[SearchResult]:
    scored: list[SearchResult] = []
    for chunk in chunks:
        vector = embeddings.get(chunk.id)
        if vector is None or not matches_file_types(chunk.file_path, file_types):
            continue
        if len(vector) != len(query_vector):
            # Vector from a different embedding model; not comparable.
            continue
        score = cosine_similarity(query_vector, vector)
        if score >= min_score:
            scored.append(SearchResult(chunk=chunk, score=score, mode="semantic"))

    scored.sort(key=lambda r: r.score, reverse=True)
    return scored[:limit]


def query_terms(query: str) -> list[str]:
    """Distinct lower-cased whitespace tokens of at least three characters."""
    terms: list[str] = []
    for token in query.lower().split():
        if len(token) >= MIN_TERM_LENGTH and token not in terms:
            terms.append(token)
    return terms


def keyword_rank(
    query: str,
    chunks: Iterable[Chunk],
    *,
    limit: int = DEFAULT_LIMIT,
    file_types: Sequence[str] | None = None,
) -> list[SearchResult]:
    terms = query_terms(query)
    if not terms:
        return []

    scored: list[SearchResult] = []
    for chunk in chunks:
        if not matches_file_types(chunk.file_path, file_types):
            continue
        content = chunk.content.lower()
        matched = sum(1 for term in terms if term in content)
        if matched:
            scored.append(SearchResult(chunk=chunk, score=matched / len(terms), mode="keyword"))

    scored.sort(key=lambda r: r.score, reverse=True)
    return scored[:limit]


def matches_file_types(file_path: str, file_types: Sequence[str] | None) -> bool:
    """True when *file_path* has one of *file_types* (no filter matches all).

    Transcripts match both ``.json`` and ``.transcript.json``.
    """
    if not file_types:
        return True
    name = file_path.replace("\\", "/").rsplit("/", 1)[-1].lower()
    wanted = {t.lower() if t.startswith(".") else "." + t.lower() for t in file_types}
    if name.endswith(TRANSCRIPT_SUFFIX) and TRANSCRIPT_SUFFIX in wanted:
        return True
    ext = "." + name.rsplit(".", 1)[-1] if "." in name else ""
    return ext in wanted
