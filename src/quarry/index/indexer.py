"""Indexing run orchestration.

One run goes ``idle → scanning → chunking → embedding → ready``:

1. scan the project for indexable files (fresh snapshot, nothing cached)
2. hash every file and compare with the stored hash table
3. drop files that disappeared, re-chunk files that are new or changed
4. embed every chunk that still lacks a vector
5. flush the store

Only one run is logically active. Starting a run cancels the previous run's
token and then waits for the store lock, so the old run stops at its next
checkpoint and the new run picks up from whatever it committed.
"""

from __future__ import annotations

import asyncio
import warnings
from collections.abc import Callable, Sequence
from pathlib import Path

from quarry.config import QuarryConfig, index_dir
from quarry.db.models import Chunk
from quarry.index.cancellation import CancellationSource, CancellationToken
from quarry.index.progress import IndexProgress, IndexStatus, ProgressChannel, ProgressListener
from quarry.index.store import IndexStore
from quarry.ingest.changes import classify_file, compute_hash, removed_paths
from quarry.ingest.dispatch import chunk_file
from quarry.ingest.embeddings import EmbeddingPipeline, EmbeddingRequest, provider_from_config
from quarry.ingest.scanner import is_indexable, matches_exclude, scan
from quarry.search.engine import SearchEngine, SearchResult

INDEX_DB_NAME = "index.db"


class Indexer:
    """Keeps a project's index in step with its files and answers searches.

    Args:
        project_root: Directory to index.
        config: Loaded configuration; defaults apply when omitted.
        store: Store to write to. Defaults to ``<root>/.quarry/index.db``.
        pipeline: Embedding pipeline. Defaults to the LiteLLM provider for
            ``config.embedding.model`` (no provider when its API key is unset).
    """

    def __init__(
        self,
        project_root: Path | str,
        config: QuarryConfig | None = None,
        *,
        store: IndexStore | None = None,
        pipeline: EmbeddingPipeline | None = None,
    ) -> None:
        self.root = Path(project_root).resolve()
        self.config = config or QuarryConfig()
        self.store = store or IndexStore(
            index_dir(self.root) / INDEX_DB_NAME,
            debounce_seconds=self.config.store.debounce_seconds,
        )
        if pipeline is None:
            embedding_config = self.config.embedding.to_embedding_config()
            pipeline = EmbeddingPipeline(provider_from_config(embedding_config), embedding_config)
        self.pipeline = pipeline
        self.search_engine = SearchEngine(self.store, self.pipeline)
        self._progress = ProgressChannel()
        self._source: CancellationSource | None = None
        self._lock: asyncio.Lock | None = None
        self._lock_loop: asyncio.AbstractEventLoop | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> IndexProgress:
        """Load the stored index and restore progress from it.

        Progress is ``ready`` when stored embeddings exist, ``idle``
        otherwise. With ``index.auto_index`` set a full run follows.
        """
        self.store.open()
        embedded = self.store.embedding_count()
        self._progress.update(
            status=IndexStatus.READY if embedded else IndexStatus.IDLE,
            total_files=self.store.file_count(),
            processed_files=self.store.file_count(),
            total_chunks=self.store.chunk_count(),
            embedded_chunks=embedded,
        )
        if self.config.index.auto_index:
            return await self.index_workspace()
        return self._progress.current

    def close(self) -> None:
        """Cancel any active run and flush the store."""
        self.cancel()
        self.store.close()

    def cancel(self) -> None:
        if self._source is not None:
            self._source.cancel()

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def get_progress(self) -> IndexProgress:
        return self._progress.current

    def is_ready(self) -> bool:
        return self._progress.current.status is IndexStatus.READY

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Receive every progress snapshot; returns an unsubscribe callable."""
        return self._progress.subscribe(listener)

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    async def index_workspace(self) -> IndexProgress:
        """Run a full incremental indexing pass and return the final snapshot.

        An unrecoverable failure (e.g. the store cannot be written) ends the
        run in ``error`` with the message. A cancelled run returns early and
        its progress stays at the last published snapshot.
        """
        self.cancel()
        source = CancellationSource()
        self._source = source
        try:
            async with self._run_lock():
                if source.token.is_cancelled:
                    return self._progress.current
                try:
                    return await self._run(source.token)
                except Exception as exc:
                    return self._progress.update(
                        status=IndexStatus.ERROR, error=str(exc) or type(exc).__name__, current_file=None
                    )
        finally:
            if self._source is source:
                self._source = None

    async def _run(self, token: CancellationToken) -> IndexProgress:
        cfg = self.config
        every = cfg.index.yield_every
        progress = self._progress
        progress.update(
            status=IndexStatus.SCANNING,
            total_files=0,
            processed_files=0,
            total_chunks=self.store.chunk_count(),
            embedded_chunks=self.store.embedding_count(),
            current_file=None,
            error=None,
        )

        files = scan(self.root, cfg.index.include_patterns, cfg.index.exclude_patterns)
        stored = self.store.get_all_file_hashes()
        pending = []
        for n, file in enumerate(files, start=1):
            changed = classify_file(file, stored)
            if changed is not None:
                pending.append(changed)
            if n % every == 0:
                await asyncio.sleep(0)
                if token.is_cancelled:
                    return progress.current

        for path in removed_paths(stored, (f.path for f in files)):
            self.store.remove_file(path)

        progress.update(
            status=IndexStatus.CHUNKING,
            total_files=len(pending),
            processed_files=0,
            total_chunks=self.store.chunk_count(),
            embedded_chunks=self.store.embedding_count(),
        )
        settings = cfg.chunkers.to_settings()
        for n, item in enumerate(pending, start=1):
            if token.is_cancelled:
                return progress.current
            try:
                chunks = chunk_file(item.path, item.content, settings)
            except Exception as exc:
                warnings.warn(f"Skipping '{item.path}': chunking failed: {exc}", UserWarning, stacklevel=2)
                chunks = []
            self.store.replace_file(item.path, item.hash, chunks)
            if n % every == 0 or n == len(pending):
                progress.update(
                    processed_files=n,
                    current_file=item.path,
                    total_chunks=self.store.chunk_count(),
                    embedded_chunks=self.store.embedding_count(),
                )
                await asyncio.sleep(0)

        if token.is_cancelled:
            return progress.current

        if not await self._embed_missing(token):
            return progress.current

        self.store.flush()
        return progress.update(
            status=IndexStatus.READY,
            current_file=None,
            total_chunks=self.store.chunk_count(),
            embedded_chunks=self.store.embedding_count(),
        )

    async def _embed_missing(self, token: CancellationToken) -> bool:
        """Embed chunks lacking vectors. False when the run was cancelled."""
        missing = self.store.get_chunks_without_embeddings()
        already = self.store.embedding_count()
        self._progress.update(
            status=IndexStatus.EMBEDDING,
            current_file=None,
            total_chunks=self.store.chunk_count(),
            embedded_chunks=already,
        )
        if not missing:
            return True

        def _on_batch(embedded: int, total: int) -> None:
            self._progress.update(embedded_chunks=already + embedded)

        result = await self.pipeline.embed_chunks(
            _requests(missing), on_progress=_on_batch, cancel_token=token
        )
        self.store.set_embeddings(result.embeddings)
        return not result.cancelled

    async def index_file(self, path: Path | str) -> int:
        """Re-index one file: read, re-chunk, re-hash and embed its chunks.

        Files outside the include patterns, or under an excluded name, are
        skipped. Unreadable files are skipped with a warning.

        Returns:
            Number of chunks written (0 when skipped or unchanged).
        """
        file_path = self._resolve(path)
        if not self._should_index(file_path):
            return 0

        async with self._run_lock():
            try:
                content = file_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                warnings.warn(f"Skipping unreadable file '{file_path}': {exc}", UserWarning, stacklevel=2)
                return 0

            key = str(file_path)
            new_hash = compute_hash(content)
            record = self.store.get_file_hash(key)
            if record is not None and record.hash == new_hash:
                return 0

            chunks = chunk_file(key, content, self.config.chunkers.to_settings())
            self.store.replace_file(key, new_hash, chunks)
            if chunks:
                result = await self.pipeline.embed_chunks(_requests(chunks))
                self.store.set_embeddings(result.embeddings)
            self._refresh_counts()
            return len(chunks)

    async def remove_file(self, path: Path | str) -> int:
        """Drop a file's chunks, embeddings and hash record; returns chunks removed."""
        async with self._run_lock():
            removed = self.store.remove_file(str(self._resolve(path)))
            self._refresh_counts()
            return len(removed)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        limit: int | None = None,
        min_score: float | None = None,
        file_types: Sequence[str] | None = None,
    ) -> list[SearchResult]:
        """Search the index with the configured defaults."""
        return await self.search_engine.search(
            query,
            limit=limit if limit is not None else self.config.search.limit,
            min_score=min_score if min_score is not None else self.config.search.min_score,
            file_types=file_types,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _run_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    def _resolve(self, path: Path | str) -> Path:
        """Absolute form of *path*, matching the keys a scan of the root produces."""
        file_path = Path(path)
        if not file_path.is_absolute():
            file_path = self.root / file_path
        return file_path.resolve()

    def _should_index(self, path: Path) -> bool:
        if not is_indexable(path.name, self.config.index.include_patterns):
            return False
        try:
            parts = path.relative_to(self.root).parts
        except ValueError:
            parts = path.parts
        excludes = self.config.index.exclude_patterns
        return not any(matches_exclude(part, excludes) for part in parts)

    def _refresh_counts(self) -> None:
        self._progress.update(
            total_chunks=self.store.chunk_count(),
            embedded_chunks=self.store.embedding_count(),
        )


def _requests(chunks: list[Chunk]) -> list[EmbeddingRequest]:
    return [EmbeddingRequest(id=c.id, text=c.content) for c in chunks]
