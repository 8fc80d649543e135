"""Indexing progress snapshots and the channel that publishes them."""

from __future__ import annotations

import warnings
from collections.abc import Callable
from dataclasses import asdict, dataclass, replace
from enum import Enum


class IndexStatus(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class IndexProgress:
    """Immutable snapshot of one indexing run's progress."""

    status: IndexStatus = IndexStatus.IDLE
    total_files: int = 0
    processed_files: int = 0
    total_chunks: int = 0
    embedded_chunks: int = 0
    current_file: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


ProgressListener = Callable[[IndexProgress], None]


class ProgressChannel:
    """Holds the latest snapshot and pushes every update to subscribers.

    Only the indexing run calls :meth:`update`; everyone else reads
    :attr:`current` or subscribes. A failing subscriber is reported with a
    warning and never breaks the run.
    """

    def __init__(self, initial: IndexProgress | None = None) -> None:
        self._current = initial or IndexProgress()
        self._listeners: list[ProgressListener] = []

    @property
    def current(self) -> IndexProgress:
        return self._current

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def update(self, **changes: object) -> IndexProgress:
        self._current = replace(self._current, **changes)  # type: ignore[arg-type]
        for listener in list(self._listeners):
            try:
                listener(self._current)
            except Exception as exc:
                warnings.warn(f"Progress listener failed: {exc}", UserWarning, stacklevel=2)
        return self._current
