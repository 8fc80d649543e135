"""Cooperative cancellation tokens.

Long-running work checks ``token.is_cancelled`` at per-file / per-batch
checkpoints and returns early; nothing is interrupted mid-call.
"""

from __future__ import annotations


class CancellationToken:
    """Read-only view of a cancellation request."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled


class CancellationSource:
    """Owner side of a token: the only party allowed to cancel it."""

    def __init__(self) -> None:
        self.token = CancellationToken()

    def cancel(self) -> None:
        self.token._cancelled = True


#: A token that is never cancelled.
NEVER = CancellationToken()
