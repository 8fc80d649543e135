"""Embedding pipeline: batched LiteLLM embeddings with cancellation.

Chunks are embedded in batches of ``batch_size``. Retry with exponential
backoff on transient provider errors is LiteLLM's built-in ``num_retries``;
a batch that still fails marks only its own ids as failed and the pipeline
moves on. Provider calls run in a worker thread so the event loop keeps
serving searches.
"""

from __future__ import annotations

import asyncio
import os
import warnings
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

import litellm

from quarry.index.cancellation import NEVER, CancellationToken

litellm.suppress_debug_info = True

# Provider -> env var holding its API key. None = no key required.
_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "ollama": None,
}


@dataclass
class EmbeddingConfig:
    """Configuration for embedding generation."""

    model: str = "openai/text-embedding-3-small"
    batch_size: int = 100
    batch_delay: float = 0.2
    max_retries: int = 3


@dataclass
class EmbeddingRequest:
    id: str
    text: str


@dataclass
class EmbeddingResult:
    embeddings: dict[str, list[float]] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)
    cancelled: bool = False


class EmbeddingProvider(Protocol):
    def embed(self, texts: list[str]) -> list[list[float]]: ...


ProgressCallback = Callable[[int, int], None]


# ------------------------------------------------------------------
# LiteLLM provider
# ------------------------------------------------------------------


class LiteLLMEmbeddingProvider:
    """Embeds texts through ``litellm.embedding()`` with retry/backoff."""

    def __init__(self, model: str, num_retries: int = 3) -> None:
        self.model = model
        self.num_retries = num_retries

    def embed(self, texts: list[str]) -> list[list[float]]:
        response = litellm.embedding(
            model=self.model,
            input=texts,
            num_retries=self.num_retries,
        )
        items = sorted(response.data, key=lambda item: item["index"])
        return [list(item["embedding"]) for item in items]


def required_api_key(model: str) -> str | None:
    """Return the env var name *model*'s provider needs, or None."""
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    return _PROVIDER_ENV.get(provider)


def provider_from_config(config: EmbeddingConfig) -> LiteLLMEmbeddingProvider | None:
    """Build the default provider, or return None when its API key is unset."""
    env_var = required_api_key(config.model)
    if env_var and not os.getenv(env_var):
        return None
    return LiteLLMEmbeddingProvider(config.model, num_retries=config.max_retries)


# ------------------------------------------------------------------
# Pipeline
# ------------------------------------------------------------------


class EmbeddingPipeline:
    """Turns chunk texts into vectors through an :class:`EmbeddingProvider`.

    Args:
        provider: The provider to call, or None when embeddings are
            unavailable (every request then fails with a single warning).
        config: Batching settings.
    """

    def __init__(
        self,
        provider: EmbeddingProvider | None,
        config: EmbeddingConfig | None = None,
    ) -> None:
        self.provider = provider
        self.config = config or EmbeddingConfig()

    @property
    def available(self) -> bool:
        return self.provider is not None

    async def embed_chunks(
        self,
        requests: Sequence[EmbeddingRequest],
        on_progress: ProgressCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> EmbeddingResult:
        """Embed *requests* batch by batch.

        Cancellation is checked before each batch; when it fires, the ids not
        yet embedded go to ``failed`` and ``cancelled`` is set. Whatever was
        computed before that point is returned.
        """
        token = cancel_token or NEVER
        result = EmbeddingResult()
        if not requests:
            return result

        provider = self.provider
        if provider is None:
            warnings.warn(
                f"No embedding provider available for model '{self.config.model}'. "
                "Chunks are stored without embeddings.",
                UserWarning,
                stacklevel=2,
            )
            result.failed = [r.id for r in requests]
            return result

        batches = _batches(list(requests), self.config.batch_size)
        total = len(requests)
        embedded = 0
        for i, batch in enumerate(batches):
            if token.is_cancelled:
                for remaining in batches[i:]:
                    result.failed.extend(r.id for r in remaining)
                result.cancelled = True
                return result

            try:
                vectors = await _embed_texts(provider, [r.text for r in batch])
            except Exception as exc:
                warnings.warn(
                    f"Embedding batch {i + 1}/{len(batches)} failed: {exc}",
                    UserWarning,
                    stacklevel=2,
                )
                result.failed.extend(r.id for r in batch)
            else:
                for request, vector in zip(batch, vectors):
                    result.embeddings[request.id] = vector
                embedded += len(batch)

            if on_progress is not None:
                on_progress(embedded, total)

            if i < len(batches) - 1 and self.config.batch_delay > 0:
                await asyncio.sleep(self.config.batch_delay)

        return result

    async def embed_query(self, text: str) -> list[float] | None:
        """Embed one query string. None means no provider or a failed call."""
        if self.provider is None or not text.strip():
            return None
        try:
            vectors = await _embed_texts(self.provider, [text])
        except Exception as exc:
            warnings.warn(f"Query embedding failed: {exc}", UserWarning, stacklevel=2)
            return None
        return vectors[0] if vectors else None


def _batches(items: list[EmbeddingRequest], size: int) -> list[list[EmbeddingRequest]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


async def _embed_texts(provider: EmbeddingProvider, texts: list[str]) -> list[list[float]]:
    vectors = await asyncio.to_thread(provider.embed, texts)
    if len(vectors) != len(texts):
        raise ValueError(f"Provider returned {len(vectors)} vectors for {len(texts)} texts")
    return vectors
