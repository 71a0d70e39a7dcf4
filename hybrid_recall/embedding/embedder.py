"""
Embedding Client with LangSmith instrumentation
-----------------------------------------------
`EmbeddingService` is the interface the engine depends on.  `OpenAIEmbedder`
implements it against any OpenAI-compatible embeddings endpoint (OpenAI,
Ollama, LM Studio, OpenRouter, ...) with:
  - lazy client creation, so a missing model/endpoint/key raises
    ConfigurationMissingError only when an embedding is actually needed
  - per-request timeout and tenacity retries (see utils/providers.py)
  - LangSmith run tracing for latency / token observability
  - token usage accounting
"""
from __future__ import annotations

import time
from typing import Optional, Protocol, runtime_checkable

from langsmith import traceable
from loguru import logger
from openai import AsyncOpenAI

from hybrid_recall.config import EmbeddingConfig
from hybrid_recall.utils.providers import build_client, call_provider


@runtime_checkable
class EmbeddingService(Protocol):
    async def embed(self, text: str) -> list[float]: ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


class OpenAIEmbedder:
    """Embeddings via openai.AsyncOpenAI. Vectors are returned as provided."""

    def __init__(self, config: EmbeddingConfig, client: Optional[AsyncOpenAI] = None) -> None:
        self.config = config
        self._client = client
        self.total_tokens_used: int = 0
        self.total_api_calls: int = 0

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = build_client(self.config, "embedding")
        return self._client

    async def embed(self, text: str) -> list[float]:
        vectors = await self.embed_batch([text])
        return vectors[0] if vectors else []

    @traceable(name="embed_batch", run_type="embedding")
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        client = self._get_client()

        # Replace empty strings with a space to avoid API errors
        safe_texts = [t if t.strip() else " " for t in texts]
        start = time.perf_counter()
        response = await call_provider(
            "Embedder",
            lambda: client.embeddings.create(model=self.config.model, input=safe_texts),
            timeout=self.config.timeout_seconds,
            max_retries=self.config.max_retries,
        )
        elapsed = time.perf_counter() - start

        embeddings = [item.embedding for item in sorted(response.data, key=lambda x: x.index)]
        usage = getattr(response, "usage", None)
        tokens = (usage.total_tokens or 0) if usage is not None else 0
        self.total_tokens_used += tokens
        self.total_api_calls += 1

        logger.debug(
            f"[Embedder] {len(texts)} text(s) | {tokens} tokens | {elapsed:.2f}s | "
            f"running total {self.total_tokens_used} tokens"
        )
        return embeddings

    def usage_summary(self) -> dict:
        return {
            "model": self.config.model,
            "total_api_calls": self.total_api_calls,
            "total_tokens_used": self.total_tokens_used,
        }
