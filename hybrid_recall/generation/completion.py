"""
Chat completion client
----------------------
`CompletionService` is the interface the engine uses for contextual chunk
summaries; `OpenAICompletion` implements it against any OpenAI-compatible
chat endpoint (OpenAI, Ollama, LM Studio, Groq, OpenRouter, ...).

The client is created lazily so that a missing model or key only fails the
operation that needs a completion, never engine construction.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from langsmith import traceable
from loguru import logger
from openai import AsyncOpenAI

from hybrid_recall.config import CompletionConfig
from hybrid_recall.utils.providers import build_client, call_provider


@runtime_checkable
class CompletionService(Protocol):
    async def complete(self, messages: list[dict[str, str]]) -> str: ...


class OpenAICompletion:
    """Completion service backed by openai.AsyncOpenAI chat completions."""

    def __init__(self, config: CompletionConfig, client: Optional[AsyncOpenAI] = None) -> None:
        self.config = config
        self._client = client
        self.prompt_tokens = 0
        self.completion_tokens = 0

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = build_client(self.config, "completion")
        return self._client

    @traceable(name="complete", run_type="llm")
    async def complete(self, messages: list[dict[str, str]]) -> str:
        client = self._get_client()
        response = await call_provider(
            "Completion",
            lambda: client.chat.completions.create(
                model=self.config.model,
                messages=messages,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
            ),
            timeout=self.config.timeout_seconds,
            max_retries=self.config.max_retries,
        )

        usage = getattr(response, "usage", None)
        if usage is not None:
            self.prompt_tokens += usage.prompt_tokens or 0
            self.completion_tokens += usage.completion_tokens or 0

        content = response.choices[0].message.content or ""
        logger.debug(f"[Completion] {self.config.model} returned {len(content)} chars")
        return content.strip()
