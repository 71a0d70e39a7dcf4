"""
Shared plumbing for OpenAI-compatible provider adapters.

Every provider call goes through `call_provider()`:
  - a hard per-attempt timeout (asyncio.wait_for) -> ProviderTimeoutError
  - tenacity retries for rate limits and dropped connections, logged before
    each sleep
  - any other API error -> NetworkFailureError

Retrying lives here, in the adapters, so the engine core never retries.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

import openai
from loguru import logger
from openai import AsyncOpenAI
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from hybrid_recall.config import ProviderConfig
from hybrid_recall.exceptions import (
    ConfigurationMissingError,
    NetworkFailureError,
    ProviderTimeoutError,
)

T = TypeVar("T")

_RETRYABLE = (openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError)


def build_client(config: ProviderConfig, purpose: str) -> AsyncOpenAI:
    """Create an AsyncOpenAI client, failing fast on missing configuration."""
    if not config.model:
        raise ConfigurationMissingError(f"No {purpose} model is configured")
    if not config.base_url:
        raise ConfigurationMissingError(f"No {purpose} endpoint (base_url) is configured")
    return AsyncOpenAI(
        api_key=config.api_key(),
        base_url=config.base_url,
        timeout=config.timeout_seconds,
        max_retries=0,
    )


def _log_retry(label: str) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            f"[{label}] Attempt {state.attempt_number} failed ({exc!r}); "
            f"retrying in {state.next_action.sleep if state.next_action else 0:.1f}s"
        )
    return before_sleep


async def call_provider(
    label: str,
    request: Callable[[], Awaitable[T]],
    timeout: float,
    max_retries: int,
) -> T:
    """Run one provider request with timeout, retries and error translation."""
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max_retries + 1),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(_RETRYABLE),
            before_sleep=_log_retry(label),
            reraise=True,
        ):
            with attempt:
                return await asyncio.wait_for(request(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise ProviderTimeoutError(
            f"{label} request timed out after {timeout:.0f} seconds"
        ) from exc
    except openai.APIError as exc:
        raise NetworkFailureError(f"{label} request failed: {exc}") from exc
    raise NetworkFailureError(f"{label} request made no attempt")
