"""LLM Client: single entry point in front of one provider adapter.

Per call:
  1. Validate the request (pydantic ValidationError on failure)
  2. Resolve the user (``"anonymous"`` when unset)
  3. Estimate input tokens through the active adapter
  4. Check the per-user rate limiter
  5. Dispatch to the adapter
  6. Record usage: actual ``total_tokens`` for completions, the input
     estimate for streams (output size is unknown until the stream ends)

Usage:
    client = LLMClient(LLMClientConfig(provider="openai", openai=ProviderConfig(api_key="sk-...", model="gpt-4o-mini")))

    response = await client.complete({"messages": [{"role": "user", "content": "Hello!"}]})

    async for chunk in client.stream(request):
        print(chunk.content, end="")
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Mapping
from typing import Any

from llm_engine.core.config import settings
from llm_engine.core.metrics import LLM_LATENCY, LLM_RATE_LIMITED, LLM_REQUESTS, LLM_TOKENS
from llm_engine.gateway.rate_limiter import RateLimiter
from llm_engine.gateway.types import (
    CompletionRequest,
    CompletionResponse,
    ConfigurationError,
    LLMClientConfig,
    Provider,
    RateLimitConfig,
    RateLimitExceededError,
    StreamChunk,
)
from llm_engine.gateway.vendor_adapters import BaseProviderAdapter, get_adapter

logger = logging.getLogger(__name__)

ANONYMOUS_USER = "anonymous"


class LLMClient:
    """Validating, rate-limited client over a single provider adapter.

    The adapter is picked once, at construction, through get_adapter.
    The rate limiter is either passed in (shared between clients by the
    caller) or built from settings and owned by this client.
    """

    def __init__(
        self,
        config: LLMClientConfig,
        rate_limiter: RateLimiter | None = None,
        adapter_kwargs: dict[str, Any] | None = None,
    ):
        """
        Args:
            config: Selected provider plus per-provider config blocks
            rate_limiter: Limiter to share; a private one is created if None
            adapter_kwargs: Extra kwargs for the adapter (e.g. http_client, client)
        """
        try:
            self._provider = Provider(config.provider)
        except ValueError:
            raise ConfigurationError(f"Unknown provider: {config.provider}") from None

        provider_config = getattr(config, self._provider.value)
        if provider_config is None:
            raise ConfigurationError(f"{self._provider.value} configuration required")

        self._adapter: BaseProviderAdapter = get_adapter(self._provider, provider_config, **(adapter_kwargs or {}))
        self._rate_limiter = rate_limiter or RateLimiter(RateLimitConfig.from_settings(settings))

        logger.info("LLM client ready (provider=%s, model=%s)", self._provider.value, self._adapter.get_model())

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    def get_provider(self) -> Provider:
        return self._provider

    def get_model(self) -> str:
        return self._adapter.get_model()

    async def aclose(self) -> None:
        await self._adapter.aclose()

    @staticmethod
    def _validate(request: CompletionRequest | Mapping[str, Any]) -> CompletionRequest:
        if isinstance(request, CompletionRequest):
            return request
        return CompletionRequest.model_validate(request)

    def _estimate_input_tokens(self, request: CompletionRequest) -> int:
        return sum(self._adapter.estimate_tokens(m.content) for m in request.messages)

    def _admit(self, request: CompletionRequest) -> tuple[str, int]:
        """Run the rate-limit check. Returns ``(user_id, estimated_tokens)``."""
        user_id = request.user_id or ANONYMOUS_USER
        estimated_tokens = self._estimate_input_tokens(request)

        result = self._rate_limiter.check(user_id, estimated_tokens)
        if not result.allowed:
            LLM_RATE_LIMITED.labels(provider=self._provider.value).inc()
            logger.warning(
                "Rate limit hit for %s: %s (reset in %dms)",
                user_id,
                result.reason,
                result.reset_in,
                extra={"user_id": user_id, "provider": self._provider.value},
            )
            raise RateLimitExceededError(result.reason or "Rate limit exceeded", result.reset_in)

        return user_id, estimated_tokens

    async def complete(self, request: CompletionRequest | Mapping[str, Any]) -> CompletionResponse:
        """Generate one completion; usage is recorded only if the vendor call succeeds."""
        validated = self._validate(request)
        user_id, _ = self._admit(validated)

        start = time.perf_counter()
        try:
            response = await self._adapter.complete(validated)
        except Exception:
            LLM_REQUESTS.labels(provider=self._provider.value, mode="complete", status="error").inc()
            raise
        LLM_LATENCY.labels(provider=self._provider.value).observe(time.perf_counter() - start)
        LLM_REQUESTS.labels(provider=self._provider.value, mode="complete", status="success").inc()

        self._rate_limiter.record(user_id, response.usage.total_tokens)
        LLM_TOKENS.labels(provider=self._provider.value, mode="complete").inc(response.usage.total_tokens)

        logger.debug(
            "Completion for %s: %d tokens, finish=%s",
            user_id,
            response.usage.total_tokens,
            response.finish_reason,
            extra={"user_id": user_id, "provider": self._provider.value},
        )
        return response

    def stream(self, request: CompletionRequest | Mapping[str, Any]) -> AsyncIterator[StreamChunk]:
        """Start a streaming completion.

        Validation, the rate-limit check and usage recording happen here,
        before any chunk is produced, so errors surface at the call site.
        The returned iterator does not contact the vendor until iterated.
        """
        validated = self._validate(request)
        user_id, estimated_tokens = self._admit(validated)

        # The stream's output size is unknown up front; record the input estimate.
        self._rate_limiter.record(user_id, estimated_tokens)
        LLM_TOKENS.labels(provider=self._provider.value, mode="stream").inc(estimated_tokens)
        LLM_REQUESTS.labels(provider=self._provider.value, mode="stream", status="started").inc()

        return self._adapter.stream(validated)
