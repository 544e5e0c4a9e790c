"""Provider Adapters: wire-format translation for each LLM vendor.

Each adapter turns a validated CompletionRequest into one vendor call and
normalizes the result into a CompletionResponse or a sequence of
StreamChunks. Adapters hold their config and a transport handle and are
otherwise stateless; vendor and transport errors propagate unchanged.

Vendor-specific behaviors:
  - OpenAI / Perplexity / OpenRouter: OpenAI chat completions, system
    messages inline; OpenRouter adds attribution headers
  - Anthropic: messages API, system messages lifted into ``system``
  - Google: generateContent with history + new turn, ``systemInstruction``
  - Bedrock: invoke_model, Anthropic or Titan body picked by model id prefix

Every stream ends with exactly one ``done=True`` chunk: OpenAI-compatible
and Anthropic streams take it from the vendor's terminal event, Google and
Bedrock streams synthesize it after the transport is exhausted.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

import boto3
import httpx

from llm_engine.gateway.types import (
    BedrockConfig,
    CompletionRequest,
    CompletionResponse,
    ConfigurationError,
    Message,
    OpenRouterConfig,
    Provider,
    ProviderConfig,
    StreamChunk,
    Usage,
    VendorStreamError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096
DEFAULT_TEMPERATURE = 0.7

# Mirrors the vendor SDKs' transport defaults; httpx's own 5s default would cut off long generations.
# No retries at this layer.
_HTTP_TIMEOUT = httpx.Timeout(600.0, connect=10.0)


class BaseProviderAdapter(ABC):
    """Base class for all provider adapters."""

    provider: Provider

    def __init__(self, config: ProviderConfig):
        self.config = config

    @abstractmethod
    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Send one request to the vendor and return a normalized response."""
        ...

    @abstractmethod
    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        """Yield StreamChunks as the vendor delivers them.

        The sequence is finite, not restartable, and ends with exactly one
        chunk whose ``done`` is True. Callers may stop iterating early.
        """
        ...

    def estimate_tokens(self, text: str) -> int:
        """Rough token count: about four characters per token."""
        return math.ceil(len(text) / 4)

    def get_model(self) -> str:
        """Configured default model (not any per-request override)."""
        return self.config.model

    async def aclose(self) -> None:
        """Release the transport handle."""

    def _model(self, request: CompletionRequest) -> str:
        return request.model or self.config.model

    def _max_tokens(self, request: CompletionRequest) -> int:
        return request.max_tokens or self.config.max_tokens or DEFAULT_MAX_TOKENS

    def _temperature(self, request: CompletionRequest) -> float:
        return request.temperature if request.temperature is not None else DEFAULT_TEMPERATURE


class _HttpProviderAdapter(BaseProviderAdapter):
    """Adapter that talks to its vendor over an httpx.AsyncClient."""

    default_base_url: str = ""

    def __init__(self, config: ProviderConfig, http_client: httpx.AsyncClient | None = None):
        super().__init__(config)
        self.base_url = (config.base_url or self.default_base_url).rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=_HTTP_TIMEOUT)

    async def aclose(self) -> None:
        await self._http.aclose()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _split_system(messages: list[Message]) -> tuple[str | None, list[Message]]:
    """Return the first system message's content and the non-system messages."""
    system = next((m.content for m in messages if m.role == "system"), None)
    rest = [m for m in messages if m.role != "system"]
    return system, rest


def _first_text(content: list[dict[str, Any]] | None) -> str:
    """Text of the first Anthropic content block of type "text", or "" if there is none."""
    block = next((b for b in content or [] if b.get("type") == "text"), None)
    return (block.get("text") or "") if block else ""


async def _raise_for_status(response: httpx.Response) -> None:
    """raise_for_status for a streamed response, with the error body loaded."""
    if response.is_error:
        await response.aread()
        response.raise_for_status()


async def _iter_sse(response: httpx.Response) -> AsyncIterator[tuple[str, str]]:
    """Parse a Server-Sent Events body into ``(event, data)`` pairs.

    Events without an ``event:`` field are reported as ``"message"``.
    Multi-line ``data:`` fields are joined with newlines.
    """
    event = "message"
    data_lines: list[str] = []

    async for line in response.aiter_lines():
        if not line:
            if data_lines:
                yield event, "\n".join(data_lines)
            event = "message"
            data_lines = []
            continue

        if line.startswith(":"):
            continue

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "event":
            event = value
        elif name == "data":
            data_lines.append(value)

    if data_lines:
        yield event, "\n".join(data_lines)


def _loads_event(data: str, provider: Provider) -> dict[str, Any] | None:
    try:
        return json.loads(data)
    except json.JSONDecodeError as e:
        logger.warning("%s: failed to parse stream event: %s, data: %s", provider.value, e, data[:100])
        return None


# ---------------------------------------------------------------------------
# OpenAI-compatible adapters (OpenAI, Perplexity, OpenRouter)
# ---------------------------------------------------------------------------


class OpenAIAdapter(_HttpProviderAdapter):
    """OpenAI Chat Completions adapter."""

    provider = Provider.OPENAI
    default_base_url = "https://api.openai.com/v1"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

    def _payload(self, request: CompletionRequest, stream: bool = False) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self._model(request),
            "messages": [{"role": m.role, "content": m.content} for m in request.messages],
            "max_tokens": self._max_tokens(request),
            "temperature": self._temperature(request),
        }
        if stream:
            payload["stream"] = True
        return payload

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        model = self._model(request)
        logger.debug("%s: completion request (model=%s, messages=%d)", self.provider.value, model, len(request.messages))

        resp = await self._http.post(
            f"{self.base_url}/chat/completions",
            json=self._payload(request),
            headers=self._headers(),
        )
        resp.raise_for_status()
        data = resp.json()

        choice = (data.get("choices") or [{}])[0]
        usage = data.get("usage") or {}

        return CompletionResponse(
            content=(choice.get("message") or {}).get("content") or "",
            model=data.get("model") or model,
            provider=self.provider,
            usage=Usage.of(usage.get("prompt_tokens"), usage.get("completion_tokens")),
            finish_reason=choice.get("finish_reason") or "unknown",
        )

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        logger.debug("%s: stream request (model=%s)", self.provider.value, self._model(request))
        chunk_count = 0

        async with self._http.stream(
            "POST",
            f"{self.base_url}/chat/completions",
            json=self._payload(request, stream=True),
            headers=self._headers(),
        ) as resp:
            await _raise_for_status(resp)

            async for _event, data in _iter_sse(resp):
                if data == "[DONE]":
                    break

                payload = _loads_event(data, self.provider)
                if payload is None:
                    continue

                choices = payload.get("choices") or []
                if not choices:
                    continue

                choice = choices[0]
                content = (choice.get("delta") or {}).get("content") or ""
                chunk_count += 1

                if choice.get("finish_reason") is not None:
                    logger.info("%s: stream complete (%d chunks)", self.provider.value, chunk_count)
                    yield StreamChunk(content=content, done=True)
                    return

                yield StreamChunk(content=content, done=False)

        logger.info("%s: stream ended without finish_reason (%d chunks)", self.provider.value, chunk_count)
        yield StreamChunk(content="", done=True)


class PerplexityAdapter(OpenAIAdapter):
    """Perplexity adapter (OpenAI-compatible API)."""

    provider = Provider.PERPLEXITY
    default_base_url = "https://api.perplexity.ai"


class OpenRouterAdapter(OpenAIAdapter):
    """OpenRouter adapter with optional app attribution headers."""

    provider = Provider.OPENROUTER
    default_base_url = "https://openrouter.ai/api/v1"

    def __init__(self, config: OpenRouterConfig, http_client: httpx.AsyncClient | None = None):
        super().__init__(config, http_client=http_client)
        self.site_url = config.site_url
        self.site_name = config.site_name

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self.site_url:
            headers["HTTP-Referer"] = self.site_url
        if self.site_name:
            headers["X-Title"] = self.site_name
        return headers


# ---------------------------------------------------------------------------
# Anthropic Adapter
# ---------------------------------------------------------------------------


class AnthropicAdapter(_HttpProviderAdapter):
    """Anthropic Messages API adapter."""

    provider = Provider.ANTHROPIC
    default_base_url = "https://api.anthropic.com"
    api_version = "2023-06-01"

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.config.api_key,
            "anthropic-version": self.api_version,
            "Content-Type": "application/json",
        }

    def _payload(self, request: CompletionRequest, stream: bool = False) -> dict[str, Any]:
        system, messages = _split_system(request.messages)
        payload: dict[str, Any] = {
            "model": self._model(request),
            "max_tokens": self._max_tokens(request),
            "temperature": self._temperature(request),
            "messages": [{"role": m.role, "content": m.content} for m in messages],
        }
        if system is not None:
            payload["system"] = system
        if stream:
            payload["stream"] = True
        return payload

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        model = self._model(request)
        logger.debug("anthropic: completion request (model=%s, messages=%d)", model, len(request.messages))

        resp = await self._http.post(
            f"{self.base_url}/v1/messages",
            json=self._payload(request),
            headers=self._headers(),
        )
        resp.raise_for_status()
        data = resp.json()

        usage = data.get("usage") or {}

        # tool_use and thinking blocks are skipped
        return CompletionResponse(
            content=_first_text(data.get("content")),
            model=data.get("model") or model,
            provider=self.provider,
            usage=Usage.of(usage.get("input_tokens"), usage.get("output_tokens")),
            finish_reason=data.get("stop_reason") or "unknown",
        )

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        logger.debug("anthropic: stream request (model=%s)", self._model(request))
        chunk_count = 0

        async with self._http.stream(
            "POST",
            f"{self.base_url}/v1/messages",
            json=self._payload(request, stream=True),
            headers=self._headers(),
        ) as resp:
            await _raise_for_status(resp)

            async for event, data in _iter_sse(resp):
                payload = _loads_event(data, self.provider)
                if payload is None:
                    continue

                event_type = payload.get("type", event)

                if event_type == "content_block_delta":
                    delta = payload.get("delta") or {}
                    if delta.get("type") == "text_delta":
                        chunk_count += 1
                        yield StreamChunk(content=delta.get("text", ""), done=False)

                elif event_type == "message_stop":
                    logger.info("anthropic: stream complete (%d chunks)", chunk_count)
                    yield StreamChunk(content="", done=True)
                    return

                elif event_type == "error":
                    error = payload.get("error") or {}
                    raise VendorStreamError(
                        error.get("message", "Anthropic stream error"),
                        error_type=error.get("type", ""),
                    )

        logger.info("anthropic: stream ended without message_stop (%d chunks)", chunk_count)
        yield StreamChunk(content="", done=True)


# ---------------------------------------------------------------------------
# Google Adapter (Gemini)
# ---------------------------------------------------------------------------


class GoogleAdapter(_HttpProviderAdapter):
    """Google Gemini adapter using the chat-style generateContent API.

    The conversation is sent as history (every non-system message but the
    last, ``assistant`` mapped to ``model``) followed by the last message as
    the new user turn. A system message becomes ``systemInstruction``.
    """

    provider = Provider.GOOGLE
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"

    def _payload(self, request: CompletionRequest) -> dict[str, Any]:
        system, messages = _split_system(request.messages)
        if not messages:
            raise ValueError("Google requires at least one non-system message")

        history = [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            }
            for m in messages[:-1]
        ]
        contents = [*history, {"role": "user", "parts": [{"text": messages[-1].content}]}]

        payload: dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "maxOutputTokens": self._max_tokens(request),
                "temperature": self._temperature(request),
            },
        }
        if system is not None:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        return payload

    @staticmethod
    def _candidate_text(data: dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(p.get("text", "") for p in parts)

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        model = self._model(request)
        logger.debug("google: completion request (model=%s, messages=%d)", model, len(request.messages))

        resp = await self._http.post(
            f"{self.base_url}/models/{model}:generateContent",
            json=self._payload(request),
            params={"key": self.config.api_key},
            headers={"Content-Type": "application/json"},
        )
        resp.raise_for_status()
        data = resp.json()

        candidates = data.get("candidates") or [{}]
        usage = data.get("usageMetadata") or {}

        return CompletionResponse(
            content=self._candidate_text(data),
            model=model,
            provider=self.provider,
            usage=Usage.of(usage.get("promptTokenCount"), usage.get("candidatesTokenCount")),
            finish_reason=candidates[0].get("finishReason") or "unknown",
        )

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        model = self._model(request)
        logger.debug("google: stream request (model=%s)", model)
        chunk_count = 0

        async with self._http.stream(
            "POST",
            f"{self.base_url}/models/{model}:streamGenerateContent",
            json=self._payload(request),
            params={"alt": "sse", "key": self.config.api_key},
            headers={"Content-Type": "application/json"},
        ) as resp:
            await _raise_for_status(resp)

            async for _event, data in _iter_sse(resp):
                payload = _loads_event(data, self.provider)
                if payload is None:
                    continue
                chunk_count += 1
                yield StreamChunk(content=self._candidate_text(payload), done=False)

        logger.info("google: stream complete (%d chunks)", chunk_count)
        yield StreamChunk(content="", done=True)


# ---------------------------------------------------------------------------
# AWS Bedrock Adapter
# ---------------------------------------------------------------------------


class BedrockAdapter(BaseProviderAdapter):
    """AWS Bedrock adapter for Anthropic Claude and Amazon Titan models.

    Model ids starting with ``anthropic.`` get the Anthropic-on-Bedrock body
    and response parsing; anything else is treated as Titan text.
    boto3 is blocking, so each call (and each stream event read) runs in a
    worker thread.
    """

    provider = Provider.BEDROCK
    anthropic_version = "bedrock-2023-05-31"
    default_region = "us-east-1"

    def __init__(self, config: BedrockConfig, client: Any = None):
        super().__init__(config)
        self.region = config.region or self.default_region

        if client is None:
            kwargs: dict[str, Any] = {"region_name": self.region}
            if config.access_key_id:
                kwargs["aws_access_key_id"] = config.access_key_id
                kwargs["aws_secret_access_key"] = config.secret_access_key or ""
            if config.base_url:
                kwargs["endpoint_url"] = config.base_url
            client = boto3.client("bedrock-runtime", **kwargs)
        self._client = client

    @staticmethod
    def _is_anthropic(model: str) -> bool:
        return model.startswith("anthropic.")

    def _body(self, request: CompletionRequest, model: str) -> str:
        if self._is_anthropic(model):
            system, messages = _split_system(request.messages)
            body: dict[str, Any] = {
                "anthropic_version": self.anthropic_version,
                "max_tokens": self._max_tokens(request),
                "temperature": self._temperature(request),
                "messages": [{"role": m.role, "content": m.content} for m in messages],
            }
            if system is not None:
                body["system"] = system
            return json.dumps(body)

        prompt = "\n".join(f"{m.role}: {m.content}" for m in request.messages)
        return json.dumps(
            {
                "inputText": prompt,
                "textGenerationConfig": {
                    "maxTokenCount": self._max_tokens(request),
                    "temperature": self._temperature(request),
                },
            }
        )

    def _invoke(self, model: str, body: str) -> dict[str, Any]:
        response = self._client.invoke_model(
            modelId=model,
            body=body,
            contentType="application/json",
            accept="application/json",
        )
        return json.loads(response["body"].read())

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        model = self._model(request)
        logger.debug("bedrock: completion request (model=%s, messages=%d)", model, len(request.messages))

        data = await asyncio.to_thread(self._invoke, model, self._body(request, model))

        if self._is_anthropic(model):
            usage = data.get("usage") or {}
            return CompletionResponse(
                content=_first_text(data.get("content")),
                model=model,
                provider=self.provider,
                usage=Usage.of(usage.get("input_tokens"), usage.get("output_tokens")),
                finish_reason=data.get("stop_reason") or "unknown",
            )

        result = (data.get("results") or [{}])[0]
        return CompletionResponse(
            content=result.get("outputText") or "",
            model=model,
            provider=self.provider,
            usage=Usage.of(data.get("inputTextTokenCount"), result.get("tokenCount")),
            finish_reason=result.get("completionReason") or "unknown",
        )

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        model = self._model(request)
        is_anthropic = self._is_anthropic(model)
        logger.debug("bedrock: stream request (model=%s)", model)

        response = await asyncio.to_thread(
            self._client.invoke_model_with_response_stream,
            modelId=model,
            body=self._body(request, model),
            contentType="application/json",
            accept="application/json",
        )
        event_stream = response["body"]
        events = iter(event_stream)
        chunk_count = 0

        try:
            while True:
                event = await asyncio.to_thread(next, events, None)
                if event is None:
                    break

                raw = (event.get("chunk") or {}).get("bytes")
                if not raw:
                    continue
                payload = json.loads(raw)

                if is_anthropic and payload.get("type") == "content_block_delta":
                    delta = payload.get("delta") or {}
                    if delta.get("type") == "text_delta":
                        chunk_count += 1
                        yield StreamChunk(content=delta.get("text") or "", done=False)
                elif not is_anthropic and payload.get("outputText"):
                    chunk_count += 1
                    yield StreamChunk(content=payload["outputText"], done=False)
        finally:
            close = getattr(event_stream, "close", None)
            if close is not None:
                close()

        logger.info("bedrock: stream complete (%d chunks)", chunk_count)
        yield StreamChunk(content="", done=True)


# ---------------------------------------------------------------------------
# Adapter registry
# ---------------------------------------------------------------------------

ADAPTER_REGISTRY: dict[Provider, type[BaseProviderAdapter]] = {
    Provider.OPENAI: OpenAIAdapter,
    Provider.ANTHROPIC: AnthropicAdapter,
    Provider.GOOGLE: GoogleAdapter,
    Provider.BEDROCK: BedrockAdapter,
    Provider.PERPLEXITY: PerplexityAdapter,
    Provider.OPENROUTER: OpenRouterAdapter,
}


def get_adapter(provider: Provider, config: ProviderConfig, **kwargs) -> BaseProviderAdapter:
    """Factory: get the appropriate adapter for a provider."""
    cls = ADAPTER_REGISTRY.get(provider)
    if cls is None:
        raise ConfigurationError(f"No adapter registered for provider: {provider}")
    return cls(config, **kwargs)
