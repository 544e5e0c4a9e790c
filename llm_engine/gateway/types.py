"""Core types and DTOs for the LLM client layer."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from llm_engine.core.config import Settings


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Provider(str, Enum):
    """Supported LLM providers."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    BEDROCK = "bedrock"
    PERPLEXITY = "perplexity"
    OPENROUTER = "openrouter"


# ---------------------------------------------------------------------------
# Request schema: validated before anything else happens
# ---------------------------------------------------------------------------


class Message(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str = Field(min_length=1, max_length=100_000)

    model_config = {"frozen": True}


class CompletionRequest(BaseModel):
    """A chat completion request.

    Accepts both snake_case and the camelCase names used on the JSON wire
    (``maxTokens``, ``userId``).
    """

    messages: list[Message] = Field(min_length=1, max_length=100)
    model: str | None = None
    max_tokens: int | None = Field(None, ge=1, le=128_000, alias="maxTokens")
    temperature: float | None = Field(None, ge=0.0, le=2.0)
    stream: bool | None = None
    user_id: str | None = Field(None, alias="userId")

    model_config = {"frozen": True, "populate_by_name": True}


# ---------------------------------------------------------------------------
# Response DTOs: same shape regardless of provider
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def of(cls, prompt_tokens: int | None, completion_tokens: int | None) -> Usage:
        """Build usage from vendor fields, treating missing values as 0."""
        prompt = int(prompt_tokens or 0)
        completion = int(completion_tokens or 0)
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion)

    def to_dict(self) -> dict[str, int]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass(frozen=True)
class CompletionResponse:
    """Normalized completion produced by any provider adapter."""

    content: str
    model: str
    provider: Provider
    usage: Usage = field(default_factory=Usage)
    finish_reason: str = "unknown"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON wire shape."""
        return {
            "content": self.content,
            "model": self.model,
            "provider": self.provider.value,
            "usage": self.usage.to_dict(),
            "finishReason": self.finish_reason,
        }


@dataclass(frozen=True)
class StreamChunk:
    content: str = ""
    done: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"content": self.content, "done": self.done}


# ---------------------------------------------------------------------------
# Provider config: one block per provider
# ---------------------------------------------------------------------------


class ProviderConfig(BaseModel):
    api_key: str = ""
    model: str
    max_tokens: int | None = None
    base_url: str | None = None


class BedrockConfig(ProviderConfig):
    region: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None


class OpenRouterConfig(ProviderConfig):
    site_url: str | None = None
    site_name: str | None = None


class LLMClientConfig(BaseModel):
    """Full client configuration: the selected provider plus per-provider blocks.

    ``provider`` stays a plain string so that an unrecognized name surfaces as
    a ConfigurationError from the client rather than a schema error here.
    """

    provider: str
    openai: ProviderConfig | None = None
    anthropic: ProviderConfig | None = None
    google: ProviderConfig | None = None
    bedrock: BedrockConfig | None = None
    perplexity: ProviderConfig | None = None
    openrouter: OpenRouterConfig | None = None


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int = 100
    window_ms: int = 60_000
    max_tokens_per_request: int = 4096

    @classmethod
    def from_settings(cls, settings: Settings) -> RateLimitConfig:
        return cls(
            max_requests=settings.llm_rate_limit_requests,
            window_ms=settings.llm_rate_limit_window_ms,
            max_tokens_per_request=settings.llm_max_tokens_per_request,
        )


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_in: int  # milliseconds
    reason: str | None = None


@dataclass(frozen=True)
class UsageSnapshot:
    requests: int
    tokens: int


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class LLMError(Exception):
    """Base exception for errors raised by this package."""


class ConfigurationError(LLMError, ValueError):
    """Missing provider config block or unknown provider name."""


class RateLimitExceededError(LLMError):
    """Raised by the client when the per-user rate limiter denies a request."""

    def __init__(self, reason: str, reset_in_ms: int):
        self.reason = reason
        self.reset_in_ms = reset_in_ms
        self.retry_after = math.ceil(reset_in_ms / 1000)
        super().__init__(f"Rate limit exceeded: {reason}. Reset in {self.retry_after}s")


class VendorStreamError(LLMError):
    """Raised when a vendor reports an error event inside an open stream."""

    def __init__(self, message: str, error_type: str = ""):
        super().__init__(message)
        self.error_type = error_type
