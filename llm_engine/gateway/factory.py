"""Build an LLMClient from settings (environment / .env) plus caller overrides.

Default models favor low cost; override them via environment variables
(see llm_engine.core.config.Settings) or per call:

    client = create_llm_client({"provider": "anthropic", "anthropic": {"model": "claude-3-5-sonnet-20241022"}})

Overrides are merged last. Top-level keys replace the environment value;
provider blocks are merged key by key, so a partial block only changes the
fields it names.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

from llm_engine.core.config import Settings
from llm_engine.core.config import settings as default_settings
from llm_engine.gateway.client import LLMClient
from llm_engine.gateway.rate_limiter import RateLimiter
from llm_engine.gateway.types import LLMClientConfig, Provider, RateLimitConfig

logger = logging.getLogger(__name__)

_PROVIDER_BLOCKS = {p.value for p in Provider}


def config_from_settings(settings: Settings) -> dict[str, Any]:
    """Environment-derived client config, one block per provider."""
    return {
        "provider": settings.llm_provider,
        "openai": {
            "api_key": settings.openai_api_key,
            "model": settings.openai_model,
            "base_url": settings.openai_base_url,
        },
        "anthropic": {
            "api_key": settings.anthropic_api_key,
            "model": settings.anthropic_model,
            "base_url": settings.anthropic_base_url,
        },
        "google": {
            "api_key": settings.google_api_key,
            "model": settings.google_model,
            "base_url": settings.google_base_url,
        },
        "bedrock": {
            "api_key": "",  # Bedrock authenticates with AWS credentials
            "model": settings.bedrock_model,
            "region": settings.aws_region,
            "access_key_id": settings.aws_access_key_id,
            "secret_access_key": settings.aws_secret_access_key,
        },
        "perplexity": {
            "api_key": settings.perplexity_api_key,
            "model": settings.perplexity_model,
        },
        "openrouter": {
            "api_key": settings.openrouter_api_key,
            "model": settings.openrouter_model,
            "site_url": settings.openrouter_site_url,
            "site_name": settings.openrouter_site_name,
        },
    }


def _explicit_fields(value: Any) -> Any:
    """Only the fields a caller actually set on a pydantic model."""
    if isinstance(value, BaseModel):
        return value.model_dump(exclude_unset=True)
    return value


def merge_overrides(base: dict[str, Any], overrides: Mapping[str, Any] | LLMClientConfig) -> dict[str, Any]:
    """Merge caller overrides over an environment-derived config dict."""
    overrides = _explicit_fields(overrides)
    merged = dict(base)

    for key, value in overrides.items():
        value = _explicit_fields(value)
        if key in _PROVIDER_BLOCKS and isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value

    return merged


def create_llm_client(
    overrides: Mapping[str, Any] | LLMClientConfig | None = None,
    *,
    settings: Settings | None = None,
    rate_limiter: RateLimiter | None = None,
    adapter_kwargs: dict[str, Any] | None = None,
) -> LLMClient:
    """Create an LLMClient from settings, with ``overrides`` applied last.

    Raises:
        ConfigurationError: the selected provider is unknown or has no config block
    """
    settings = settings or default_settings

    raw = config_from_settings(settings)
    if overrides:
        raw = merge_overrides(raw, overrides)

    config = LLMClientConfig.model_validate(raw)
    logger.debug("Creating LLM client for provider %s", config.provider)

    if rate_limiter is None:
        rate_limiter = RateLimiter(RateLimitConfig.from_settings(settings))

    return LLMClient(config, rate_limiter=rate_limiter, adapter_kwargs=adapter_kwargs)
