"""LLM Client Layer.

Unified, rate-limited access to several LLM vendors:
  - Request validation (CompletionRequest schema)
  - Per-user fixed-window Rate Limiter (requests + tokens)
  - Vendor-Specific Adapters (OpenAI-compatible, Anthropic, Google, Bedrock)
  - Normalized response DTOs (CompletionResponse, StreamChunk)
  - LLMClient facade and the create_llm_client factory
"""
