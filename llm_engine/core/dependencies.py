from fastapi import Request

from llm_engine.gateway.client import LLMClient


def get_llm_client(request: Request) -> LLMClient:
    """The process-wide LLMClient built by the app lifespan (or injected by tests)."""
    client = getattr(request.app.state, "llm_client", None)
    if client is None:
        raise RuntimeError("LLM client is not initialized")
    return client
