"""Chat completion endpoints.

Provides:
  - POST /chat - completion, or an SSE stream of ``{content, done}`` events when ``stream`` is true
  - GET  /chat - health check with the configured provider and model
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from llm_engine.core.dependencies import get_llm_client
from llm_engine.gateway.client import LLMClient
from llm_engine.gateway.types import CompletionRequest, RateLimitExceededError, StreamChunk

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


async def _event_stream(chunks: AsyncIterator[StreamChunk]) -> AsyncIterator[str]:
    """Relay chunks as Server-Sent Events; a mid-stream failure becomes an ``error`` event."""
    try:
        async for chunk in chunks:
            yield _sse(chunk.to_dict())
            if chunk.done:
                break
    except Exception as e:
        logger.exception("Chat stream failed")
        yield _sse({"error": str(e) or "Stream error"})
    finally:
        aclose = getattr(chunks, "aclose", None)
        if aclose is not None:
            await aclose()


def _rate_limited(exc: RateLimitExceededError) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"error": str(exc)},
        headers={"Retry-After": str(exc.retry_after)},
    )


@router.post("")
async def chat(request: Request, client: LLMClient = Depends(get_llm_client)):
    """Run a chat completion for a CompletionRequest-shaped JSON body."""
    try:
        body = await request.json()
        completion_request = CompletionRequest.model_validate(body)
    except ValidationError as e:
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": e.errors(include_url=False, include_context=False)},
        )
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Invalid request", "details": "Malformed JSON body"})

    try:
        if completion_request.stream:
            chunks = client.stream(completion_request)
            return StreamingResponse(
                _event_stream(chunks),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
            )

        response = await client.complete(completion_request)
    except RateLimitExceededError as e:
        return _rate_limited(e)
    except Exception:
        logger.exception("Chat API error (provider=%s)", client.get_provider().value)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    payload = response.to_dict()
    return {
        "content": payload["content"],
        "model": payload["model"],
        "provider": payload["provider"],
        "usage": payload["usage"],
    }


@router.get("")
async def chat_health(client: LLMClient = Depends(get_llm_client)):
    return {
        "status": "ok",
        "provider": client.get_provider().value,
        "model": client.get_model(),
    }
