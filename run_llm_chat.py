"""
run_llm_chat.py: smoke test for the configured LLM provider

Runs the client end to end with the settings from the environment / .env:
  1. Build the client (LLM_PROVIDER and the provider's API key)
  2. One non-streaming completion
  3. One streaming completion
  4. Print the rate limiter's view of the test user

Usage:
    LLM_PROVIDER=anthropic ANTHROPIC_API_KEY=... python run_llm_chat.py "Say hi in five words"
"""

import asyncio
import sys

from llm_engine.core.logging import setup_logging
from llm_engine.gateway.factory import create_llm_client

setup_logging(level="INFO", json_logs=False)

USER_ID = "smoke-test"
DEFAULT_PROMPT = "In one sentence, what is a rate limiter?"


async def main():
    prompt = " ".join(sys.argv[1:]) or DEFAULT_PROMPT
    messages = [
        {"role": "system", "content": "You are a concise assistant."},
        {"role": "user", "content": prompt},
    ]

    # ── Step 1: Client ────────────────────────────────────────
    client = create_llm_client()
    print("\n" + "=" * 60)
    print(f"  Provider: {client.get_provider().value}   Model: {client.get_model()}")
    print("=" * 60)

    try:
        # ── Step 2: Completion ───────────────────────────────
        response = await client.complete({"messages": messages, "userId": USER_ID, "maxTokens": 256})
        print(f"\n  Completion ({response.finish_reason}):\n  {response.content}")
        print(
            f"  Tokens: prompt={response.usage.prompt_tokens} "
            f"completion={response.usage.completion_tokens} total={response.usage.total_tokens}"
        )

        # ── Step 3: Stream ───────────────────────────────────
        print("\n  Stream:\n  ", end="")
        chunks = 0
        async for chunk in client.stream({"messages": messages, "userId": USER_ID, "maxTokens": 256}):
            print(chunk.content, end="", flush=True)
            chunks += 1
        print(f"\n  ({chunks} chunks)")

        # ── Step 4: Usage ────────────────────────────────────
        usage = client.rate_limiter.get_usage(USER_ID)
        print("\n" + "=" * 60)
        print(f"  ✅ Done. Window usage for {USER_ID}: {usage}")
        print("=" * 60)
    finally:
        await client.aclose()


if __name__ == "__main__":
    asyncio.run(main())
