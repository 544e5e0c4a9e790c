"""Tests for the /api/v1/chat endpoints and app-level routes."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient

from llm_engine.gateway.client import LLMClient
from llm_engine.gateway.rate_limiter import RateLimiter
from llm_engine.gateway.types import LLMClientConfig, Provider, ProviderConfig, VendorStreamError
from llm_engine.gateway.vendor_adapters import ADAPTER_REGISTRY
from llm_engine.main import app

HELLO = [{"role": "user", "content": "Hello!"}]


@pytest.fixture
def llm_client(stub_adapter_cls, rate_limit_config, clock):
    with patch.dict(ADAPTER_REGISTRY, {Provider.OPENAI: stub_adapter_cls}):
        client = LLMClient(
            LLMClientConfig(provider="openai", openai=ProviderConfig(api_key="test-key", model="gpt-5.2")),
            rate_limiter=RateLimiter(rate_limit_config, clock=clock),
        )
    app.state.llm_client = client
    yield client
    app.state.llm_client = None


@pytest.fixture
def http(llm_client):
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def _events(body: str) -> list[dict]:
    return [json.loads(line[len("data: ") :]) for line in body.split("\n\n") if line.startswith("data: ")]


class TestChatComplete:
    @pytest.mark.asyncio
    async def test_completion(self, http):
        resp = await http.post("/api/v1/chat", json={"messages": HELLO, "userId": "web"})

        assert resp.status_code == 200
        assert resp.json() == {
            "content": "Hello from OpenAI!",
            "model": "gpt-5.2",
            "provider": "openai",
            "usage": {"promptTokens": 10, "completionTokens": 5, "totalTokens": 15},
        }

    @pytest.mark.asyncio
    async def test_invalid_request(self, http, llm_client):
        resp = await http.post("/api/v1/chat", json={"messages": []})

        assert resp.status_code == 400
        data = resp.json()
        assert data["error"] == "Invalid request"
        assert data["details"][0]["loc"] == ["messages"]
        assert llm_client._adapter.requests == []

    @pytest.mark.asyncio
    async def test_malformed_json(self, http):
        resp = await http.post("/api/v1/chat", content=b"{not json", headers={"content-type": "application/json"})

        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid request"

    @pytest.mark.asyncio
    async def test_rate_limited(self, http, llm_client):
        for _ in range(10):
            llm_client.rate_limiter.record("web")

        resp = await http.post("/api/v1/chat", json={"messages": HELLO, "userId": "web"})

        assert resp.status_code == 429
        assert resp.json()["error"].startswith("Rate limit exceeded: Request limit exceeded")
        assert resp.headers["retry-after"] == "60"

    @pytest.mark.asyncio
    async def test_vendor_failure_is_500(self, http, llm_client):
        llm_client._adapter.fail_with = RuntimeError("upstream exploded")

        resp = await http.post("/api/v1/chat", json={"messages": HELLO})

        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal server error"}


class TestChatStream:
    @pytest.mark.asyncio
    async def test_stream_events(self, http, llm_client):
        resp = await http.post("/api/v1/chat", json={"messages": HELLO, "stream": True, "userId": "s"})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert _events(resp.text) == [
            {"content": "Hello", "done": False},
            {"content": " World", "done": False},
            {"content": "", "done": True},
        ]
        assert llm_client.rate_limiter.get_usage("s").tokens == 2

    @pytest.mark.asyncio
    async def test_stream_rate_limited_before_streaming(self, http, llm_client):
        for _ in range(10):
            llm_client.rate_limiter.record("s")

        resp = await http.post("/api/v1/chat", json={"messages": HELLO, "stream": True, "userId": "s"})

        assert resp.status_code == 429

    @pytest.mark.asyncio
    async def test_stream_error_event(self, http, llm_client):
        llm_client._adapter.fail_with = VendorStreamError("Overloaded", error_type="overloaded_error")

        resp = await http.post("/api/v1/chat", json={"messages": HELLO, "stream": True})

        events = _events(resp.text)
        assert events[:2] == [{"content": "Hello", "done": False}, {"content": " World", "done": False}]
        assert events[-1] == {"error": "Overloaded"}


class TestHealth:
    @pytest.mark.asyncio
    async def test_chat_health(self, http):
        resp = await http.get("/api/v1/chat")

        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "provider": "openai", "model": "gpt-5.2"}

    @pytest.mark.asyncio
    async def test_app_health(self, http, llm_client):
        llm_client.rate_limiter.record("x")

        resp = await http.get("/api/v1/health")

        data = resp.json()
        assert data["status"] == "ok"
        assert data["rate_limiter"]["tracked_users"] == 1
        assert data["rate_limiter"]["max_requests"] == 10

    @pytest.mark.asyncio
    async def test_metrics(self, http):
        await http.get("/api/v1/chat")
        resp = await http.get("/metrics")

        assert resp.status_code == 200
        assert "http_requests_total" in resp.text

    @pytest.mark.asyncio
    async def test_metrics_label_by_route_template(self, http):
        await http.get("/api/v1/chat")
        missing = await http.get("/api/v1/nope-123")
        resp = await http.get("/metrics")

        assert missing.status_code == 404
        assert 'path="/api/v1/chat"' in resp.text
        assert 'path="<unmatched>"' in resp.text
        assert "nope-123" not in resp.text
