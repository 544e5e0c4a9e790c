import pytest

from llm_engine.core.config import settings

# Override settings for tests
settings.app_env = "development"
settings.rate_limit_cleanup_interval_s = 0
settings.sentry_dsn = ""

from llm_engine.gateway.types import (  # noqa: E402
    CompletionRequest,
    CompletionResponse,
    Provider,
    RateLimitConfig,
    StreamChunk,
    Usage,
)
from llm_engine.gateway.vendor_adapters import BaseProviderAdapter  # noqa: E402


class FakeClock:
    """Manually advanced millisecond clock for the rate limiter."""

    def __init__(self, start: int = 1_000_000):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: int) -> None:
        self.now += ms


class StubAdapter(BaseProviderAdapter):
    """Adapter with canned answers and no network access."""

    provider = Provider.OPENAI

    def __init__(self, config, **kwargs):
        super().__init__(config)
        self.requests: list[CompletionRequest] = []
        self.fail_with: Exception | None = None
        self.closed = False

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with
        return CompletionResponse(
            content="Hello from OpenAI!",
            model=self.get_model(),
            provider=Provider.OPENAI,
            usage=Usage.of(10, 5),
            finish_reason="stop",
        )

    async def stream(self, request: CompletionRequest):
        self.requests.append(request)
        for text in ("Hello", " World"):
            yield StreamChunk(content=text, done=False)
        if self.fail_with is not None:
            raise self.fail_with
        yield StreamChunk(content="", done=True)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rate_limit_config():
    return RateLimitConfig(max_requests=10, window_ms=60_000, max_tokens_per_request=4096)


@pytest.fixture
def stub_adapter_cls():
    return StubAdapter
