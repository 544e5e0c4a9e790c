import asyncio
import contextlib
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from llm_engine.api.v1.router import api_v1_router
from llm_engine.core.config import settings, validate_settings_for_production
from llm_engine.core.logging import setup_logging
from llm_engine.core.metrics import PrometheusMiddleware, metrics_response
from llm_engine.core.sentry import init_sentry
from llm_engine.gateway.factory import create_llm_client
from llm_engine.gateway.rate_limiter import RateLimiter

# Configure logging before anything else
setup_logging()
init_sentry()

logger = logging.getLogger(__name__)


async def _cleanup_rate_limits(limiter: RateLimiter, interval: float) -> None:
    """Periodically drop expired rate-limit windows so the user map stays bounded."""
    while True:
        await asyncio.sleep(interval)
        removed = limiter.cleanup()
        if removed:
            logger.info("Rate limiter: removed %d expired windows", removed)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    validate_settings_for_production()
    logger.info("Starting LLM engine...")

    # Tests inject their own client via app.state
    owns_client = getattr(app.state, "llm_client", None) is None
    if owns_client:
        app.state.llm_client = create_llm_client()
    client = app.state.llm_client

    cleanup_task = None
    if settings.rate_limit_cleanup_interval_s > 0:
        cleanup_task = asyncio.create_task(
            _cleanup_rate_limits(client.rate_limiter, settings.rate_limit_cleanup_interval_s)
        )

    logger.info("LLM engine ready (provider=%s, model=%s)", client.get_provider().value, client.get_model())

    yield

    # Shutdown
    if cleanup_task is not None:
        cleanup_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await cleanup_task
    if owns_client:
        await client.aclose()
        app.state.llm_client = None
    logger.info("LLM engine shut down")


app = FastAPI(
    title="LLM Engine",
    description="Unified, rate-limited client over OpenAI, Anthropic, Google and AWS Bedrock",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.app_debug else None,
    redoc_url="/api/redoc" if settings.app_debug else None,
)


# Log unhandled exceptions with the full traceback
@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled %s on %s %s:\n%s", type(exc).__name__, request.method, request.url.path, "".join(tb))
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Prometheus request metrics
app.add_middleware(PrometheusMiddleware)

# CORS: parse allowed_origins from settings (comma-separated)
_origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials="*" not in _origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(api_v1_router)


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_response()


@app.get("/api/v1/health")
async def health():
    client = getattr(app.state, "llm_client", None)
    if client is None:
        return {"status": "starting"}
    return {
        "status": "ok",
        "provider": client.get_provider().value,
        "model": client.get_model(),
        "rate_limiter": client.rate_limiter.get_stats(),
    }
