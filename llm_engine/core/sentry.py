"""Sentry error tracking integration.

Initializes the Sentry SDK when SENTRY_DSN is set and is a no-op otherwise.
Request bodies carry user prompts, so they are dropped from every event.
"""

import logging

from llm_engine.core.config import settings

logger = logging.getLogger(__name__)


def scrub_event(event: dict, hint: dict) -> dict:
    """before_send hook: remove request bodies (chat messages) from the event."""
    request = event.get("request")
    if isinstance(request, dict):
        request.pop("data", None)
    return event


def init_sentry() -> bool:
    """Initialize Sentry if SENTRY_DSN is configured. Returns whether it was initialized."""
    if not settings.sentry_dsn:
        logger.debug("Sentry DSN not configured, skipping")
        return False

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.httpx import HttpxIntegration

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.app_env,
        traces_sample_rate=0.1 if settings.app_env == "production" else 1.0,
        send_default_pii=False,
        before_send=scrub_event,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            HttpxIntegration(),
        ],
    )
    logger.info("Sentry initialized (env=%s)", settings.app_env)
    return True
