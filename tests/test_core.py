"""Tests for settings validation, logging setup and Sentry scrubbing."""

import json
import logging

import pytest

from llm_engine.core import config as config_module
from llm_engine.core.config import Settings, validate_settings_for_production
from llm_engine.core.logging import JSONFormatter, setup_logging
from llm_engine.core.sentry import init_sentry, scrub_event


class TestSettings:
    def test_defaults(self):
        s = Settings(_env_file=None)
        assert s.llm_rate_limit_requests == 100
        assert s.llm_rate_limit_window_ms == 60_000
        assert s.llm_max_tokens_per_request == 4096
        assert s.bedrock_model.startswith("anthropic.")

    def test_production_rejects_wildcard_cors(self, monkeypatch):
        monkeypatch.setattr(
            config_module, "settings", Settings(_env_file=None, app_env="production", app_debug=False)
        )
        with pytest.raises(SystemExit, match="ALLOWED_ORIGINS"):
            validate_settings_for_production()

    def test_rejects_zero_window(self, monkeypatch):
        monkeypatch.setattr(config_module, "settings", Settings(_env_file=None, llm_rate_limit_window_ms=0))
        with pytest.raises(SystemExit, match="LLM_RATE_LIMIT_WINDOW_MS"):
            validate_settings_for_production()

    def test_development_ok(self, monkeypatch):
        monkeypatch.setattr(config_module, "settings", Settings(_env_file=None))
        validate_settings_for_production()


class TestLogging:
    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord("llm_engine.test", logging.WARNING, __file__, 1, "hit %s", ("limit",), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_formatter(self):
        data = json.loads(JSONFormatter().format(self._record(user_id="u1", provider="openai")))
        assert data["message"] == "hit limit"
        assert data["level"] == "WARNING"
        assert data["user_id"] == "u1"
        assert data["provider"] == "openai"
        assert "model" not in data

    def test_setup_logging_json(self):
        root = logging.getLogger()
        saved = root.handlers[:], root.level
        try:
            setup_logging(level="debug", json_logs=True)
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = saved[0]
            root.setLevel(saved[1])


class TestSentry:
    def test_scrub_event_drops_body(self):
        event = {"request": {"url": "/api/v1/chat", "data": {"messages": [{"content": "secret"}]}}}
        scrubbed = scrub_event(event, {})
        assert scrubbed["request"] == {"url": "/api/v1/chat"}

    def test_scrub_event_without_request(self):
        assert scrub_event({"message": "x"}, {}) == {"message": "x"}

    def test_init_without_dsn(self):
        assert init_sentry() is False
