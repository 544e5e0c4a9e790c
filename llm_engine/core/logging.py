"""Centralized logging configuration.

Plain ``time | level | logger | message`` lines by default, one JSON object
per line when LOG_JSON is set. Gateway code passes ``user_id`` / ``provider``
/ ``model`` through ``extra=``; the JSON formatter lifts them into fields.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from llm_engine.core.config import settings

CONTEXT_FIELDS = ("user_id", "provider", "model")

# Vendor transports log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "botocore", "boto3", "urllib3")


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter for production."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_data[name] = value
        if record.exc_info and record.exc_info[1]:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False)


def setup_logging(level: str | None = None, json_logs: bool | None = None) -> None:
    """Configure the root logger. Arguments override LOG_LEVEL / LOG_JSON."""
    level_name = (level or settings.log_level).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)
    use_json = settings.log_json if json_logs is None else json_logs

    root = logging.getLogger()
    root.setLevel(numeric_level)

    # Replace whatever handlers uvicorn or a previous call installed
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    if use_json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING if not settings.app_debug else numeric_level)
