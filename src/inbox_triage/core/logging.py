"""Logging configuration helpers."""

from __future__ import annotations

import json
import logging
import logging.config
from typing import Any

from .config import LoggingSettings
from .sanitizer import redact_secrets


class SecretRedactingFilter(logging.Filter):
    """Scrub API keys and bearer tokens from rendered log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_secrets(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class JsonFormatter(logging.Formatter):
    """Render each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def _structured_formatter() -> dict[str, Any]:
    return {"()": JsonFormatter}


def _plain_formatter() -> dict[str, Any]:
    return {
        "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
    }


def configure_logging(settings: LoggingSettings) -> None:
    """Route every logger through one redacting console handler."""
    formatter = _structured_formatter() if settings.structured else _plain_formatter()

    dict_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "redact_secrets": {"()": SecretRedactingFilter},
        },
        "formatters": {
            "default": formatter,
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "filters": ["redact_secrets"],
                "level": settings.level,
            },
        },
        "loggers": {
            # INFO request lines include the Google API key query parameter.
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
        },
        "root": {
            "handlers": ["console"],
            "level": settings.level,
        },
    }

    logging.config.dictConfig(dict_config)


__all__ = ["JsonFormatter", "SecretRedactingFilter", "configure_logging"]
