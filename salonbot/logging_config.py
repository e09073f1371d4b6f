"""JSON logging configuration for salonbot."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any


class JSONFormatter(logging.Formatter):
    """Format log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "context") and record.context:
            log_data["context"] = record.context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Route every logger through a single stdout JSON handler."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    for noisy in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"salonbot.{name}")


class ContextLoggerAdapter(logging.LoggerAdapter):
    """Merges a fixed context (business, phone, message id) into each record."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None)
        extra = kwargs.get("extra") or {}
        extra_context = extra.get("context") if isinstance(extra.get("context"), dict) else {}
        combined = {**(self.extra or {}), **extra_context, **(context or {})}
        if combined:
            kwargs["extra"] = {**extra, "context": combined}
        return msg, kwargs


def bind_logger(name: str, **context: Any) -> ContextLoggerAdapter:
    """Logger for one unit of work, e.g. a single conversation turn."""
    return ContextLoggerAdapter(get_logger(name), {k: v for k, v in context.items() if v is not None})
