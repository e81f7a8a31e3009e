"""Logging utilities for Code Companion.

Records are rendered as one JSON object per line. Any ``extra`` key prefixed
with ``ctx_`` (``ctx_job_id``, ``ctx_repo_url``, ...) is copied into the
payload, which is how sync jobs and webhook deliveries are correlated.
"""

from __future__ import annotations

import logging
import os
import sys
from contextvars import ContextVar
from typing import Any, MutableMapping

import orjson

_DEFAULT_LEVEL = os.environ.get("CC_LOG_LEVEL", "INFO")
_DEFAULT_JSON = os.environ.get("CC_LOG_JSON", "1").lower() not in {"0", "false", "no"}
CONTEXT_PREFIX = "ctx_"

# Set per HTTP request; tasks started inside a request inherit it.
REQUEST_ID: ContextVar[str | None] = ContextVar("request_id", default=None)

# Client libraries that log every outbound request at INFO.
_CHATTY_LOGGERS = ("httpx", "httpcore", "openai")


class JsonFormatter(logging.Formatter):
    """Render a record and its ``ctx_`` extras as a JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (key, value) for key, value in record.__dict__.items() if key.startswith(CONTEXT_PREFIX)
        )
        request_id = REQUEST_ID.get()
        if request_id is not None:
            payload.setdefault(f"{CONTEXT_PREFIX}request_id", request_id)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode("utf-8")


class JobLoggerAdapter(logging.LoggerAdapter):
    """Tags every record with the sync job it belongs to."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs


def job_logger(logger: logging.Logger, job_id: str) -> JobLoggerAdapter:
    return JobLoggerAdapter(logger, {f"{CONTEXT_PREFIX}job_id": job_id})


def configure_logging(level: str | int = _DEFAULT_LEVEL, use_json: bool = _DEFAULT_JSON) -> None:
    """Install a single stdout handler on the root logger."""
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.handlers = [handler]
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = "code_companion") -> logging.Logger:
    """Return a named logger, configuring the root logger on first use."""
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


__all__ = [
    "CONTEXT_PREFIX",
    "REQUEST_ID",
    "JobLoggerAdapter",
    "JsonFormatter",
    "configure_logging",
    "get_logger",
    "job_logger",
]
