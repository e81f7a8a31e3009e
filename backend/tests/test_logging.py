"""Tests for JSON log formatting."""

from __future__ import annotations

import logging

import orjson

from code_companion.core.logging import REQUEST_ID, JsonFormatter, job_logger


class _Capture(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


def test_formatter_emits_context_fields() -> None:
    record = logging.LogRecord("code_companion.jobs", logging.INFO, __file__, 1, "Synced %s PRs", (3,), None)
    record.ctx_job_id = "job-1"
    record.unrelated = "hidden"

    payload = orjson.loads(JsonFormatter().format(record))

    assert payload["message"] == "Synced 3 PRs"
    assert payload["level"] == "INFO"
    assert payload["ctx_job_id"] == "job-1"
    assert "unrelated" not in payload


def test_job_logger_tags_records() -> None:
    logger = logging.getLogger("code_companion.test_job_logger")
    capture = _Capture()
    logger.addHandler(capture)
    logger.setLevel(logging.INFO)
    try:
        job_logger(logger, "job-7").info("Starting sync", extra={"ctx_repo_url": "https://github.com/acme/shop"})
    finally:
        logger.removeHandler(capture)

    record = capture.records[0]
    assert record.ctx_job_id == "job-7"
    assert record.ctx_repo_url == "https://github.com/acme/shop"


def test_formatter_adds_current_request_id() -> None:
    record = logging.LogRecord("code_companion.app", logging.INFO, __file__, 1, "GET /health 200", (), None)
    token = REQUEST_ID.set("req-42")
    try:
        payload = orjson.loads(JsonFormatter().format(record))
    finally:
        REQUEST_ID.reset(token)

    assert payload["ctx_request_id"] == "req-42"
    assert "ctx_request_id" not in orjson.loads(JsonFormatter().format(record))
