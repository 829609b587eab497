"""Tests for logging context and tracing helpers."""

import json
import logging

from observability.logging import ContextFilter, JsonFormatter, job_context, setup_logging
from observability.tracing import setup_tracing, trace_operation


def _record(message: str) -> logging.LogRecord:
    record = logging.LogRecord("worker", logging.INFO, __file__, 1, message, None, None)
    ContextFilter().filter(record)
    return record


def test_job_context_tags_records():
    with job_context(job_id="j1", report_id="r1"):
        record = _record("inside")
    assert (record.job_id, record.report_id) == ("j1", "r1")

    record = _record("outside")
    assert (record.job_id, record.report_id) == ("-", "-")


def test_json_formatter():
    with job_context(job_id="j1", report_id="r1"):
        payload = json.loads(JsonFormatter().format(_record("hello")))
    assert payload["message"] == "hello"
    assert payload["report_id"] == "r1"
    assert payload["level"] == "INFO"


def test_setup_logging_writes_file(config):
    root = logging.getLogger()
    saved = root.handlers[:]
    try:
        assert setup_logging(config) is True
        logging.getLogger("test").info("written")
        for handler in root.handlers:
            handler.flush()
        assert "written" in (config.log_dir / "triage.log").read_text()
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()
        for handler in saved:
            root.addHandler(handler)


def test_tracing_disabled_still_yields_attrs():
    context = setup_tracing(enabled=False)
    assert context.enabled is False
    with trace_operation("op", {"report_id": "r1"}) as attrs:
        attrs["final_category"] = "Other"
    assert attrs == {"final_category": "Other"}
