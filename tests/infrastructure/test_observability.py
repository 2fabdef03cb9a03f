"""Structured Logging — tests for the JSON formatter and handler setup."""

import json
import logging

import pytest

from clinisync.infrastructure.observability import JSONFormatter, setup_logging


@pytest.fixture
def restore_logging():
    handlers, level = list(logging.root.handlers), logging.root.level
    httpx_level = logging.getLogger("httpx").level
    yield
    logging.root.handlers[:] = handlers
    logging.root.setLevel(level)
    logging.getLogger("httpx").setLevel(httpx_level)


def _record(**extra):
    record = logging.LogRecord("clinisync.sync", logging.WARNING, __file__, 1, "pull failed", None, None)
    record.__dict__.update(extra)
    return record


def test_sync_extras_are_surfaced():
    line = json.loads(JSONFormatter().format(
        _record(table="vital_signs", store_code="42P01", online=False),
    ))
    assert line["message"] == "pull failed"
    assert line["table"] == "vital_signs"
    assert line["store_code"] == "42P01"
    assert line["online"] is False
    assert "record_id" not in line


def test_setup_twice_keeps_one_handler(restore_logging):
    setup_logging("INFO", "json")
    setup_logging("INFO", "text")
    ours = [h for h in logging.root.handlers if type(h).__name__ == "_ClinisyncHandler"]
    assert len(ours) == 1
    assert not isinstance(ours[0].formatter, JSONFormatter)


def test_http_client_chatter_capped_unless_debug(restore_logging):
    setup_logging("INFO")
    assert logging.getLogger("httpx").level == logging.WARNING
    setup_logging("DEBUG")
    assert logging.getLogger("httpx").level == logging.DEBUG
