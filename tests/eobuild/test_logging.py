"""Structured logging helpers."""

from __future__ import annotations

import json
import logging

import pytest

from EOBuild.logging import JSONFormatter, get_logger, log_event, setup_logging


def test_log_event_carries_stage_and_fields(caplog: pytest.LogCaptureFixture) -> None:
    logger = get_logger("EOBuild.tests.logging", base_fields={"stage": "pull"})

    with caplog.at_level(logging.INFO):
        log_event(logger, "warning", "something odd", reason="test")

    record = caplog.records[-1]
    assert record.extra_fields == {"stage": "pull", "identifier": "unknown", "reason": "test"}


def test_json_formatter_emits_one_object() -> None:
    logger = get_logger("EOBuild.tests.json", base_fields={"stage": "verify"})
    record = logging.LogRecord("EOBuild", logging.INFO, __file__, 1, "done", None, None)
    record.extra_fields = {"identifier": "foo.x.main", "reused": 1}

    payload = json.loads(JSONFormatter().format(record))

    assert payload["message"] == "done"
    assert payload["identifier"] == "foo.x.main"
    assert payload["reused"] == 1
    assert logger.base_fields == {"stage": "verify"}


def test_setup_logging_replaces_managed_handler() -> None:
    logger = setup_logging("DEBUG", "json")
    setup_logging("INFO", "console")

    managed = [h for h in logger.handlers if getattr(h, "_eobuild_managed", False)]
    assert len(managed) == 1
    assert logger.level == logging.INFO
    assert not isinstance(managed[0].formatter, JSONFormatter)
