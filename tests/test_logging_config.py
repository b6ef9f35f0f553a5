"""
Log formatter tests: case context rendering in JSON and readable output.
"""

import json
import logging

from grievance_engine.middleware.logging_config import JSONFormatter, ReadableFormatter, record_context


def _record(msg="Grievance %s: %s by %s", args=("g-1", "ADVANCED", "steward-1"), **extra):
    record = logging.LogRecord(
        "grievance_engine.services.grievance_events", logging.INFO, __file__, 10, msg, args, None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_record_context_keeps_only_case_fields():
    record = _record(organization_id=3, grievance_id="g-1", event_type="ADVANCED", method="POST")
    assert record_context(record) == {"organization_id": 3, "grievance_id": "g-1", "event_type": "ADVANCED"}


def test_json_formatter_puts_context_at_top_level():
    entry = json.loads(JSONFormatter().format(_record(organization_id=3, grievance_id="g-1")))
    assert entry["message"] == "Grievance g-1: ADVANCED by steward-1"
    assert entry["organization_id"] == 3
    assert entry["grievance_id"] == "g-1"
    assert "event_type" not in entry
    assert entry["level"] == "INFO"


def test_readable_formatter_context_tag():
    line = ReadableFormatter().format(_record(organization_id=3, grievance_id="g-1", event_type="ADVANCED"))
    assert "[org=3 grievance=g-1 ADVANCED]" in line
    assert line.endswith("Grievance g-1: ADVANCED by steward-1")
    assert "\033[" not in line


def test_readable_formatter_without_context():
    line = ReadableFormatter().format(_record(msg="plain", args=()))
    assert "[" not in line
    assert line.endswith("grievance_engine.services.grievance_events plain")
