"""Log formatters carry workflow context."""

import json
import logging

from app.middleware.logging_config import JSONFormatter, ReadableFormatter


def _record(**extra):
    record = logging.LogRecord("app.services.workflow_service", logging.INFO, __file__, 10,
                               "Stage advanced", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_workflow_extras():
    payload = json.loads(JSONFormatter().format(
        _record(paper_id=7, stage_id=21, tracking_number="CP-2026-03-0001", action="completed")
    ))
    assert payload["message"] == "Stage advanced"
    assert payload["level"] == "INFO"
    assert payload["paper_id"] == 7
    assert payload["stage_id"] == 21
    assert payload["tracking_number"] == "CP-2026-03-0001"
    assert payload["action"] == "completed"
    assert "job_name" not in payload


def test_readable_formatter_shows_tracking_number():
    line = ReadableFormatter().format(_record(tracking_number="CP-2026-03-0001"))
    assert "[CP-2026-03-0001] Stage advanced" in line
