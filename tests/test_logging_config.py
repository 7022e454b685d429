"""
Tests: structured logging formatters.
"""

import json
import logging

from agromonitor.middleware.logging_config import JSONFormatter, ReadableFormatter


def _record(msg="Alert created", **extra):
    record = logging.LogRecord("agromonitor.services.alert_service", logging.INFO, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:

    def test_monitoring_extras_are_emitted(self):
        line = JSONFormatter().format(_record(alert_id=7, planned_resource_id=3, user_id=2, project_id=1))
        entry = json.loads(line)
        assert entry["message"] == "Alert created"
        assert entry["level"] == "INFO"
        assert entry["alert_id"] == 7
        assert entry["planned_resource_id"] == 3
        assert entry["user_id"] == 2
        assert entry["project_id"] == 1

    def test_missing_extras_are_omitted(self):
        entry = json.loads(JSONFormatter().format(_record(alert_id=7, planned_resource_id=None)))
        assert "planned_resource_id" not in entry
        assert "user_id" not in entry

    def test_logger_extra_kwarg_reaches_formatter(self, caplog):
        with caplog.at_level(logging.INFO, logger="agromonitor.test"):
            logging.getLogger("agromonitor.test").info("Consumption recorded", extra={"planned_resource_id": 5})
        entry = json.loads(JSONFormatter().format(caplog.records[-1]))
        assert entry["planned_resource_id"] == 5


class TestReadableFormatter:

    def test_includes_duration(self):
        line = ReadableFormatter().format(_record("GET /health", duration_ms=12.4))
        assert "GET /health" in line
        assert "[12ms]" in line
