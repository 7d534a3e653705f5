import json
import logging

from kpi_portal.core.logging import ContextFilter, KpiJsonFormatter, build_formatter, request_id_var, setup_logging


def _record(message="Task 7 Completed successfully."):
    record = logging.LogRecord("kpi_portal.services.task_service", logging.INFO, __file__, 1, message, None, None)
    ContextFilter().filter(record)
    return record


def test_json_record_carries_request_context():
    token = request_id_var.set("req_abc123")
    try:
        line = json.loads(KpiJsonFormatter("%(timestamp) %(level) %(name) %(message)").format(_record()))
    finally:
        request_id_var.reset(token)

    assert line["message"] == "Task 7 Completed successfully."
    assert line["level"] == "INFO"
    assert line["name"] == "kpi_portal.services.task_service"
    assert line["request_id"] == "req_abc123"
    assert line["environment"] == "testing"
    assert line["timestamp"]


def test_background_records_have_no_request_id():
    line = json.loads(KpiJsonFormatter("%(timestamp) %(level) %(name) %(message)").format(_record()))
    assert "request_id" not in line


def test_text_format():
    text = build_formatter("text").format(_record("Escalation sweep: 0 reminders"))
    assert "[-] kpi_portal.services.task_service: Escalation sweep: 0 reminders" in text
    assert "INFO" in text


def test_setup_logging_reuses_its_handler():
    root = logging.getLogger()
    previous = root.level
    try:
        first = setup_logging("warning", "json")
        second = setup_logging("debug", "text")
        assert first is second
        assert sum(1 for h in root.handlers if getattr(h, "_kpi_portal", False)) == 1
        assert root.level == logging.DEBUG
        assert not isinstance(second.formatter, KpiJsonFormatter)
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
    finally:
        setup_logging("info", "json")
        root.setLevel(previous)
