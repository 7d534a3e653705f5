"""
Structured logging for the API and the background sweeper.

Every record carries the service environment and, inside an HTTP request,
the correlation id set by the middleware. ``LOG_FORMAT=text`` swaps the JSON
formatter for a single-line console format with the same fields.
"""
import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from kpi_portal.core.config import settings

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

JSON_FIELDS = "%(timestamp) %(level) %(name) %(message)"
TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(request_id)s] %(name)s: %(message)s"

# Third-party loggers that drown out the application at INFO
QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "passlib": logging.ERROR,
}


class ContextFilter(logging.Filter):
    """Copies the request context onto the record so any formatter can use it."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        record.environment = settings.environment
        return True


class KpiJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.fromtimestamp(record.created, timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["environment"] = getattr(record, "environment", settings.environment)

        request_id = getattr(record, "request_id", None)
        if request_id and request_id != "-":
            log_record["request_id"] = request_id
        else:
            log_record.pop("request_id", None)


def build_formatter(fmt: str) -> logging.Formatter:
    if fmt == "text":
        return logging.Formatter(TEXT_FORMAT)
    return KpiJsonFormatter(JSON_FIELDS)


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> logging.Handler:
    root = logging.getLogger()
    level = (level or settings.log_level).upper()
    root.setLevel(getattr(logging, level, logging.INFO))

    # Re-imports (tests, reloaders) reuse the handler instead of stacking a new one
    handler = next((h for h in root.handlers if getattr(h, "_kpi_portal", False)), None)
    if handler is None:
        handler = logging.StreamHandler()
        handler._kpi_portal = True
        handler.addFilter(ContextFilter())
        root.addHandler(handler)
    handler.setFormatter(build_formatter(fmt or settings.log_format))

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)
    return handler
