"""
Structured logging configuration.

- Development: human-readable colored format
- Production: JSON format (log aggregator compatible)
- Log level: LOG_LEVEL env variable; format: LOG_FORMAT (json | readable)
- Inside a request, records are stamped with the HTTP request id and the
  caller's requester id unless the log call passed its own
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

# ``extra=`` fields copied into JSON log lines when present
_EXTRA_FIELDS = (
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "http_request_id",
    "request_id",
    "protocol",
    "requester_id",
    "event_type",
    "renewed_from",
)

LOG_FORMATS = ("json", "readable")


class RequestContextFilter(logging.Filter):
    """Copy request-scoped identifiers onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "http_request_id", None) is None:
                record.http_request_id = getattr(g, "http_request_id", None)
            if getattr(record, "requester_id", None) is None:
                record.requester_id = request.headers.get("X-Requester-Id")
        return True


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        for key in _EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val
        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored one-line format for development.

    Appends ``[req=<http id> by=<requester> <protocol>]`` when those fields
    are present, then the request duration.
    """

    COLORS = {
        "DEBUG": "\033[36m",      # cyan
        "INFO": "\033[32m",       # green
        "WARNING": "\033[33m",    # yellow
        "ERROR": "\033[31m",      # red
        "CRITICAL": "\033[35m",   # magenta
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = True) -> None:
        super().__init__()
        self.color = color

    @staticmethod
    def context_of(record: logging.LogRecord) -> str:
        parts = []
        if getattr(record, "http_request_id", None):
            parts.append(f"req={record.http_request_id}")
        if getattr(record, "requester_id", None):
            parts.append(f"by={record.requester_id}")
        if getattr(record, "protocol", None):
            parts.append(record.protocol)
        return f" [{' '.join(parts)}]" if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "") if self.color else ""
        reset = self.RESET if self.color else ""
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        duration = getattr(record, "duration_ms", None)
        dur_str = f" ({duration:.0f}ms)" if duration is not None else ""
        line = (
            f"{color}{ts} {record.levelname:<8}{reset} {record.name}: "
            f"{record.getMessage()}{self.context_of(record)}{dur_str}"
        )
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _resolve_format(is_prod: bool) -> str:
    fmt = os.getenv("LOG_FORMAT", "").strip().lower()
    if fmt in LOG_FORMATS:
        return fmt
    return "json" if is_prod else "readable"


def configure_logging(app):
    """
    Set up structured logging for the Flask app.

    LOG_LEVEL defaults to INFO in production and DEBUG otherwise. LOG_FORMAT
    overrides the formatter choice (JSON in production, readable otherwise).
    Colors are dropped when stderr is not a terminal.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    fmt = _resolve_format(is_prod)
    if fmt == "json":
        formatter = JSONFormatter()
    else:
        formatter = ReadableFormatter(color=sys.stderr.isatty())

    # Single root stream handler; clearing avoids duplicates across test apps
    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("urllib3", "werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
