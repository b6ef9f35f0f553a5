"""
Logging setup for the grievance engine.

Engine modules log through ``logging.getLogger(__name__)`` and tag records
with case context via ``extra=``:

    organization_id   tenant that owns the grievance
    grievance_id      case the record is about
    event_type        lifecycle event (FILED, ADVANCED, SETTLED, ...)

``LOG_FORMAT=json`` renders one JSON object per line with those keys at the
top level; ``readable`` renders them as a bracketed prefix, e.g.

    14:02:11 INFO  grievance_engine.services.grievance_events [org=3 grievance=9f2c ADVANCED] ...
"""

import json
import logging
import sys
from datetime import datetime, timezone

CONTEXT_FIELDS = ("organization_id", "grievance_id", "event_type")

# SDK and driver loggers that are chatty at INFO
_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "urllib3", "httpx", "httpcore", "anthropic", "openai", "google_genai")


def record_context(record: logging.LogRecord) -> dict:
    """Case context attached to ``record`` via ``extra=``."""
    context = {}
    for key in CONTEXT_FIELDS:
        value = getattr(record, key, None)
        if value is not None:
            context[key] = value
    return context


class JSONFormatter(logging.Formatter):
    """One JSON object per record; case context keys are top-level."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **record_context(record),
        }
        if record.threadName and record.threadName.startswith("guidance-upstream"):
            entry["thread"] = record.threadName
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Single-line developer format with an optional color level tag."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    LABELS = {"organization_id": "org", "grievance_id": "grievance"}

    def __init__(self, color: bool = False):
        super().__init__()
        self.color = color

    def context_tag(self, record: logging.LogRecord) -> str:
        parts = []
        for key, value in record_context(record).items():
            label = self.LABELS.get(key)
            parts.append(f"{label}={value}" if label else str(value))
        return f" [{' '.join(parts)}]" if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<5}"
        if self.color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"
        line = f"{ts} {level} {record.name}{self.context_tag(record)} {record.getMessage()}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install one stderr handler on the root logger.

    ``LOG_FORMAT`` (json | readable) and ``LOG_LEVEL`` come from the app
    config; production defaults to JSON at INFO.
    """
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    log_format = app.config.get("LOG_FORMAT", "json")

    if log_format == "json":
        formatter = JSONFormatter()
    else:
        formatter = ReadableFormatter(color=sys.stderr.isatty())

    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING", False):
        app.logger.info("Logging configured: level=%s format=%s", level_name, log_format)
