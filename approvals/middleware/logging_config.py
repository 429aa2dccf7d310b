"""
Structured logging configuration.

- Development: human-readable colored format, with approval context tags
- Production: JSON format (log aggregator compatible)
- LOG_LEVEL / LOG_FORMAT config values override the environment defaults
"""

import json
import logging
import sys
from datetime import datetime, timezone

# Request attributes set by the timing middleware
_REQUEST_FIELDS = (
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "request_id",
)

# Approval context passed by services via `extra=`
_CONTEXT_FIELDS = (
    "actor_id",
    "process_id",
    "step_id",
    "approval_request_id",
    "entity_type",
    "entity_id",
    "outcome",
)


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        for key in _REQUEST_FIELDS + _CONTEXT_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val
        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Human-readable colored formatter for development.

    Approval context fields are appended as ``key=value`` tags so a decision
    can be followed across log lines without switching to JSON.
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "") if self.use_color else ""
        reset = self.RESET if self.use_color else ""
        ts = datetime.now().strftime("%H:%M:%S")
        duration = getattr(record, "duration_ms", None)
        dur_str = f" [{duration:.0f}ms]" if duration is not None else ""
        tags = " ".join(
            f"{key}={getattr(record, key)}"
            for key in _CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        )
        tag_str = f" ({tags})" if tags else ""
        base = f"{color}{ts} {record.levelname:<8}{reset} {record.name}: {record.getMessage()}{dur_str}{tag_str}"
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


def configure_logging(app):
    """
    Set up structured logging for the Flask app.

    Level: LOG_LEVEL, else DEBUG in dev/test and INFO in prod.
    Format: LOG_FORMAT ("json" | "readable"), else JSON in prod only.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = (app.config.get("LOG_LEVEL") or ("INFO" if is_prod else "DEBUG")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = (app.config.get("LOG_FORMAT") or ("json" if is_prod else "readable")).lower()
    if fmt == "json":
        formatter = JSONFormatter()
    else:
        formatter = ReadableFormatter(use_color=sys.stderr.isatty())

    # One root handler; repeated create_app() calls replace it
    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("urllib3", "werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
