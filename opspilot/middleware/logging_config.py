"""
Structured logging configuration.

Every record can carry request, tenant and job context passed through
``extra=``; both formatters render it:

    logger.info("KPI cache miss", extra={"organization_id": org_id, "cache_key": key})

- Production: one JSON object per line
- Development: coloured single-line text with ``key=value`` context tags
- LOG_LEVEL overrides the level, LOG_FORMAT ("json" | "readable") the format
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Context attributes copied from ``extra=`` into the output
_EXTRA_FIELDS = (
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "request_id",
    "organization_id",
    "cache_key",
    "job_name",
)

# Shown as tags by the readable formatter, in this order
_READABLE_TAGS = ("request_id", "organization_id", "job_name", "cache_key")

_NOISY_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "apscheduler")


def _context(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in _EXTRA_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON document per record, for the log aggregator."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            **_context(record),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured console output for development."""

    COLORS = {
        "DEBUG": "\033[36m",      # cyan
        "INFO": "\033[32m",       # green
        "WARNING": "\033[33m",    # yellow
        "ERROR": "\033[31m",      # red
        "CRITICAL": "\033[35m",   # magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        context = _context(record)
        tags = "".join(
            f" {tag}={context[tag]}" for tag in _READABLE_TAGS if tag in context
        )
        if "duration_ms" in context:
            tags += f" [{context['duration_ms']:.0f}ms]"
        line = (f"{color}{ts} {record.levelname:<8}{self.RESET} "
                f"{record.name}: {record.getMessage()}{tags}")
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _use_json(app) -> bool:
    fmt = os.getenv("LOG_FORMAT", "").lower()
    if fmt in ("json", "readable"):
        return fmt == "json"
    return not app.config.get("DEBUG", False) and not app.config.get("TESTING", False)


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    Default level is INFO for JSON output and DEBUG otherwise.
    """
    use_json = _use_json(app)
    level_name = os.getenv("LOG_LEVEL", "INFO" if use_json else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if use_json else ReadableFormatter())
    handler.setLevel(level)

    # Replaced, not appended: tests build the app more than once
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not app.config.get("TESTING", False):
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "JSON" if use_json else "readable")
