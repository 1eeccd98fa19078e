"""
Logging setup.

Two output formats on a single stderr handler:

    json     one object per line for the log pipeline (production default)
    console  coloured single line with the workflow ids (development default)

Service modules pass workflow ids through ``extra=`` (operation_id, step_id,
document_id, event_type, error_code).  ``RequestContextFilter`` adds the
request id and caller to every record logged while a request is active, so a
rule rejection in the coordinator can be joined to its HTTP access line.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Record attributes emitted as top-level JSON keys when present
STRUCTURED_FIELDS = (
    "request_id",
    "user_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "operation_id",
    "step_id",
    "document_id",
    "buyer_id",
    "event_type",
    "error_code",
)

_CONSOLE_IDS = ("operation_id", "step_id", "document_id", "error_code")

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "alembic")


class RequestContextFilter(logging.Filter):
    """Stamp request_id / user_id from ``flask.g`` onto records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = g.get("request_id")
            if getattr(record, "user_id", None) is None:
                identity = g.get("identity")
                record.user_id = identity.user_id if identity is not None else None
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in STRUCTURED_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """Readable one-liner: time, level, logger, message, workflow ids."""

    LEVEL_COLORS = {
        "DEBUG": "\033[2m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        when = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        color = self.LEVEL_COLORS.get(record.levelname, "")
        line = f"{when} {color}{record.levelname[:4]}{self.RESET} {record.name} | {record.getMessage()}"

        ids = [
            f"{key}={getattr(record, key)}"
            for key in _CONSOLE_IDS
            if getattr(record, key, None) is not None
        ]
        if ids:
            line += "  [" + " ".join(ids) + "]"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f"  {duration:.0f}ms"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install the root handler according to LOG_LEVEL / LOG_FORMAT.

    Defaults: development → DEBUG + console; testing → DEBUG + console;
    anything else → INFO + json.
    """
    dev_like = app.config.get("DEBUG") or app.config.get("TESTING")

    level_name = (app.config.get("LOG_LEVEL") or ("DEBUG" if dev_like else "INFO")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    fmt = (app.config.get("LOG_FORMAT") or ("console" if dev_like else "json")).lower()
    formatter = JSONFormatter() if fmt == "json" else ConsoleFormatter()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    # Repeated create_app() calls (tests) must not stack handlers
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING"):
        app.logger.info("Logging ready: level=%s format=%s", level_name, fmt)
