"""
Log output for the portfolio service.

Two renderings of the same records:
    JSONFormatter      one JSON object per line, workflow context as top-level keys
    ReadableFormatter  short colored lines tagged with the initiative id

Debug and testing builds get the readable form; anything else is JSON.
LOG_LEVEL overrides the default level.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Keys copied from ``extra={...}`` onto the JSON line when present
EXTRA_FIELDS = (
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "request_id",
    "initiative_id",
    "workstream_id",
    "approval_id",
    "stage_key",
    "round_index",
    "account_id",
    "event_type",
)


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        for key in EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored one-liners for a local terminal."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        clock = datetime.now().strftime("%H:%M:%S")
        duration = getattr(record, "duration_ms", None)
        timing = f" [{duration:.0f}ms]" if duration is not None else ""
        initiative = getattr(record, "initiative_id", None)
        ctx = f" <{initiative}>" if initiative else ""
        line = f"{color}{clock} {record.levelname:<8}{self.RESET} {record.name}:{ctx} {record.getMessage()}{timing}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install one stderr handler on the root logger for ``app``.

    Level comes from LOG_LEVEL, else DEBUG for debug/testing builds and
    INFO otherwise.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    formatter = JSONFormatter() if is_prod else ReadableFormatter()

    root = logging.getLogger()
    # create_app() runs once per test session and again per factory call
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    # Driver and server chatter stays at WARNING
    for name in ("urllib3", "werkzeug", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Portfolio logging ready: level=%s format=%s",
                        level_name, "JSON" if is_prod else "readable")
