"""
sitemaster/logging_config.py

Logging for the "sitemaster" logger tree (every module uses getLogger(__name__)).

- LOG_FORMAT=json: one JSON object per line, for log aggregation.
- otherwise: one readable line per record; level names are colored only
  when stderr is a terminal.
- LOG_LEVEL sets the level of the "sitemaster" logger and of app.logger.
"""

import json
import logging
import sys
from datetime import datetime, timezone


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

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
        return json.dumps(log_entry, ensure_ascii=False)


class ReadableFormatter(logging.Formatter):
    """`HH:MM:SS LEVEL    logger: message`, with optional ANSI level colors."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = False):
        super().__init__()
        self.use_color = use_color

    def _level(self, levelname: str) -> str:
        label = f"{levelname:<8}"
        if not self.use_color:
            return label
        return f"{self.LEVEL_COLORS.get(levelname, '')}{label}{self.RESET}"

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{ts} {self._level(record.levelname)} {record.name}: {record.getMessage()}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Attach one stderr handler to the "sitemaster" logger.

    Safe to call more than once (the handler is replaced, not duplicated).
    """
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    if app.config.get("LOG_FORMAT") == "json":
        formatter = JSONFormatter()
    else:
        formatter = ReadableFormatter(use_color=sys.stderr.isatty())

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.set_name("sitemaster")

    logger = logging.getLogger("sitemaster")
    for existing in list(logger.handlers):
        if existing.get_name() == "sitemaster":
            logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = True

    app.logger.setLevel(level)
