"""Logging setup for reqtail.

All loggers hang off the "reqtail" root, which writes to stderr so stdout stays
free for results and summaries. Level and format come from the environment;
JSON lines suit hosts that ship the monitor's own logs somewhere else.
"""

from __future__ import annotations

import logging
import sys
from os import environ
from typing import Any

import orjson

ROOT_LOGGER = "reqtail"
LOG_LEVEL_ENV = "REQTAIL_LOG_LEVEL"
LOG_FORMAT_ENV = "REQTAIL_LOG_FORMAT"  # "json" | "text" (default)
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
TEXT_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Passed through logger calls as extra={...}; copied into JSON records.
CONTEXT_FIELDS = ("log_path", "state_file", "window")


def get_logger(name: str) -> logging.Logger:
    """Logger for a reqtail module; sets up the root handler on first use."""
    logger = logging.getLogger(ROOT_LOGGER if name == ROOT_LOGGER else f"{ROOT_LOGGER}.{name}")
    if not logger.handlers and logger.level == logging.NOTSET:
        _configure_reqtail_logging()
    return logger


def _level_from_env() -> int:
    level_name = (environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    level = logging.getLevelName(level_name)
    return level if isinstance(level, int) else logging.INFO


def _configure_reqtail_logging() -> None:
    root = logging.getLogger(ROOT_LOGGER)
    if root.handlers:
        return
    root.setLevel(_level_from_env())
    handler = logging.StreamHandler(sys.stderr)
    if (environ.get(LOG_FORMAT_ENV) or "text").lower() == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATEFMT))
    root.addHandler(handler)


class _JsonFormatter(logging.Formatter):
    """One JSON object per line, with any context fields the caller attached."""

    def format(self, record: logging.LogRecord) -> str:
        obj: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt or "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                obj[name] = value
        if record.exc_info:
            obj["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(obj, default=str).decode("utf-8")


def set_log_level(level: str | int) -> None:
    """Override the reqtail root level (e.g. from --debug); unknown names are ignored."""
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            return
        level = resolved
    _configure_reqtail_logging()
    logging.getLogger(ROOT_LOGGER).setLevel(level)
