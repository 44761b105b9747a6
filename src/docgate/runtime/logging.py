"""
docgate logging.

Records under the ``docgate`` logger go to two sinks once ``setup_logging``
has run:

- the terminal, one short line per record, coloured unless NO_COLOR is set
  or stdout is not a TTY
- ``<log_dir>/docgate.log``, rotated, one JSON object per line carrying the
  component tag and any structured context

Modules use ``logging.getLogger(__name__)`` or a component logger from
``get_logger``.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

ROOT_LOGGER = "docgate"
LOG_FILE_NAME = "docgate.log"
DEFAULT_COMPONENT = "DOCGATE"

USE_COLOR = not os.environ.get("NO_COLOR") and sys.stdout.isatty()

# ANSI SGR codes
LEVEL_STYLES = {
    logging.DEBUG: "36",
    logging.INFO: "32",
    logging.WARNING: "33",
    logging.ERROR: "31",
    logging.CRITICAL: "1;35",
}
COMPONENT_STYLES = {
    "API": "34",
    "STORE": "36",
    "CLI": "32",
    DEFAULT_COMPONENT: "35",
}


def _paint(text: str, style: str | None) -> str:
    if not USE_COLOR or not style:
        return text
    return f"\033[{style}m{text}\033[0m"


def component_of(record: logging.LogRecord) -> str:
    """The record's component tag; otherwise the last segment of its logger name."""
    tagged = getattr(record, "component", None)
    if tagged:
        return tagged
    _, _, leaf = record.name.rpartition(".")
    return leaf.upper() if leaf and leaf != ROOT_LOGGER else DEFAULT_COMPONENT


# =============================================================================
# Formatters
# =============================================================================


class JSONLFormatter(logging.Formatter):
    """
    One JSON object per record.

    {"timestamp": "2024-05-01T09:12:44.031Z", "level": "WARNING", "component": "STORE",
     "logger": "docgate.runtime.database", "message": "MongoDB ping failed: ...",
     "source": {"file": ".../database.py", "line": 183}}
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, UTC)
        entry: dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "component": component_of(record),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if getattr(record, "context", None):
            entry["context"] = record.context
        if record.levelno >= logging.WARNING:
            entry["source"] = self._source(record)
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self._exception(record)
        return json.dumps(entry, default=str)

    @staticmethod
    def _source(record: logging.LogRecord) -> dict[str, Any]:
        source: dict[str, Any] = {"file": record.pathname, "line": record.lineno}
        if record.funcName and record.funcName != "<module>":
            source["function"] = record.funcName
        return source

    def _exception(self, record: logging.LogRecord) -> dict[str, Any]:
        exc_type, exc_value, _ = record.exc_info
        return {
            "type": exc_type.__name__,
            "message": str(exc_value),
            "traceback": self.formatException(record.exc_info).splitlines(),
        }


class ConsoleFormatter(logging.Formatter):
    """``HH:MM:SS [COMPONENT] LEVEL: message``; the level is omitted for INFO."""

    def format(self, record: logging.LogRecord) -> str:
        component = component_of(record)
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        parts = [
            _paint(clock, "2"),
            _paint(f"[{component}]", COMPONENT_STYLES.get(component, COMPONENT_STYLES[DEFAULT_COMPONENT])),
        ]
        if record.levelno != logging.INFO:
            parts.append(_paint(f"{record.levelname}:", LEVEL_STYLES.get(record.levelno)))
        parts.append(record.getMessage())

        line = " ".join(parts)
        if record.exc_info and record.exc_info[0]:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


# =============================================================================
# Setup
# =============================================================================

_state: dict[str, Path | None] = {"log_dir": None}


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(
    log_dir: Path | str | None = ".docgate/logs",
    level: int | str = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> Path | None:
    """
    Install the console and file handlers on the ``docgate`` logger.

    Calling it again replaces the previous handlers.

    Args:
        log_dir: Directory for ``docgate.log``; None logs to the console only
        level: Minimum level, as a number or a name such as ``"DEBUG"``
        max_bytes: Size at which the log file rotates
        backup_count: Rotated files kept

    Returns:
        The log directory, or None when file logging is off
    """
    level = _resolve_level(level)
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    root.propagate = False
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(ConsoleFormatter())
    root.addHandler(console)

    if log_dir is None:
        _state["log_dir"] = None
        return None

    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        directory / LOG_FILE_NAME,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(JSONLFormatter())
    root.addHandler(file_handler)

    _state["log_dir"] = directory
    root.debug(f"Logging to {directory / LOG_FILE_NAME}")
    return directory


def get_log_file() -> Path | None:
    """Path of the JSONL log, if file logging is on."""
    directory = _state["log_dir"]
    return directory / LOG_FILE_NAME if directory else None


# =============================================================================
# Component loggers
# =============================================================================


class ComponentFilter(logging.Filter):
    """Tags records with a component name unless they already carry one."""

    def __init__(self, component: str):
        super().__init__()
        self.component = component

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "component", None):
            record.component = self.component
        return True


def get_logger(component: str) -> logging.Logger:
    """
    Logger whose records are tagged with ``component``.

    Args:
        component: Tag shown in both sinks (e.g. "API", "STORE")
    """
    logger = logging.getLogger(f"{ROOT_LOGGER}.{component.lower().replace(' ', '_')}")
    if not any(isinstance(f, ComponentFilter) for f in logger.filters):
        logger.addFilter(ComponentFilter(component.upper()))
    return logger


def get_api_logger() -> logging.Logger:
    return get_logger("API")


def get_store_logger() -> logging.Logger:
    return get_logger("STORE")


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    **fields: Any,
) -> None:
    """
    Log ``message`` with structured context, written to the JSONL sink.

    Args:
        logger: Target logger
        level: Level number (``logging.WARNING`` etc.)
        message: Human-readable message
        context: Context mapping
        **fields: Extra context entries, merged over ``context``
    """
    merged = {**(context or {}), **fields}
    logger.log(level, message, extra={"context": merged} if merged else None)
