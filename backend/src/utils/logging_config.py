"""
Structured logging configuration for the Vocalis backend.

Production (VOCALIS_ENV=production) writes JSON lines to one rotating file
per logger; development writes readable lines to stdout. Context is passed
with ``extra={...}`` and appears in both formats.

Loggers (all under the ``vocalis.`` namespace):
- api: HTTP requests, exception handlers
- services: Notification and delivery queue business logic
- db: Database operations, migrations
- websocket: Realtime hub connections and broadcasts
- worker: Notification delivery polling loop and batches
- channels: Channel senders (in-app, email, push)
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


LOGGER_NAMES = ("api", "services", "db", "websocket", "worker", "channels")
LOGGER_NAMESPACE = "vocalis"

MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5

# Attributes present on every LogRecord; anything else came from extra={...}
_RESERVED_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()
) | {"message", "asctime"}


def record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    """Return the fields a caller attached through ``extra=``."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_RECORD_ATTRS and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line.

    Fixed keys are timestamp (ISO 8601, UTC, ``Z`` suffix), level, logger,
    message, module, function and line; ``exception`` is added when
    exc_info is set, followed by every extra field.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        log_data.update(record_extras(record))
        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """
    Readable single-line output for development.

    Example:
        [2026-10-18 10:30:45] INFO - vocalis.worker - Delivery batch processed (claimed=3 sent=3)
    """

    def __init__(self):
        super().__init__(
            fmt="[%(asctime)s] %(levelname)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = record_extras(record)
        if extras:
            fields = " ".join(f"{key}={value}" for key, value in extras.items())
            line = f"{line} ({fields})"
        return line


def _get_log_level() -> int:
    """VOCALIS_LOG_LEVEL (DEBUG/INFO/WARNING/ERROR/CRITICAL), default INFO."""
    level_str = os.environ.get("VOCALIS_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def _get_log_dir() -> Path:
    """VOCALIS_LOG_DIR, default ./logs; created if missing."""
    log_dir = Path(os.environ.get("VOCALIS_LOG_DIR", "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def _is_production() -> bool:
    return os.environ.get("VOCALIS_ENV", "development").lower() == "production"


def _build_handler(name: str, log_dir: Optional[Path]) -> logging.Handler:
    if log_dir is None:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(ConsoleFormatter())
        return handler

    handler = logging.handlers.RotatingFileHandler(
        log_dir / f"{name}.log",
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setFormatter(JSONFormatter())
    return handler


def configure_logging() -> Dict[str, logging.Logger]:
    """
    Configure every Vocalis logger and return them keyed by short name.

    Loggers do not propagate to the root logger, so uvicorn's own logging
    configuration does not duplicate their output.

    Example:
        >>> loggers = configure_logging()
        >>> loggers["worker"].info("Batch processed", extra={"claimed": 3})
    """
    log_level = _get_log_level()
    log_dir = _get_log_dir() if _is_production() else None

    loggers = {}
    for name in LOGGER_NAMES:
        logger = logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")
        logger.setLevel(log_level)
        logger.propagate = False
        logger.handlers.clear()

        handler = _build_handler(name, log_dir)
        handler.setLevel(log_level)
        logger.addHandler(handler)

        loggers[name] = logger

    return loggers


_loggers: Optional[Dict[str, logging.Logger]] = None


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger by short name, configuring logging on first use.

    Raises:
        ValueError: If the name is not one of LOGGER_NAMES
    """
    global _loggers

    if _loggers is None:
        _loggers = configure_logging()

    if name not in _loggers:
        raise ValueError(
            f"Unknown logger name: {name}. Valid names: {', '.join(LOGGER_NAMES)}"
        )

    return _loggers[name]


def init_logging() -> Dict[str, logging.Logger]:
    """(Re)configure logging; called once when the app module is imported."""
    global _loggers
    _loggers = configure_logging()
    return _loggers
