"""
Passport Logging Subsystem

Purpose
-------
Structured, async-safe logging for the engine:
- JSON records for aggregation (always in files, on the console in production)
- LogContext propagation of subject / trigger / correlation id via ContextVars,
  so every record emitted while processing one event carries the same id
- QueueHandler + QueueListener so handlers never block the event loop; the
  queue is bounded and drops records on overload instead of stalling

Configured from `Config` (LOG_LEVEL, LOG_JSON, LOG_FILE_ENABLED, LOGS_DIR) and
initialized once on import.
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import uuid
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from logging import Logger
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from typing import Any, Dict, List, Optional

from passport.core.config.config import Config

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-34s | %(correlation_id)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DAILY_BASENAME = "passport_daily.json.log"
QUEUE_MAX_SIZE = 10_000

_log_context: ContextVar[Dict[str, Any]] = ContextVar("passport_log_context", default={})
_queue_listener: Optional[QueueListener] = None


def _log_level() -> int:
    return getattr(logging, str(Config.LOG_LEVEL).upper(), logging.INFO)


def _use_json() -> bool:
    if Config.LOG_JSON is None:
        return Config.is_production()
    return bool(Config.LOG_JSON)


# ============================================================================
# Filters & Formatters
# ============================================================================


class ContextFilter(logging.Filter):
    """Copy the active LogContext onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        context = _log_context.get({})

        # Explicit `extra=` values win over the bound context
        for key in ("subject_id", "trigger_event", "correlation_id", "operation"):
            if not hasattr(record, key):
                setattr(record, key, context.get(key, "N/A"))
        for key, value in context.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class ColoredFormatter(logging.Formatter):
    COLORS: Dict[str, str] = {
        "DEBUG": "\033[90m",
        "INFO": "\033[94m",
        "WARNING": "\033[93m",
        "ERROR": "\033[91m",
        "CRITICAL": "\033[91m\033[1m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        original = record.levelname
        prefix = self.COLORS.get(original)
        if prefix:
            record.levelname = f"{prefix}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


class JSONFormatter(logging.Formatter):
    # Attributes every LogRecord has; anything else came from `extra=` or context
    RECORD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
        "message",
        "asctime",
        "taskName",
    }
    CONTEXT_ATTRS = ("subject_id", "trigger_event", "correlation_id", "operation")

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }

        for attr in self.CONTEXT_ATTRS:
            value = getattr(record, attr, None)
            if value not in (None, "N/A"):
                log_data[attr] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in self.RECORD_ATTRS
            and key not in self.CONTEXT_ATTRS
            and not key.startswith("_")
        }
        if extra:
            log_data["extra"] = extra

        return json.dumps(log_data, ensure_ascii=False, default=str)


class DroppingQueueHandler(QueueHandler):
    """Bounded queue; a full queue drops the record and says so on stderr."""

    dropped = 0

    def enqueue(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            DroppingQueueHandler.dropped += 1
            sys.stderr.write("Passport logging queue full; dropping log record.\n")


# ============================================================================
# Global Setup
# ============================================================================


def _build_handlers() -> List[logging.Handler]:
    console = logging.StreamHandler(sys.stdout)
    if _use_json():
        console.setFormatter(JSONFormatter())
    elif sys.stdout.isatty():
        console.setFormatter(ColoredFormatter(fmt=CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    else:
        console.setFormatter(logging.Formatter(fmt=CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    handlers: List[logging.Handler] = [console]

    if Config.LOG_FILE_ENABLED:
        logs_dir = Config.LOGS_DIR.resolve()
        logs_dir.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            filename=str(logs_dir / DAILY_BASENAME),
            when="midnight",
            backupCount=1,
            encoding="utf-8",
            utc=True,
        )
        file_handler.setFormatter(JSONFormatter())
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(_log_level())
    return handlers


def setup_logging() -> None:
    """Install the queue pipeline on the root logger. Idempotent."""
    global _queue_listener

    root = logging.getLogger()
    if _queue_listener is not None:
        return

    log_queue: "queue.Queue[logging.LogRecord]" = queue.Queue(QUEUE_MAX_SIZE)
    _queue_listener = QueueListener(log_queue, *_build_handlers(), respect_handler_level=True)
    _queue_listener.start()

    # Context is read on the producing task; the listener thread has none
    queue_handler = DroppingQueueHandler(log_queue)
    queue_handler.addFilter(ContextFilter())
    root.addHandler(queue_handler)
    root.setLevel(_log_level())

    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("testcontainers").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={
            "environment": Config.ENVIRONMENT,
            "log_level": logging.getLevelName(_log_level()),
            "json": _use_json(),
            "file": Config.LOG_FILE_ENABLED,
        },
    )


def shutdown_logging() -> None:
    """Flush and detach the queue pipeline."""
    global _queue_listener

    if _queue_listener is None:
        return

    _queue_listener.stop()
    _queue_listener = None

    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, DroppingQueueHandler):
            handler.close()
            root.removeHandler(handler)


# ============================================================================
# Public API
# ============================================================================


def get_logger(name: str) -> Logger:
    return logging.getLogger(name)


class LogContext:
    """
    Bind subject and event context to every log record emitted inside it.

    Usable as both a sync and an async context manager:

        async with LogContext(subject_id="u-1", trigger_event="check_in"):
            ...

    Nested contexts inherit the outer correlation id unless one is given.
    """

    def __init__(
        self,
        subject_id: Optional[str] = None,
        trigger_event: Optional[str] = None,
        operation: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **extra: Any,
    ) -> None:
        self._overrides: Dict[str, Any] = {
            key: value
            for key, value in {
                "subject_id": str(subject_id) if subject_id is not None else None,
                "trigger_event": trigger_event,
                "operation": operation,
                "correlation_id": correlation_id,
            }.items()
            if value is not None
        }
        self._overrides.update(extra)
        self._token: Optional[Token[Dict[str, Any]]] = None
        self.context: Dict[str, Any] = {}

    def __enter__(self) -> "LogContext":
        self.context = {**_log_context.get({}), **self._overrides}
        self.context.setdefault("correlation_id", uuid.uuid4().hex[:8])
        self._token = _log_context.set(self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None

    async def __aenter__(self) -> "LogContext":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)


def get_log_context() -> Dict[str, Any]:
    return dict(_log_context.get({}))


setup_logging()
