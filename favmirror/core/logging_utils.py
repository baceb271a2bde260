from __future__ import annotations

import datetime as dt
import json
import logging
import os
import sys
import uuid
from typing import Any

from loguru import logger as loguru_logger

UTC = dt.UTC

# Attributes every LogRecord carries; anything else came in through ``extra``.
_STANDARD_FIELDS = frozenset(
    {
        "args",
        "msg",
        "name",
        "levelno",
        "levelname",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "getMessage",
        "message",
    }
)

# Third-party loggers that are chatty at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore", "apscheduler", "apscheduler.scheduler", "peewee")


class EnhancedJsonFormatter(logging.Formatter):
    """JSON formatter that keeps sync counters and timings grouped."""

    def __init__(self, include_location: bool = True, include_process_info: bool = False):
        super().__init__()
        self.include_location = include_location
        self.include_process_info = include_process_info
        self.hostname = os.uname().nodename if hasattr(os, "uname") else "unknown"

    def format(self, record: logging.LogRecord) -> str:
        base: dict[str, Any] = {
            "timestamp": dt.datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "hostname": self.hostname,
        }

        if self.include_location:
            base.update(
                {
                    "module": record.module,
                    "function": record.funcName,
                    "line": record.lineno,
                }
            )

        if self.include_process_info:
            base.update(
                {
                    "process": record.process,
                    "thread": record.thread,
                    "thread_name": getattr(record, "threadName", "MainThread"),
                }
            )

        if record.exc_info:
            base["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        if record.stack_info:
            base["stack_trace"] = record.stack_info

        extra_fields: dict[str, Any] = {}
        counter_fields: dict[str, Any] = {}

        for key, value in record.__dict__.items():
            if key.startswith("_") or key in _STANDARD_FIELDS or key in base:
                continue
            if key in (
                "items_created",
                "items_updated",
                "categories_created",
                "unchanged",
                "synced",
                "skipped",
                "failed",
                "duration",
                "duration_seconds",
            ):
                counter_fields[key] = value
            elif key in ("correlation_id", "cid"):
                base["correlation_id"] = value
            else:
                extra_fields[key] = value

        if counter_fields:
            base["counters"] = counter_fields
        if extra_fields:
            base["extra"] = extra_fields

        return json.dumps(
            base, ensure_ascii=False, default=self._json_serializer, separators=(",", ":")
        )

    def _json_serializer(self, obj: Any) -> str:
        """Custom JSON serializer for non-standard types."""
        if isinstance(obj, (dt.datetime, dt.date)):
            return obj.isoformat()
        if hasattr(obj, "__dict__"):
            return f"<{obj.__class__.__name__}>"
        return str(obj)


class InterceptHandler(logging.Handler):
    """Bridge stdlib records (with their ``extra`` fields) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        level_to_use: int | str
        try:
            level_to_use = loguru_logger.level(record.levelname).name
        except ValueError:
            level_to_use = record.levelno

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if not key.startswith("_") and key not in _STANDARD_FIELDS
        }

        loguru_logger.bind(**extra).opt(depth=6, exception=record.exc_info).log(
            level_to_use, record.getMessage()
        )


def setup_json_logging(
    level: str = "INFO",
    *,
    use_loguru: bool = True,
    log_file: str | None = None,
    max_file_size: str = "50 MB",
    retention: str = "14 days",
) -> None:
    """Configure structured JSON logging for the whole process.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_loguru: Route stdlib logging through loguru sinks
        log_file: Optional log file path for persistent logging
        max_file_size: Rotation size for the loguru file sink
        retention: Retention period for rotated loguru files
    """
    lvl = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(lvl)

    if use_loguru:
        loguru_logger.remove()
        loguru_logger.add(
            sys.stdout,
            level=level.upper(),
            serialize=True,
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )
        if log_file:
            loguru_logger.add(
                log_file,
                level=level.upper(),
                serialize=True,
                rotation=max_file_size,
                retention=retention,
                compression="gz",
                enqueue=True,
            )
        root.addHandler(InterceptHandler())
    else:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(EnhancedJsonFormatter())
        root.addHandler(console_handler)

        if log_file:
            from logging.handlers import RotatingFileHandler

            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=50 * 1024 * 1024,
                backupCount=5,
            )
            file_handler.setFormatter(EnhancedJsonFormatter())
            root.addHandler(file_handler)

    for noisy_logger in _NOISY_LOGGERS:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "logging_initialized",
        extra={"level": level, "use_loguru": use_loguru, "log_file": log_file},
    )


def generate_correlation_id() -> str:
    """Generate a short correlation ID for tracing one sync tick across logs."""
    return uuid.uuid4().hex[:12]


def truncate_log_content(content: str | None, max_length: int = 500) -> str | None:
    """Truncate response bodies before they go into log records."""
    if not content:
        return content
    if len(content) <= max_length:
        return content
    return content[:max_length] + "... [truncated]"


__all__ = [
    "EnhancedJsonFormatter",
    "InterceptHandler",
    "generate_correlation_id",
    "setup_json_logging",
    "truncate_log_content",
]
