"""Structured key=value logging for pipeline runs and cache operations."""

import logging
import sys
from typing import Any

# Context fields promoted to top-level keys, in output order
CONTEXT_FIELDS = ("run_id", "book", "stage", "kind", "entity_id")


class StructuredFormatter(logging.Formatter):
    """Renders records as ``key=value`` pairs with run context first."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "module": record.module,
            "function": record.funcName,
        }

        context = dict(getattr(record, "context", {}) or {})
        for key in CONTEXT_FIELDS:
            if key in context:
                log_data[key] = context.pop(key)
        log_data["message"] = record.getMessage()
        log_data.update(context)

        line = " ".join(f"{k}={v}" for k, v in log_data.items())
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _level_for_env() -> int:
    try:
        from bookdigest.core.config import get_settings

        settings = get_settings()
    except Exception:
        # Settings can fail to validate before the environment is set up
        return logging.INFO
    return logging.DEBUG if settings.DIGEST_ENV == "dev" else logging.INFO


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger that writes structured lines to stdout.

    The handler is attached once per logger name, so repeated calls are cheap.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
        logger.setLevel(_level_for_env())

    return logger


def log_with_context(logger: logging.Logger, level: int, msg: str, **context: Any) -> None:
    """
    Log a message carrying pipeline context.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **context: Context fields such as run_id, book, kind, entity_id
    """
    logger.log(level, msg, extra={"context": context})
