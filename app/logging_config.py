"""Logging setup for the SparkLearn API.

Production writes one JSON object per line to stdout; other environments get
colored console lines. Log calls attach context through ``extra``:

    logger.info("History saved", extra={"user_id": user_id, "topic": topic})

Any of ``CONTEXT_FIELDS`` found on a record is emitted as its own JSON key
(or appended in brackets on console lines).
"""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from app.config import settings
from app.constants import DEFAULT_LOG_LEVEL

CONTEXT_FIELDS = ("user_id", "event_id", "topic", "difficulty", "request_id")

# Third-party loggers capped at WARNING
NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "httpx": logging.WARNING,
    "google_genai": logging.WARNING,
}

_HANDLER_NAME = "sparklearn"


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Context extras present on a record, in CONTEXT_FIELDS order."""
    return {
        field: getattr(record, field)
        for field in CONTEXT_FIELDS
        if getattr(record, field, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log shipping in production."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: Dict[str, Any] = {
            "timestamp": created.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(record_context(record))

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Console formatter: colored level name, context in brackets."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        # Work on a copy; other handlers see the original level name
        colored = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, self.RESET)
        colored.levelname = f"{color}{record.levelname}{self.RESET}"

        line = super().format(colored)
        context = record_context(record)
        if context:
            line += " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]"
        return line


def setup_logging(log_level: Optional[str] = None) -> None:
    """Install the stdout handler on the root logger.

    Args:
        log_level: Level name. None picks DEFAULT_LOG_LEVEL in production and
                   DEBUG elsewhere.

    Calling this again replaces the previously installed handler.
    """
    if log_level is None:
        log_level = DEFAULT_LOG_LEVEL if settings.is_production else "DEBUG"

    if settings.is_production:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = ColoredFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name, level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    logging.getLogger(__name__).info(
        f"Logging configured: level={log_level.upper()}, environment={settings.ENVIRONMENT}"
    )


def get_logger(name: str) -> logging.Logger:
    """Module logger; use with ``get_logger(__name__)``."""
    return logging.getLogger(name)
