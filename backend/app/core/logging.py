"""
Structured JSON logging with request context.

Every log line carries the request id (and, inside a chat turn, the user id
and the provider config id) so one dispatch can be traced across the
dispatcher, the adapters and the stream normalizer.
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

# Context variables for request-scoped data
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
provider_id_var: ContextVar[str | None] = ContextVar("provider_id", default=None)

_PLAIN_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


class JSONFormatter(logging.Formatter):
    """Format log records as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        # request_id from record.extra OR from contextvar
        req_id = getattr(record, "request_id", None) or request_id_var.get()
        if req_id:
            log_data["request_id"] = req_id

        usr_id = user_id_var.get()
        if usr_id:
            log_data["user_id"] = usr_id

        prov_id = provider_id_var.get()
        if prov_id:
            log_data["provider_id"] = prov_id

        if hasattr(record, "extra_data"):
            log_data["data"] = record.extra_data

        # Exception type and message only, no traceback
        if record.exc_info and record.exc_info[1]:
            log_data["error"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else "Unknown",
                "message": str(record.exc_info[1]),
            }

        if record.levelno <= logging.DEBUG:
            log_data["source"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that accepts a ``data=`` keyword on every call."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = kwargs.get("extra", {})
        if "data" in kwargs:
            extra["extra_data"] = kwargs.pop("data")
            kwargs["extra"] = extra
        return msg, kwargs


def _formatter(json_output: bool) -> logging.Formatter:
    if json_output:
        return JSONFormatter()
    return logging.Formatter(_PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def setup_logging(level: str = "INFO", json_output: bool = True, log_file: str | None = None) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON; if False, output plain text
        log_file: Optional path of an additional log file
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Reload-safe: replace handlers instead of accumulating them.
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(_formatter(json_output))
    root_logger.addHandler(handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(_formatter(json_output))
        root_logger.addHandler(file_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> ContextLogger:
    """
    Get a context-aware logger.

    Args:
        name: Logger name (typically __name__)

    Returns:
        ContextLogger instance
    """
    return ContextLogger(logging.getLogger(name), {})


@contextmanager
def bind_context(var: ContextVar[str | None], value: Any) -> Iterator[None]:
    """Set a log context variable for the duration of the block."""
    token = var.set(str(value) if value is not None else None)
    try:
        yield
    finally:
        var.reset(token)
