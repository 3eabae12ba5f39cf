from __future__ import annotations

import contextvars
import json
import logging
import sys
from typing import Any

_request_id_ctx_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)
_username_ctx_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "username", default=None
)

_STANDARD_ATTRIBUTES = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
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
        "message",
    }
)


class RequestContextFilter(logging.Filter):
    """Inject request scoped context variables into log records."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - simple
        record.request_id = _request_id_ctx_var.get()
        record.username = _username_ctx_var.get()
        return True


class JSONLogFormatter(logging.Formatter):
    """Serialize log records as JSON with context metadata."""

    def __init__(self) -> None:  # pragma: no cover - trivial
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": record.__dict__.get("request_id"),
            "username": record.__dict__.get("username"),
        }

        for key, value in record.__dict__.items():
            if key in ("request_id", "username"):
                continue
            if key.startswith("_") or key in _STANDARD_ATTRIBUTES:
                continue
            log_entry[key] = value

        if record.exc_info:
            log_entry["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


_configured = False


def configure_logging(level: int = logging.INFO) -> None:
    """Configure the root logger for structured JSON output."""

    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONLogFormatter())
    handler.addFilter(RequestContextFilter())

    root_logger = logging.getLogger()
    root_logger.handlers = []
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access", "httpx"):
        logger = logging.getLogger(logger_name)
        logger.handlers = []
        logger.propagate = True

    _configured = True


def set_user_context(username: str | None) -> None:
    """Bind the signed-in username to the current logging context."""

    _username_ctx_var.set(username or None)


def get_current_user() -> str:
    """Return the username bound to the current context."""

    username = _username_ctx_var.get()
    return username or "anonymous"


__all__ = [
    "configure_logging",
    "get_current_user",
    "set_user_context",
    "_request_id_ctx_var",
    "_username_ctx_var",
]
