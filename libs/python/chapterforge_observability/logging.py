"""JSON logging configuration shared by Chapter Forge services."""

from __future__ import annotations

import json
import logging
import logging.config
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator


_LOG_CONTEXT: ContextVar[Dict[str, Any]] = ContextVar("chapterforge_log_context", default={})
_CONFIGURED: ContextVar[bool] = ContextVar("chapterforge_log_configured", default=False)

LOG_LEVEL_ENV_VAR = "CHAPTERFORGE_LOG_LEVEL"
CAPTURE_WARNINGS_ENV_VAR = "CHAPTERFORGE_CAPTURE_WARNINGS"


class ContextFilter(logging.Filter):
    """Copy fields bound with :func:`log_context` onto each record."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401 - inherited docstring
        context = _LOG_CONTEXT.get()
        if context:
            record.observability_context = context
            for key, value in context.items():
                setattr(record, key, value)
        if getattr(record, "service", None) is None:
            record.service = self.service_name
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record, scheduler fields first."""

    _RESERVED = {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
        "observability_context",
    }

    _WHITELIST = {
        "service",
        "tick_id",
        "project_id",
        "tier",
        "chapter",
        "provider",
        "route",
        "method",
        "status_code",
        "prompt_tokens",
        "completion_tokens",
        "latency_ms",
        "duration_ms",
    }

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - inherited docstring
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "observability_context", {})
        if isinstance(context, dict):
            for key, value in context.items():
                if value is not None:
                    payload.setdefault(key, value)

        for key in self._WHITELIST:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value

        for key, value in record.__dict__.items():
            if key in self._RESERVED or key in payload or key.startswith("_"):
                continue
            if self._is_json_safe(value):
                payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)
        return json.dumps(payload, ensure_ascii=False)

    @staticmethod
    def _is_json_safe(value: Any) -> bool:
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            return False
        return True


def setup_logging(
    service_name: str,
    level: str | int | None = None,
    *,
    capture_warnings: bool | None = None,
) -> None:
    """Configure JSON logging for the current process.

    Safe to call more than once; later calls replace the handler configuration
    and adjust the level. ``level`` defaults to ``CHAPTERFORGE_LOG_LEVEL`` or
    ``INFO``.
    """

    if level is None:
        level = os.getenv(LOG_LEVEL_ENV_VAR, "INFO").upper()

    handlers = ["default"]
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": "chapterforge_observability.logging.JsonFormatter",
            }
        },
        "filters": {
            "context": {
                "()": "chapterforge_observability.logging.ContextFilter",
                "service_name": service_name,
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "stream": sys.stdout,
                "formatter": "json",
                "filters": ["context"],
            }
        },
        "root": {
            "level": level,
            "handlers": handlers,
        },
        "loggers": {
            "uvicorn": {"handlers": handlers, "level": level, "propagate": False},
            "uvicorn.error": {"handlers": handlers, "level": level, "propagate": False},
            "uvicorn.access": {"handlers": handlers, "level": level, "propagate": False},
            "httpx": {"handlers": handlers, "level": "WARNING", "propagate": False},
        },
    }

    logging.config.dictConfig(config)

    if capture_warnings is None:
        capture_env = os.getenv(CAPTURE_WARNINGS_ENV_VAR)
        capture = (
            capture_env.lower() in {"1", "true", "t", "yes", "y"}
            if capture_env
            else False
        )
    else:
        capture = capture_warnings

    if capture:
        logging.captureWarnings(True)

    if not _CONFIGURED.get():
        _CONFIGURED.set(True)


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Bind fields to every record logged inside the block.

    Passing ``None`` for a key removes it from the inherited context.
    """

    current = _LOG_CONTEXT.get()
    updated = dict(current)
    for key, value in kwargs.items():
        if value is None:
            updated.pop(key, None)
        else:
            updated[key] = value
    token = _LOG_CONTEXT.set(updated)
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


def current_log_context() -> Dict[str, Any]:
    """Return a copy of the fields currently bound by :func:`log_context`."""

    return dict(_LOG_CONTEXT.get())
