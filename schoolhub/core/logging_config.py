"""
Structured logging for the school backend.

Provides:
    • RequestContextFilter  — stamps request_id / domain / client_ip onto records
    • JSONFormatter         — one JSON object per line (prod)
    • ConsoleFormatter      — coloured single-line output (everything else)
    • setup_logging(config) — installs the handler for the resolved environment

Request context lives in a ContextVar, so concurrent requests on one event
loop never see each other's values. The middleware binds it, the filter
copies it onto each record, and the formatters only read record attributes.

Usage:
    from schoolhub.core.logging_config import setup_logging

    setup_logging(config)
    logger = logging.getLogger(__name__)
    logger.info("Cache MISS: %s", domain, extra={"domain": domain, "cache": "miss"})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Mapping

from schoolhub.core.config import Config

_request_context: ContextVar[Mapping[str, Any]] = ContextVar(
    "request_context", default={}
)

# Bound once per request by the middleware
CONTEXT_FIELDS = ("request_id", "client_ip", "method", "endpoint", "domain")

# Supplied per call through extra=
STRUCTURED_FIELDS = ("school_id", "cache", "duration_ms", "status_code")

_HANDLER_NAME = "schoolhub"
_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine", "aiosqlite")


def bind_request_context(**values: Any) -> None:
    _request_context.set(dict(values))


def clear_request_context() -> None:
    _request_context.set({})


def get_request_context() -> Dict[str, Any]:
    return dict(_request_context.get())


class RequestContextFilter(logging.Filter):
    """Copy the bound request context onto each record. Explicit extra= wins."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _request_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


# ── JSON (production) ──

class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in CONTEXT_FIELDS + STRUCTURED_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        if record.exc_info and record.exc_info[1]:
            entry["exc_type"] = type(record.exc_info[1]).__name__
            entry["exc"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


# ── Console (local / staging) ──

class ConsoleFormatter(logging.Formatter):
    """`12:00:01 INFO     [req-id school.example.com] logger: message`"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)

        tags = []
        request_id = getattr(record, "request_id", None)
        if request_id:
            tags.append(request_id[:8])
        domain = getattr(record, "domain", None)
        if domain:
            tags.append(domain)
        tag_str = f" [{' '.join(tags)}]" if tags else ""

        line = (
            f"{color}{self.formatTime(record, '%H:%M:%S')} {record.levelname:8s}{self.RESET}"
            f"{tag_str} {record.name}: {record.getMessage()}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# ── Setup ──

def setup_logging(config: Config) -> None:
    """
    Install the application handler on the root logger.

    Idempotent: a handler installed by an earlier call is replaced, handlers
    installed by anyone else are left alone.
    """
    level = logging.getLevelName((config.log_level or "INFO").upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(JSONFormatter() if config.is_production else ConsoleFormatter())
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    for existing in [h for h in root.handlers if h.get_name() == _HANDLER_NAME]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
