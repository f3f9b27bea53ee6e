"""JSON log lines tagged with the request id of the call being served."""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

CORRELATION_ID_CTX: ContextVar[str] = ContextVar("correlation_id", default="")

# Attributes copied from ``extra=`` onto the JSON line when present.
EXTRA_FIELDS = (
    "path",
    "method",
    "status_code",
    "client_ip",
    "user_agent",
    "error_code",
    "identifier",
    "subject",
    "route_class",
    "retry_after",
    "stack",
)

# uvicorn's access log duplicates ``request_completed``.
QUIET_LOGGERS = ("uvicorn.access",)


def mask_email(email: str) -> str:
    """Keep the first character and the domain of an address for log lines."""
    local, sep, domain = email.partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"


def _masked_identifier(value: str) -> str:
    kind, sep, rest = value.partition(":")
    if sep and kind == "email":
        return f"email:{mask_email(rest)}"
    return value


class CorrelationIdFilter(logging.Filter):
    """Stamp every record with the request id bound to the current context."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", ""):
            record.correlation_id = CORRELATION_ID_CTX.get()
        return True


class JsonLogFormatter(logging.Formatter):
    """Render a record as one JSON object; email identifiers are masked."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", "") or CORRELATION_ID_CTX.get(),
        }
        for name in EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is None or value == "":
                continue
            entry[name] = _masked_identifier(str(value)) if name == "identifier" else value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Route the root logger to stdout as JSON at ``level``."""
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(JsonLogFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.getLevelNamesMapping().get(level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def set_correlation_id(correlation_id: str) -> None:
    """Bind the request id for log lines emitted while serving this request."""
    CORRELATION_ID_CTX.set(correlation_id)
