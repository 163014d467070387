"""Logging setup with request-scoped context.

Log calls use dotted event names plus structured fields, e.g.
`logger.info("webhook.ingress.queued", extra={"event_id": 12})`. A filter
injects the current request id and route into every record so request logs
and queue logs can be correlated. Two output formats are supported: `text`
(key=value suffix) and `json` (one object per line).
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar, Token
from typing import Any, Final, TextIO

TRACE_LEVEL: Final[int] = 5
logging.addLevelName(TRACE_LEVEL, "TRACE")

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
_request_method_var: ContextVar[str | None] = ContextVar("request_method", default=None)
_request_path_var: ContextVar[str | None] = ContextVar("request_path", default=None)

# Attributes present on every LogRecord; anything else came in through `extra`.
_RESERVED_RECORD_ATTRS: Final[frozenset[str]] = frozenset(
    {
        *vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys(),
        "message",
        "asctime",
        "request_id",
        "request_method",
        "request_path",
    },
)

_HANDLER_NAME: Final[str] = "webhook_intake"


def get_logger(name: str) -> logging.Logger:
    """Return a stdlib logger; kept as a seam so call sites never import logging."""
    return logging.getLogger(name)


def set_request_id(request_id: str | None) -> Token[str | None]:
    return _request_id_var.set(request_id)


def reset_request_id(token: Token[str | None]) -> None:
    _request_id_var.reset(token)


def get_request_id() -> str | None:
    return _request_id_var.get()


def set_request_route_context(
    method: str,
    path: str,
) -> tuple[Token[str | None], Token[str | None]]:
    return _request_method_var.set(method), _request_path_var.set(path)


def reset_request_route_context(
    tokens: tuple[Token[str | None], Token[str | None]],
) -> None:
    method_token, path_token = tokens
    _request_path_var.reset(path_token)
    _request_method_var.reset(method_token)


class RequestContextFilter(logging.Filter):
    """Attach request id and route context to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id_var.get()
        record.request_method = _request_method_var.get()
        record.request_path = _request_path_var.get()
        return True


def _record_extras(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RESERVED_RECORD_ATTRS and not key.startswith("_")
    }


class KeyValueFormatter(logging.Formatter):
    """Human-readable formatter that appends structured extras as key=value."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        fields = _record_extras(record)
        request_id = getattr(record, "request_id", None)
        if request_id:
            fields = {"request_id": request_id, **fields}
        if not fields:
            return base
        suffix = " ".join(f"{key}={value!r}" for key, value in fields.items())
        return f"{base} {suffix}"


class JsonFormatter(logging.Formatter):
    """One JSON object per line, suitable for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        for key in ("request_id", "request_method", "request_path"):
            value = getattr(record, key, None)
            if value:
                payload[key] = value
        payload.update(_record_extras(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    *,
    stream: TextIO | None = None,
) -> None:
    """Install the project handler on the root logger (idempotent).

    Logs go to stdout unless `stream` is given.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        if handler.get_name() == _HANDLER_NAME:
            root.removeHandler(handler)

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.addFilter(RequestContextFilter())
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            KeyValueFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"),
        )
    root.addHandler(handler)

    normalized = level.strip().upper()
    root.setLevel(TRACE_LEVEL if normalized == "TRACE" else normalized)
