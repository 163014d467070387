"""Request-id middleware and exception handlers for the FastAPI app.

Every response carries an `X-Request-Id` header (client supplied or generated)
and every error body has the shape `{"detail": ..., "request_id": ...}`.

Webhook senders only look at the status code, so the handlers never leak
internals: queue storage failures and unhandled errors both collapse into a
generic 500 while the traceback goes to the log.
"""

from __future__ import annotations

from time import perf_counter
from typing import TYPE_CHECKING, Any, Final
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from webhook_intake.core.logging import (
    TRACE_LEVEL,
    get_logger,
    reset_request_id,
    reset_request_route_context,
    set_request_id,
    set_request_route_context,
)
from webhook_intake.services.webhooks.exceptions import QueueStorageError

if TYPE_CHECKING:  # pragma: no cover
    from starlette.responses import Response
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = get_logger(__name__)

REQUEST_ID_HEADER: Final[str] = "X-Request-Id"
_HEALTH_CHECK_PATHS: Final[frozenset[str]] = frozenset({"/health", "/healthz", "/readyz"})


class RequestIdMiddleware:
    """ASGI middleware that tags each request with an id and logs its outcome."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        header_name: str = REQUEST_ID_HEADER,
        slow_request_ms: int = 0,
        include_health_logs: bool = False,
    ) -> None:
        self._app = app
        self._header_name_bytes = header_name.lower().encode("latin-1")
        self._slow_request_ms = slow_request_ms
        self._include_health_logs = include_health_logs

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self._app(scope, receive, send)
            return

        method = str(scope.get("method") or "UNKNOWN").upper()
        path = str(scope.get("path") or "")
        should_log = self._include_health_logs or path not in _HEALTH_CHECK_PATHS
        started_at = perf_counter()
        status_code: int | None = None

        request_id = self._get_or_create_request_id(scope)
        id_token = set_request_id(request_id)
        route_tokens = set_request_route_context(method, path)
        if should_log:
            logger.log(TRACE_LEVEL, "http.request.start")

        async def send_with_request_id(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                headers: list[tuple[bytes, bytes]] = message.setdefault("headers", [])
                if not any(key.lower() == self._header_name_bytes for key, _ in headers):
                    headers.append((self._header_name_bytes, request_id.encode("latin-1")))
                status = message.get("status")
                status_code = status if isinstance(status, int) else 500
                if should_log:
                    self._log_completion(status_code, started_at)
            await send(message)

        try:
            await self._app(scope, receive, send_with_request_id)
        finally:
            if should_log and status_code is None:
                logger.warning(
                    "http.request.incomplete",
                    extra={"duration_ms": int((perf_counter() - started_at) * 1000)},
                )
            reset_request_route_context(route_tokens)
            reset_request_id(id_token)

    def _log_completion(self, status_code: int, started_at: float) -> None:
        duration_ms = int((perf_counter() - started_at) * 1000)
        extra = {"status_code": status_code, "duration_ms": duration_ms}
        if status_code >= 500:
            logger.error("http.request.complete", extra=extra)
        elif status_code >= 400:
            logger.warning("http.request.complete", extra=extra)
        else:
            logger.debug("http.request.complete", extra=extra)
        if self._slow_request_ms and duration_ms >= self._slow_request_ms:
            logger.warning(
                "http.request.slow",
                extra={**extra, "slow_threshold_ms": self._slow_request_ms},
            )

    def _get_or_create_request_id(self, scope: Scope) -> str:
        request_id: str | None = None
        for key, value in scope.get("headers", []):
            if key.lower() == self._header_name_bytes:
                candidate = value.decode("latin-1").strip()
                if candidate:
                    request_id = candidate
                break
        if request_id is None:
            request_id = uuid4().hex
        # `Request.state` is backed by `scope["state"]`.
        scope.setdefault("state", {})["request_id"] = request_id
        return request_id


def install_error_handling(
    app: FastAPI,
    *,
    slow_request_ms: int = 0,
    include_health_logs: bool = False,
) -> None:
    """Install the request-id middleware and exception handlers on `app`."""
    # Added last so it is the outermost middleware and runs even when an inner
    # middleware answers early.
    app.add_middleware(
        RequestIdMiddleware,
        slow_request_ms=slow_request_ms,
        include_health_logs=include_health_logs,
    )
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(QueueStorageError, _queue_storage_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)


def _get_request_id(request: Request) -> str | None:
    request_id = getattr(request.state, "request_id", None)
    if isinstance(request_id, str) and request_id:
        return request_id
    return None


def error_payload(*, detail: object, request_id: str | None) -> dict[str, object]:
    """Build the stable error body shape used by every non-2xx response."""
    payload: dict[str, Any] = {"detail": _json_safe(detail)}
    if request_id:
        payload["request_id"] = request_id
    return payload


def _json_safe(value: object) -> object:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, dict):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(item) for item in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


async def _request_validation_handler(request: Request, exc: Exception) -> Response:
    if not isinstance(exc, RequestValidationError):
        msg = "Expected RequestValidationError"
        raise TypeError(msg)
    return JSONResponse(
        status_code=422,
        content=error_payload(detail=exc.errors(), request_id=_get_request_id(request)),
    )


async def _http_exception_handler(request: Request, exc: Exception) -> Response:
    if not isinstance(exc, StarletteHTTPException):
        msg = "Expected StarletteHTTPException"
        raise TypeError(msg)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(detail=exc.detail, request_id=_get_request_id(request)),
        headers=exc.headers,
    )


async def _queue_storage_handler(request: Request, exc: Exception) -> Response:
    request_id = _get_request_id(request)
    logger.error(
        "queue.storage_error",
        exc_info=exc,
        extra={"operation": getattr(exc, "operation", None)},
    )
    return JSONResponse(
        status_code=500,
        content=error_payload(detail="Event queue unavailable", request_id=request_id),
    )


async def _unhandled_exception_handler(request: Request, exc: Exception) -> Response:
    request_id = _get_request_id(request)
    logger.error("unhandled_exception", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=error_payload(detail="Internal Server Error", request_id=request_id),
        headers={REQUEST_ID_HEADER: request_id} if request_id else None,
    )
