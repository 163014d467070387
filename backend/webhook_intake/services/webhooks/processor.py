"""Event processor contract and the default topic router.

The worker hands every claimed event to an `EventProcessor`. Processors must
be idempotent: at-least-once delivery plus retries means the same logical
event can arrive more than once (including as separate queue rows when the
platform re-sends a delivery).

`EventRouter` decodes the opaque payload into a typed `PlatformEvent` and
calls the handler registered for its topic. Topics with no handler are logged
and acknowledged, so unsupported deliveries do not pile up as retries.
"""

from __future__ import annotations

import importlib
import json
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from webhook_intake.core.logging import get_logger
from webhook_intake.schemas.platform_events import (
    KNOWN_TOPICS,
    PLATFORM_EVENT_ADAPTER,
    PlatformEvent,
    UnknownTopicEvent,
)
from webhook_intake.services.webhooks.exceptions import PayloadDecodeError

logger = get_logger(__name__)

EventHandler = Callable[[Any], Awaitable[None]]


@runtime_checkable
class EventProcessor(Protocol):
    """Business-side consumer of queued events."""

    async def process(self, topic: str, tenant: str, payload: bytes) -> None:
        """Apply one event; raise to request a retry."""
        ...


def decode_event(topic: str, tenant: str, payload: bytes) -> PlatformEvent | UnknownTopicEvent:
    """Parse raw payload bytes into the typed event for `topic`."""
    try:
        data = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise PayloadDecodeError(topic, f"invalid JSON: {exc}") from exc
    if topic not in KNOWN_TOPICS:
        return UnknownTopicEvent(topic=topic, tenant=tenant, data=data)
    try:
        return PLATFORM_EVENT_ADAPTER.validate_python(
            {"topic": topic, "tenant": tenant, "data": data},
        )
    except ValidationError as exc:
        raise PayloadDecodeError(topic, f"{exc.error_count()} validation error(s)") from exc


class EventRouter:
    """Dispatches decoded events to per-topic handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}

    def register(self, topic: str, handler: EventHandler) -> None:
        self._handlers.setdefault(topic, []).append(handler)

    def handles(self, topic: str) -> bool:
        return bool(self._handlers.get(topic))

    async def process(self, topic: str, tenant: str, payload: bytes) -> None:
        event = decode_event(topic, tenant, payload)
        handlers = self._handlers.get(topic, [])
        if not handlers:
            level = "warning" if isinstance(event, UnknownTopicEvent) else "info"
            getattr(logger, level)(
                "webhook.processor.unhandled_topic",
                extra={"topic": topic, "tenant": tenant},
            )
            return
        for handler in handlers:
            await handler(event)


def build_default_processor() -> EventRouter:
    """Router with no business handlers; deployments register their own."""
    return EventRouter()


def load_processor(path: str) -> EventProcessor:
    """Resolve `module:factory` into a processor instance.

    `factory` may be a zero-argument callable returning a processor or an
    already-constructed processor object.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        msg = f"processor path must look like 'module:attribute', got {path!r}"
        raise ValueError(msg)
    target = getattr(importlib.import_module(module_name), attr)
    # Classes satisfy the protocol check structurally, so instantiate them.
    if isinstance(target, type) or not isinstance(target, EventProcessor):
        processor = target()
    else:
        processor = target
    if not isinstance(processor, EventProcessor):
        msg = f"{path!r} did not produce an object with an async process() method"
        raise TypeError(msg)
    return processor
