"""Synchronous entry point for inbound webhook deliveries.

The platform gives each delivery a few seconds before treating it as failed
and re-sending, so the handler only verifies and enqueues. Business
processing happens later in the batch worker.

Status codes drive the sender's own retry policy:
- 401 when the signature (or topic/tenant) is missing or wrong; nothing is stored.
- 500 when the queue cannot persist the event, so the sender tries again.
- 200 once the event is durably queued, whatever happens to it afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from time import perf_counter
from typing import TYPE_CHECKING, Any

from webhook_intake.core.logging import get_logger
from webhook_intake.schemas.queued_events import IngressAccepted
from webhook_intake.services.webhooks.exceptions import QueueStorageError
from webhook_intake.services.webhooks.signature import verify_request

if TYPE_CHECKING:
    from webhook_intake.services.webhooks.queue import QueuedEventStore

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class IngressResponse:
    """Transport-neutral response for the HTTP adapter to render."""

    status_code: int
    content: dict[str, Any] = field(default_factory=dict)


class WebhookIngress:
    """Verifies deliveries and hands them to the durable queue."""

    def __init__(
        self,
        store: QueuedEventStore,
        shared_secret: bytes | str | None,
        *,
        require_signature: bool = True,
        budget_ms: int = 5000,
    ) -> None:
        self._store = store
        self._shared_secret = shared_secret
        self._require_signature = require_signature
        self._budget_ms = budget_ms
        if not require_signature:
            logger.warning("webhook.ingress.signature_check_disabled")
        elif not shared_secret:
            logger.error("webhook.ingress.secret_missing")

    async def handle(
        self,
        raw_body: bytes,
        signature_header: str | None,
        topic: str | None,
        tenant: str | None,
    ) -> IngressResponse:
        started_at = perf_counter()
        verification = verify_request(
            raw_body,
            signature_header,
            topic=topic,
            tenant=tenant,
            shared_secret=self._shared_secret,
            require_signature=self._require_signature,
        )
        if not verification.valid:
            logger.warning(
                "webhook.ingress.unauthenticated",
                extra={
                    "topic": verification.topic,
                    "tenant": verification.tenant,
                    "signature_present": bool(signature_header),
                },
            )
            return IngressResponse(401, {"detail": "Webhook signature verification failed"})

        try:
            event_id = await self._store.enqueue(
                verification.topic,
                verification.tenant,
                verification.payload,
            )
        except QueueStorageError:
            logger.exception(
                "webhook.ingress.enqueue_failed",
                extra={"topic": verification.topic, "tenant": verification.tenant},
            )
            return IngressResponse(500, {"detail": "Failed to queue webhook"})

        elapsed_ms = int((perf_counter() - started_at) * 1000)
        log_extra = {
            "event_id": event_id,
            "topic": verification.topic,
            "tenant": verification.tenant,
            "duration_ms": elapsed_ms,
        }
        if elapsed_ms >= self._budget_ms:
            logger.warning("webhook.ingress.over_budget", extra=log_extra)
        else:
            logger.info("webhook.ingress.queued", extra=log_extra)
        return IngressResponse(200, IngressAccepted(id=event_id).model_dump())
