"""Webhook verification, queueing, and queue-drain utilities.

Prefer importing from this package when used by other modules.
"""

from webhook_intake.services.webhooks.exceptions import (
    InvalidTransitionError,
    PayloadDecodeError,
    QueueStorageError,
)
from webhook_intake.services.webhooks.ingress import IngressResponse, WebhookIngress
from webhook_intake.services.webhooks.processor import (
    EventProcessor,
    EventRouter,
    load_processor,
)
from webhook_intake.services.webhooks.queue import FailureResult, QueuedEventStore
from webhook_intake.services.webhooks.retry import RetryScheduler, compute_backoff
from webhook_intake.services.webhooks.scheduler import bootstrap_queue_drain_schedule
from webhook_intake.services.webhooks.signature import sign, verify, verify_request
from webhook_intake.services.webhooks.worker import (
    BatchWorker,
    DrainSummary,
    ProcessingOutcome,
)

__all__ = [
    "BatchWorker",
    "DrainSummary",
    "EventProcessor",
    "EventRouter",
    "FailureResult",
    "IngressResponse",
    "InvalidTransitionError",
    "PayloadDecodeError",
    "ProcessingOutcome",
    "QueueStorageError",
    "QueuedEventStore",
    "RetryScheduler",
    "WebhookIngress",
    "bootstrap_queue_drain_schedule",
    "compute_backoff",
    "load_processor",
    "sign",
    "verify",
    "verify_request",
]
