"""Builds pipeline components from settings.

Entry points (FastAPI lifespan, CLI, rq jobs) construct each component once
and pass it along explicitly; nothing here caches instances.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from webhook_intake.services.webhooks.ingress import WebhookIngress
from webhook_intake.services.webhooks.processor import load_processor
from webhook_intake.services.webhooks.queue import QueuedEventStore
from webhook_intake.services.webhooks.retry import RetryScheduler
from webhook_intake.services.webhooks.worker import BatchWorker

if TYPE_CHECKING:
    from webhook_intake.core.config import Settings
    from webhook_intake.db.session import Database
    from webhook_intake.services.webhooks.processor import EventProcessor


def build_store(database: Database) -> QueuedEventStore:
    return QueuedEventStore(database.session_maker)


def build_retry_scheduler(settings: Settings) -> RetryScheduler:
    return RetryScheduler(
        base_delay=settings.webhook_backoff_base_seconds,
        max_delay=settings.webhook_backoff_max_seconds,
        jitter_ratio=settings.webhook_backoff_jitter_ratio,
        max_attempts=settings.webhook_max_attempts,
    )


def build_ingress(settings: Settings, store: QueuedEventStore) -> WebhookIngress:
    return WebhookIngress(
        store,
        settings.webhook_shared_secret,
        require_signature=settings.webhook_require_signature,
        budget_ms=settings.webhook_ingress_budget_ms,
    )


def build_worker(
    settings: Settings,
    store: QueuedEventStore,
    processor: EventProcessor | None = None,
) -> BatchWorker:
    return BatchWorker(
        store,
        processor if processor is not None else load_processor(settings.webhook_processor),
        build_retry_scheduler(settings),
        batch_size=settings.webhook_batch_size,
        item_delay=settings.webhook_item_delay_seconds,
        item_timeout=settings.webhook_item_timeout_seconds,
        idle_interval=settings.webhook_idle_poll_seconds,
        error_interval=settings.webhook_error_backoff_seconds,
        claim_timeout=settings.webhook_claim_timeout_seconds,
    )
