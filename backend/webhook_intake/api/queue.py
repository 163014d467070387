"""Queue administration endpoints (cron-over-HTTP drain and stats)."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from webhook_intake.api.deps import SETTINGS_DEP, get_store, get_worker, require_queue_admin
from webhook_intake.core.config import Settings
from webhook_intake.core.logging import get_logger
from webhook_intake.core.time import utcnow
from webhook_intake.schemas.queued_events import DrainSummaryRead, QueueStats
from webhook_intake.services.webhooks.queue import QueuedEventStore
from webhook_intake.services.webhooks.worker import BatchWorker

logger = get_logger(__name__)

router = APIRouter(
    prefix="/queue",
    tags=["queue"],
    dependencies=[Depends(require_queue_admin)],
)
STORE_DEP = Depends(get_store)
WORKER_DEP = Depends(get_worker)


@router.post("/drain", response_model=DrainSummaryRead)
async def drain_queue(worker: BatchWorker = WORKER_DEP) -> DrainSummaryRead:
    """Process one pending batch and one retry batch, then report counts."""
    logger.info("webhook.queue.drain_triggered")
    summary = await worker.drain_once()
    return DrainSummaryRead(**summary.as_dict(), finished_at=utcnow())


@router.get("/stats", response_model=QueueStats)
async def queue_stats(
    store: QueuedEventStore = STORE_DEP,
    config: Settings = SETTINGS_DEP,
) -> QueueStats:
    """Event counts per state, including exhausted (dead-letter) events."""
    return await store.count_by_status(config.webhook_max_attempts)
