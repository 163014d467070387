"""Recurring queue-drain schedule on rq-scheduler.

Run once at container start (`webhook-queue schedule`). Registration is
idempotent: an existing job with the same id is cancelled and re-created, so
redeploys with a new interval do not leave duplicate schedules behind.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from redis import Redis
from rq_scheduler import Scheduler  # type: ignore[import-untyped]

from webhook_intake.core.logging import get_logger
from webhook_intake.services.webhooks.jobs import run_queue_drain_job, run_queue_purge_job

if TYPE_CHECKING:
    from webhook_intake.core.config import Settings

logger = get_logger(__name__)

PURGE_INTERVAL_SECONDS = 24 * 60 * 60
FIRST_RUN_DELAY = timedelta(seconds=5)


def _purge_schedule_id(config: Settings) -> str:
    return f"{config.webhook_drain_schedule_id}-purge"


def _replace_job(scheduler: Scheduler, job_id: str) -> None:
    for job in scheduler.get_jobs():
        if job.id == job_id:
            scheduler.cancel(job)


def bootstrap_queue_drain_schedule(
    config: Settings,
    interval_seconds: int | None = None,
    *,
    max_attempts: int = 5,
    retry_sleep_seconds: float = 1.0,
    include_purge: bool = True,
) -> None:
    """Register the recurring drain job (and the daily purge job).

    Redis connectivity is retried with linear backoff so the bootstrap
    survives containers starting in any order.
    """
    effective_interval_seconds = (
        config.webhook_drain_schedule_interval_seconds
        if interval_seconds is None
        else interval_seconds
    )

    last_exc: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            connection = Redis.from_url(config.webhook_redis_url)
            connection.ping()
            scheduler = Scheduler(
                queue_name=config.webhook_queue_name,
                connection=connection,
            )
            first_run = datetime.now(tz=UTC) + FIRST_RUN_DELAY

            _replace_job(scheduler, config.webhook_drain_schedule_id)
            scheduler.schedule(
                first_run,
                func=run_queue_drain_job,
                interval=effective_interval_seconds,
                repeat=None,
                id=config.webhook_drain_schedule_id,
                queue_name=config.webhook_queue_name,
            )
            if include_purge:
                _replace_job(scheduler, _purge_schedule_id(config))
                scheduler.schedule(
                    first_run,
                    func=run_queue_purge_job,
                    interval=PURGE_INTERVAL_SECONDS,
                    repeat=None,
                    id=_purge_schedule_id(config),
                    queue_name=config.webhook_queue_name,
                )
            logger.info(
                "webhook.scheduler.bootstrapped",
                extra={
                    "schedule_id": config.webhook_drain_schedule_id,
                    "queue_name": config.webhook_queue_name,
                    "interval_seconds": effective_interval_seconds,
                    "purge_scheduled": include_purge,
                },
            )
            return
        except Exception as exc:
            last_exc = exc
            logger.warning(
                "webhook.scheduler.bootstrap_failed",
                extra={
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "error": str(exc),
                },
            )
            if attempt < max_attempts:
                time.sleep(retry_sleep_seconds * attempt)

    raise RuntimeError("Failed to bootstrap webhook queue drain schedule") from last_exc
