"""Synchronous job entry points executed by rq workers.

rq calls plain functions, so each job opens its own event loop and database
engine, does one bounded unit of work, and disposes of the engine again.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

from webhook_intake.core.config import Settings, settings
from webhook_intake.core.logging import get_logger
from webhook_intake.db.session import Database
from webhook_intake.services.webhooks.factory import build_store, build_worker

logger = get_logger(__name__)


async def drain_queue(config: Settings) -> dict[str, int]:
    """One-shot drain: one pending batch plus one retry batch."""
    database = Database.from_url(config.database_url)
    try:
        worker = build_worker(config, build_store(database))
        summary = await worker.drain_once()
    finally:
        await database.dispose()
    return summary.as_dict()


async def purge_queue(config: Settings, *, older_than_days: int | None = None) -> int:
    """Delete terminal events older than the retention window."""
    days = older_than_days if older_than_days is not None else config.webhook_retention_days
    database = Database.from_url(config.database_url)
    try:
        return await build_store(database).purge_terminal(timedelta(days=days))
    finally:
        await database.dispose()


def run_queue_drain_job() -> dict[str, int]:
    """rq job: drain the queue once and return the counts."""
    result = asyncio.run(drain_queue(settings))
    logger.info("webhook.job.drain_finished", extra=result)
    return result


def run_queue_purge_job() -> int:
    """rq job: apply the retention window to terminal events."""
    deleted = asyncio.run(purge_queue(settings))
    logger.info("webhook.job.purge_finished", extra={"deleted": deleted})
    return deleted
