"""Batch worker that drains the event queue.

Events are handled one at a time in FIFO order with a short pause between
items, to stay within downstream rate limits. A failing event never affects
its siblings: the processor call is turned into a `ProcessingOutcome` and
the worker decides the state transition from that value.

Two modes:
- `drain_once()`: one pending batch and one retry batch, then a summary
  (cron / rq job / HTTP trigger).
- `run_forever()`: poll continuously, sleeping when idle and backing off
  after unexpected errors instead of exiting.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from webhook_intake.core.logging import get_logger
from webhook_intake.services.webhooks.exceptions import (
    InvalidTransitionError,
    QueueStorageError,
)

if TYPE_CHECKING:
    from webhook_intake.models.queued_events import QueuedEvent
    from webhook_intake.services.webhooks.processor import EventProcessor
    from webhook_intake.services.webhooks.queue import QueuedEventStore
    from webhook_intake.services.webhooks.retry import RetryScheduler

logger = get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class ProcessingOutcome:
    """Result of one processor invocation."""

    succeeded: bool
    error: str | None = None

    @classmethod
    def ok(cls) -> ProcessingOutcome:
        return cls(succeeded=True)

    @classmethod
    def failure(cls, error: str) -> ProcessingOutcome:
        return cls(succeeded=False, error=error)


@dataclass
class DrainSummary:
    """Counts for one batch or drain run."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0

    def record(self, result: bool | None) -> None:
        if result is None:
            self.skipped += 1
            return
        self.processed += 1
        if result:
            self.succeeded += 1
        else:
            self.failed += 1

    def merge(self, other: DrainSummary) -> DrainSummary:
        return DrainSummary(
            processed=self.processed + other.processed,
            succeeded=self.succeeded + other.succeeded,
            failed=self.failed + other.failed,
            skipped=self.skipped + other.skipped,
        )

    def as_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
        }


def _describe_error(exc: BaseException) -> str:
    text = str(exc).strip()
    name = type(exc).__name__
    return f"{name}: {text}" if text else name


class BatchWorker:
    """Pulls due events from the store and runs them through the processor."""

    def __init__(
        self,
        store: QueuedEventStore,
        processor: EventProcessor,
        scheduler: RetryScheduler,
        *,
        batch_size: int = 10,
        item_delay: float = 0.1,
        item_timeout: float = 30.0,
        idle_interval: float = 5.0,
        error_interval: float = 10.0,
        claim_timeout: float = 300.0,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.store = store
        self.processor = processor
        self.scheduler = scheduler
        self.batch_size = batch_size
        self.item_delay = item_delay
        self.item_timeout = item_timeout
        self.idle_interval = idle_interval
        self.error_interval = error_interval
        self.claim_timeout = claim_timeout
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self.scheduler.max_attempts

    async def _invoke(self, event: QueuedEvent) -> ProcessingOutcome:
        try:
            await asyncio.wait_for(
                self.processor.process(event.topic, event.tenant, event.payload),
                timeout=self.item_timeout,
            )
        except TimeoutError:
            return ProcessingOutcome.failure(
                f"processing timed out after {self.item_timeout:g}s",
            )
        except Exception as exc:
            logger.warning(
                "webhook.worker.processor_error",
                exc_info=exc,
                extra={"event_id": event.id, "topic": event.topic},
            )
            return ProcessingOutcome.failure(_describe_error(exc))
        return ProcessingOutcome.ok()

    async def process_event(self, event: QueuedEvent) -> bool | None:
        """Run one event through claim, process, and outcome recording.

        Returns True on success, False on failure, and None when another
        worker claimed the event first.
        """
        event_id = event.id
        if event_id is None:
            msg = "cannot process an event without an id"
            raise ValueError(msg)
        claimed = await self.store.mark_processing(event_id)
        if claimed is None:
            return None
        logger.info(
            "webhook.worker.processing",
            extra={
                "event_id": claimed.id,
                "topic": claimed.topic,
                "attempt": claimed.attempts,
                "max_attempts": self.max_attempts,
            },
        )

        outcome = await self._invoke(claimed)
        try:
            if outcome.succeeded:
                await self.store.mark_completed(event_id)
                logger.info("webhook.worker.completed", extra={"event_id": event_id})
                return True
            return await self._record_failure(
                event_id,
                claimed,
                outcome.error or "unknown error",
            )
        except InvalidTransitionError:
            # The claim was released underneath us (stale-claim sweep); the
            # event is already back in the failure path.
            logger.warning("webhook.worker.claim_lost", extra={"event_id": event_id})
            return False
        except QueueStorageError as exc:
            # Left in processing; the stale-claim sweep returns it to the queue.
            logger.error(
                "webhook.worker.outcome_not_recorded",
                exc_info=exc,
                extra={"event_id": event_id, "succeeded": outcome.succeeded},
            )
            return False

    async def _record_failure(self, event_id: int, event: QueuedEvent, error: str) -> bool:
        retry_delay = (
            self.scheduler.backoff(event.attempts)
            if self.scheduler.should_retry(event.attempts)
            else timedelta(0)
        )
        result = await self.store.mark_failed(
            event_id,
            error,
            self.max_attempts,
            retry_delay=retry_delay,
        )
        if result.should_retry:
            logger.info(
                "webhook.worker.retry_scheduled",
                extra={
                    "event_id": event_id,
                    "attempts": result.attempts,
                    "max_attempts": self.max_attempts,
                    "retry_in_seconds": round(retry_delay.total_seconds(), 3),
                    "error": error,
                },
            )
        else:
            logger.error(
                "webhook.worker.retries_exhausted",
                extra={
                    "event_id": event_id,
                    "topic": event.topic,
                    "tenant": event.tenant,
                    "attempts": result.attempts,
                    "error": error,
                },
            )
        return False

    async def process_batch(self, events: list[QueuedEvent]) -> DrainSummary:
        summary = DrainSummary()
        for index, event in enumerate(events):
            summary.record(await self.process_event(event))
            if self.item_delay and index < len(events) - 1:
                await self._sleep(self.item_delay)
        return summary

    async def _release_stale_claims(self) -> None:
        if self.claim_timeout <= 0:
            return
        await self.store.release_stale_claims(
            timedelta(seconds=self.claim_timeout),
            self.max_attempts,
        )

    async def drain_once(self) -> DrainSummary:
        """Process one pending batch and one retry batch."""
        await self._release_stale_claims()
        pending = await self.store.fetch_pending(self.batch_size)
        summary = await self.process_batch(pending)
        retries = await self.store.fetch_due_retries(self.batch_size, self.max_attempts)
        summary = summary.merge(await self.process_batch(retries))
        logger.info("webhook.worker.drain_complete", extra=summary.as_dict())
        return summary

    async def run_forever(self, stop_event: asyncio.Event | None = None) -> None:
        """Poll until `stop_event` is set; never exits on processing errors."""
        stop = stop_event or asyncio.Event()
        logger.info(
            "webhook.worker.started",
            extra={"batch_size": self.batch_size, "max_attempts": self.max_attempts},
        )
        while not stop.is_set():
            try:
                await self._release_stale_claims()
                events = await self.store.fetch_pending(self.batch_size)
                if not events:
                    events = await self.store.fetch_due_retries(
                        self.batch_size,
                        self.max_attempts,
                    )
                if events:
                    summary = await self.process_batch(events)
                    logger.info("webhook.worker.batch_complete", extra=summary.as_dict())
                    continue
                await self._sleep(self.idle_interval)
            except Exception:
                logger.exception("webhook.worker.loop_error")
                await self._sleep(self.error_interval)
        logger.info("webhook.worker.stopped")
