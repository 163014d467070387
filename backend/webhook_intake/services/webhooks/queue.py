"""Durable webhook event queue backed by the `queued_events` table.

Every state transition is a single UPDATE guarded on the current `status`
(compare-and-swap), so several worker replicas can share one table without
distributed locks:

    pending --mark_processing--> processing
    processing --mark_completed--> completed
    processing --mark_failed--> pending   (attempts < max, scheduled retry)
    processing --mark_failed--> failed    (attempts >= max, terminal)
    failed (attempts < max) --fetch_due_retries--> pending

The store never inspects payloads and never deduplicates them; repeated
deliveries become separate rows and idempotency is the processor's job.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Final, TypeVar

from sqlalchemy import DateTime, and_, case, literal, null, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col, select

from webhook_intake.core.logging import get_logger
from webhook_intake.core.time import utcnow
from webhook_intake.db import crud
from webhook_intake.models.queued_events import QueuedEvent, QueuedEventStatus
from webhook_intake.schemas.queued_events import QueueStats
from webhook_intake.services.webhooks.exceptions import (
    InvalidTransitionError,
    QueueStorageError,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import async_sessionmaker
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)

PENDING: Final[str] = QueuedEventStatus.PENDING.value
PROCESSING: Final[str] = QueuedEventStatus.PROCESSING.value
COMPLETED: Final[str] = QueuedEventStatus.COMPLETED.value
FAILED: Final[str] = QueuedEventStatus.FAILED.value

MAX_ERROR_LENGTH: Final[int] = 2000
STALE_CLAIM_ERROR: Final[str] = "claim expired before the event finished processing"

ResultT = TypeVar("ResultT")


@dataclass(frozen=True, slots=True)
class FailureResult:
    """What `mark_failed` decided for an event."""

    should_retry: bool
    attempts: int
    status: str
    next_attempt_at: datetime | None


def _truncate_error(message: str) -> str:
    if len(message) <= MAX_ERROR_LENGTH:
        return message
    return f"{message[: MAX_ERROR_LENGTH - 3]}..."


def _retry_ready(max_attempts: int) -> Any:
    return col(QueuedEvent.attempts) < max_attempts


class QueuedEventStore:
    """Owns all reads and mutations of queued events."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_maker = session_maker
        self._clock = clock

    async def _run(
        self,
        operation: str,
        func: Callable[[AsyncSession], Awaitable[ResultT]],
    ) -> ResultT:
        async with self._session_maker() as session:
            try:
                return await func(session)
            except SQLAlchemyError as exc:
                logger.warning(
                    "queue.storage_error",
                    extra={"operation": operation, "error": str(exc)},
                )
                raise QueueStorageError(operation) from exc

    async def enqueue(self, topic: str, tenant: str, payload: bytes) -> int:
        """Append a new pending event and return its id."""
        now = self._clock()

        async def _insert(session: AsyncSession) -> int:
            event = await crud.create(
                session,
                QueuedEvent,
                topic=topic,
                tenant=tenant,
                payload=payload,
                status=PENDING,
                attempts=0,
                created_at=now,
                updated_at=now,
            )
            if event.id is None:  # pragma: no cover - autoincrement always assigns
                raise QueueStorageError("enqueue", "database did not assign an id")
            return event.id

        event_id = await self._run("enqueue", _insert)
        logger.info(
            "queue.enqueued",
            extra={"event_id": event_id, "topic": topic, "tenant": tenant},
        )
        return event_id

    async def get(self, event_id: int) -> QueuedEvent | None:
        async def _get(session: AsyncSession) -> QueuedEvent | None:
            return await crud.get_by_id(session, QueuedEvent, event_id)

        return await self._run("get", _get)

    async def fetch_pending(self, limit: int) -> list[QueuedEvent]:
        """Return up to `limit` oldest fresh pending events (FIFO, no locks).

        Events waiting out a retry backoff are left to `fetch_due_retries`.
        """
        if limit <= 0:
            return []

        async def _fetch(session: AsyncSession) -> list[QueuedEvent]:
            return await crud.list_where(
                session,
                QueuedEvent,
                col(QueuedEvent.status) == PENDING,
                col(QueuedEvent.next_attempt_at).is_(None),
                order_by=(col(QueuedEvent.created_at), col(QueuedEvent.id)),
                limit=limit,
            )

        return await self._run("fetch_pending", _fetch)

    async def fetch_due_retries(self, limit: int, max_attempts: int) -> list[QueuedEvent]:
        """Claim up to `limit` oldest events that are due for another attempt.

        Due means `failed` with attempts to spare, or `pending` with an elapsed
        backoff. Selection and the flip back to fresh `pending` happen in one
        statement; the repeated `due` guard on the outer UPDATE means a row
        claimed by a concurrent caller no longer matches and is not returned
        twice.
        """
        if limit <= 0:
            return []
        now = self._clock()
        due = or_(
            and_(col(QueuedEvent.status) == FAILED, _retry_ready(max_attempts)),
            and_(
                col(QueuedEvent.status) == PENDING,
                col(QueuedEvent.next_attempt_at).is_not(None),
                col(QueuedEvent.next_attempt_at) <= now,
            ),
        )
        candidates = (
            select(QueuedEvent.id)
            .where(due)
            .order_by(col(QueuedEvent.created_at), col(QueuedEvent.id))
            .limit(limit)
            .with_for_update(skip_locked=True)
            .correlate(None)
        )

        async def _claim(session: AsyncSession) -> list[QueuedEvent]:
            return await crud.update_returning(
                session,
                QueuedEvent,
                col(QueuedEvent.id).in_(candidates),
                due,
                values={"status": PENDING, "next_attempt_at": None, "updated_at": now},
            )

        claimed = await self._run("fetch_due_retries", _claim)
        claimed.sort(key=lambda event: (event.created_at, event.id or 0))
        if claimed:
            logger.info(
                "queue.retries_claimed",
                extra={"count": len(claimed), "event_ids": [e.id for e in claimed]},
            )
        return claimed

    async def mark_processing(self, event_id: int) -> QueuedEvent | None:
        """Claim a pending event for processing and count the attempt.

        Returns None when the event is no longer pending (another worker won
        the race), in which case the caller must leave it alone.
        """
        now = self._clock()

        async def _claim(session: AsyncSession) -> list[QueuedEvent]:
            return await crud.update_returning(
                session,
                QueuedEvent,
                col(QueuedEvent.id) == event_id,
                col(QueuedEvent.status) == PENDING,
                values={
                    "status": PROCESSING,
                    "attempts": col(QueuedEvent.attempts) + 1,
                    "next_attempt_at": None,
                    "updated_at": now,
                },
            )

        rows = await self._run("mark_processing", _claim)
        if not rows:
            logger.info("queue.claim_conflict", extra={"event_id": event_id})
            return None
        return rows[0]

    async def mark_completed(self, event_id: int) -> QueuedEvent:
        now = self._clock()

        async def _complete(session: AsyncSession) -> list[QueuedEvent]:
            return await crud.update_returning(
                session,
                QueuedEvent,
                col(QueuedEvent.id) == event_id,
                col(QueuedEvent.status) == PROCESSING,
                values={"status": COMPLETED, "processed_at": now, "updated_at": now},
            )

        rows = await self._run("mark_completed", _complete)
        if not rows:
            raise InvalidTransitionError(event_id, PROCESSING, COMPLETED)
        return rows[0]

    async def mark_failed(
        self,
        event_id: int,
        error_message: str,
        max_attempts: int,
        *,
        retry_delay: timedelta = timedelta(0),
    ) -> FailureResult:
        """Record a failed attempt and either schedule a retry or give up.

        The retry-or-terminal decision is evaluated by the database against the
        row's own `attempts` inside the same guarded UPDATE.
        """
        now = self._clock()
        retry_at = now + retry_delay
        can_retry = _retry_ready(max_attempts)

        async def _fail(session: AsyncSession) -> list[QueuedEvent]:
            return await crud.update_returning(
                session,
                QueuedEvent,
                col(QueuedEvent.id) == event_id,
                col(QueuedEvent.status) == PROCESSING,
                values={
                    "status": case((can_retry, PENDING), else_=FAILED),
                    "next_attempt_at": case(
                        (can_retry, literal(retry_at, DateTime())),
                        else_=null(),
                    ),
                    "processed_at": case(
                        (can_retry, null()),
                        else_=literal(now, DateTime()),
                    ),
                    "last_error": _truncate_error(error_message),
                    "updated_at": now,
                },
            )

        rows = await self._run("mark_failed", _fail)
        if not rows:
            raise InvalidTransitionError(event_id, PROCESSING, "pending/failed")
        event = rows[0]
        return FailureResult(
            should_retry=event.status == PENDING,
            attempts=event.attempts,
            status=event.status,
            next_attempt_at=event.next_attempt_at,
        )

    async def release_stale_claims(self, stale_after: timedelta, max_attempts: int) -> int:
        """Send events stuck in `processing` (crashed worker) through the failure path."""
        now = self._clock()
        cutoff = now - stale_after
        can_retry = _retry_ready(max_attempts)

        async def _release(session: AsyncSession) -> list[QueuedEvent]:
            return await crud.update_returning(
                session,
                QueuedEvent,
                col(QueuedEvent.status) == PROCESSING,
                col(QueuedEvent.updated_at) < cutoff,
                values={
                    "status": case((can_retry, PENDING), else_=FAILED),
                    "next_attempt_at": null(),
                    "processed_at": case(
                        (can_retry, null()),
                        else_=literal(now, DateTime()),
                    ),
                    "last_error": STALE_CLAIM_ERROR,
                    "updated_at": now,
                },
            )

        released = await self._run("release_stale_claims", _release)
        if released:
            logger.warning(
                "queue.stale_claims_released",
                extra={"count": len(released), "event_ids": [e.id for e in released]},
            )
        return len(released)

    async def purge_terminal(self, older_than: timedelta) -> int:
        """Delete completed and exhausted events processed before the cutoff."""
        cutoff = self._clock() - older_than

        async def _purge(session: AsyncSession) -> int:
            return await crud.delete_where(
                session,
                QueuedEvent,
                col(QueuedEvent.status).in_((COMPLETED, FAILED)),
                col(QueuedEvent.processed_at).is_not(None),
                col(QueuedEvent.processed_at) < cutoff,
                commit=True,
            )

        deleted = await self._run("purge_terminal", _purge)
        logger.info("queue.purged", extra={"deleted": deleted, "cutoff": cutoff.isoformat()})
        return deleted

    async def count_by_status(self, max_attempts: int) -> QueueStats:
        async def _count(session: AsyncSession) -> QueueStats:
            by_status = await crud.count_grouped(session, QueuedEvent.status)
            exhausted = await crud.count_grouped(
                session,
                QueuedEvent.status,
                col(QueuedEvent.status) == FAILED,
                col(QueuedEvent.attempts) >= max_attempts,
            )
            return QueueStats(
                pending=by_status.get(PENDING, 0),
                processing=by_status.get(PROCESSING, 0),
                completed=by_status.get(COMPLETED, 0),
                failed=by_status.get(FAILED, 0),
                exhausted=exhausted.get(FAILED, 0),
            )

        return await self._run("count_by_status", _count)
