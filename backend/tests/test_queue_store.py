# ruff: noqa: INP001, S101
"""Queue store behavior against a real (SQLite) database."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import DateTime
from sqlmodel import col, select

from webhook_intake.db import crud
from webhook_intake.db.session import Database
from webhook_intake.models.queued_events import QueuedEvent
from webhook_intake.services.webhooks.exceptions import (
    InvalidTransitionError,
    QueueStorageError,
)
from webhook_intake.services.webhooks.queue import (
    MAX_ERROR_LENGTH,
    STALE_CLAIM_ERROR,
    QueuedEventStore,
)

TOPIC = "orders/create"
TENANT = "demo.myshopify.com"
PAYLOAD = b'{"id": 1}'


async def _seed(
    database: Database,
    clock,
    *,
    status: str,
    attempts: int = 0,
    processed: bool = False,
) -> int:
    async with database.session_maker() as session:
        event = await crud.create(
            session,
            QueuedEvent,
            topic=TOPIC,
            tenant=TENANT,
            payload=PAYLOAD,
            status=status,
            attempts=attempts,
            created_at=clock(),
            updated_at=clock(),
            processed_at=clock() if processed else None,
        )
        assert event.id is not None
        return event.id


async def _all_events(database: Database) -> list[QueuedEvent]:
    async with database.session_maker() as session:
        return list(await session.exec(select(QueuedEvent).order_by(col(QueuedEvent.id))))


@pytest.mark.asyncio
async def test_enqueue_then_fetch_pending_returns_exact_record(store: QueuedEventStore) -> None:
    event_id = await store.enqueue(TOPIC, TENANT, PAYLOAD)

    pending = await store.fetch_pending(10)

    assert [event.id for event in pending] == [event_id]
    event = pending[0]
    assert event.topic == TOPIC
    assert event.tenant == TENANT
    assert event.payload == PAYLOAD
    assert event.status == "pending"
    assert event.attempts == 0
    assert event.last_error is None
    assert event.processed_at is None


def test_timestamp_columns_store_naive_utc() -> None:
    for name in ("created_at", "updated_at", "processed_at", "next_attempt_at"):
        column_type = QueuedEvent.__table__.c[name].type  # type: ignore[attr-defined]
        assert type(column_type) is DateTime
        assert column_type.timezone is False


@pytest.mark.asyncio
async def test_naive_timestamps_survive_every_transition(store: QueuedEventStore, clock) -> None:
    event_id = await store.enqueue(TOPIC, TENANT, PAYLOAD)
    await store.mark_processing(event_id)
    await store.mark_failed(event_id, "boom", 3, retry_delay=timedelta(seconds=5))

    waiting = await store.get(event_id)
    assert waiting is not None
    assert waiting.next_attempt_at == clock() + timedelta(seconds=5)
    assert waiting.created_at.tzinfo is None

    clock.advance(seconds=5)
    await store.fetch_due_retries(10, 3)
    await store.mark_processing(event_id)
    done = await store.mark_completed(event_id)

    assert done.processed_at == clock()
    assert done.processed_at.tzinfo is None
    assert done.updated_at.tzinfo is None


@pytest.mark.asyncio
async def test_enqueue_keeps_duplicates_as_separate_rows(store: QueuedEventStore) -> None:
    first = await store.enqueue(TOPIC, TENANT, PAYLOAD)
    second = await store.enqueue(TOPIC, TENANT, PAYLOAD)

    assert first != second
    assert len(await store.fetch_pending(10)) == 2


@pytest.mark.asyncio
async def test_fetch_pending_is_fifo_and_respects_limit(store: QueuedEventStore, clock) -> None:
    ids = []
    for index in range(4):
        ids.append(await store.enqueue(TOPIC, TENANT, f'{{"id": {index}}}'.encode()))
        clock.advance(seconds=1)

    assert [event.id for event in await store.fetch_pending(2)] == ids[:2]
    assert [event.id for event in await store.fetch_pending(10)] == ids
    assert await store.fetch_pending(0) == []


@pytest.mark.asyncio
async def test_fetch_pending_does_not_mutate(store: QueuedEventStore) -> None:
    event_id = await store.enqueue(TOPIC, TENANT, PAYLOAD)

    await store.fetch_pending(10)
    await store.fetch_pending(10)

    event = await store.get(event_id)
    assert event is not None
    assert event.status == "pending"
    assert event.attempts == 0


@pytest.mark.asyncio
async def test_mark_processing_counts_attempt_and_is_single_winner(
    store: QueuedEventStore,
) -> None:
    event_id = await store.enqueue(TOPIC, TENANT, PAYLOAD)

    claimed = await store.mark_processing(event_id)
    again = await store.mark_processing(event_id)

    assert claimed is not None
    assert claimed.status == "processing"
    assert claimed.attempts == 1
    assert again is None


@pytest.mark.asyncio
async def test_mark_processing_unknown_id_returns_none(store: QueuedEventStore) -> None:
    assert await store.mark_processing(999) is None


@pytest.mark.asyncio
async def test_happy_path_single_delivery(store: QueuedEventStore) -> None:
    event_id = await store.enqueue(TOPIC, TENANT, PAYLOAD)

    assert await store.mark_processing(event_id) is not None
    completed = await store.mark_completed(event_id)

    assert completed.status == "completed"
    assert completed.attempts == 1
    assert completed.processed_at is not None
    assert await store.fetch_pending(10) == []
    assert await store.fetch_due_retries(10, 3) == []


@pytest.mark.asyncio
async def test_transient_failure_then_success(store: QueuedEventStore, clock) -> None:
    event_id = await store.enqueue(TOPIC, TENANT, PAYLOAD)
    await store.mark_processing(event_id)

    result = await store.mark_failed(event_id, "ECONNRESET", 3, retry_delay=timedelta(seconds=10))

    assert result.should_retry is True
    assert result.status == "pending"
    assert result.attempts == 1
    assert result.next_attempt_at == clock() + timedelta(seconds=10)
    event = await store.get(event_id)
    assert event is not None
    assert event.last_error == "ECONNRESET"

    # Waiting out the backoff: neither fetch hands it out yet.
    assert await store.fetch_pending(10) == []
    assert await store.fetch_due_retries(10, 3) == []

    clock.advance(seconds=11)
    due = await store.fetch_due_retries(10, 3)
    assert [e.id for e in due] == [event_id]
    assert due[0].status == "pending"
    assert due[0].next_attempt_at is None

    second = await store.mark_processing(event_id)
    assert second is not None
    assert second.attempts == 2
    completed = await store.mark_completed(event_id)
    assert completed.status == "completed"
    assert completed.attempts == 2


@pytest.mark.asyncio
async def test_failures_exhaust_into_terminal_failed(store: QueuedEventStore, clock) -> None:
    event_id = await store.enqueue(TOPIC, TENANT, PAYLOAD)

    outcomes = []
    for _ in range(3):
        claimed = await store.mark_processing(event_id)
        assert claimed is not None
        outcomes.append(await store.mark_failed(event_id, "boom", 3))
        clock.advance(seconds=1)
        await store.fetch_due_retries(10, 3)

    assert [o.should_retry for o in outcomes] == [True, True, False]
    assert outcomes[-1].status == "failed"
    assert outcomes[-1].next_attempt_at is None
    event = await store.get(event_id)
    assert event is not None
    assert event.status == "failed"
    assert event.attempts == 3
    assert event.processed_at is not None
    assert await store.fetch_due_retries(10, 3) == []
    assert await store.fetch_pending(10) == []


@pytest.mark.asyncio
async def test_failed_event_with_attempts_left_is_requeued(
    database: Database,
    store: QueuedEventStore,
    clock,
) -> None:
    # e.g. max_attempts raised after the event failed terminally
    event_id = await _seed(database, clock, status="failed", attempts=1, processed=True)

    assert await store.fetch_due_retries(10, 1) == []
    due = await store.fetch_due_retries(10, 3)

    assert [e.id for e in due] == [event_id]
    assert due[0].status == "pending"
    assert due[0].attempts == 1


@pytest.mark.asyncio
async def test_fetch_due_retries_is_fifo_and_limited(
    database: Database,
    store: QueuedEventStore,
    clock,
) -> None:
    ids = []
    for _ in range(3):
        ids.append(await _seed(database, clock, status="failed", attempts=1))
        clock.advance(seconds=1)

    first = await store.fetch_due_retries(2, 3)
    second = await store.fetch_due_retries(2, 3)

    assert [e.id for e in first] == ids[:2]
    assert [e.id for e in second] == ids[2:]


@pytest.mark.asyncio
async def test_error_message_is_truncated(store: QueuedEventStore) -> None:
    event_id = await store.enqueue(TOPIC, TENANT, PAYLOAD)
    await store.mark_processing(event_id)

    await store.mark_failed(event_id, "x" * (MAX_ERROR_LENGTH * 2), 3)

    event = await store.get(event_id)
    assert event is not None
    assert event.last_error is not None
    assert len(event.last_error) == MAX_ERROR_LENGTH
    assert event.last_error.endswith("...")


_GRID = [
    # (start status, operation, expected status or exception)
    ("pending", "mark_processing", "processing"),
    ("pending", "mark_completed", InvalidTransitionError),
    ("pending", "mark_failed", InvalidTransitionError),
    ("processing", "mark_processing", None),
    ("processing", "mark_completed", "completed"),
    ("processing", "mark_failed", "pending"),
    ("completed", "mark_processing", None),
    ("completed", "mark_completed", InvalidTransitionError),
    ("completed", "mark_failed", InvalidTransitionError),
    ("failed", "mark_processing", None),
    ("failed", "mark_completed", InvalidTransitionError),
    ("failed", "mark_failed", InvalidTransitionError),
]


@pytest.mark.asyncio
@pytest.mark.parametrize(("start", "operation", "expected"), _GRID)
async def test_state_machine_transitions(
    database: Database,
    store: QueuedEventStore,
    clock,
    start: str,
    operation: str,
    expected: object,
) -> None:
    event_id = await _seed(database, clock, status=start, attempts=1)

    async def _apply() -> object:
        if operation == "mark_failed":
            return await store.mark_failed(event_id, "boom", 3)
        return await getattr(store, operation)(event_id)

    if isinstance(expected, type):
        with pytest.raises(expected):
            await _apply()
        final = await store.get(event_id)
        assert final is not None
        assert final.status == start
        assert final.attempts == 1
        return

    result = await _apply()
    final = await store.get(event_id)
    assert final is not None
    if expected is None:
        # rejected claim: no change at all
        assert result is None
        assert final.status == start
        assert final.attempts == 1
    else:
        assert final.status == expected


@pytest.mark.asyncio
async def test_concurrent_claims_have_one_winner(store: QueuedEventStore) -> None:
    event_id = await store.enqueue(TOPIC, TENANT, PAYLOAD)

    results = await asyncio.gather(*(store.mark_processing(event_id) for _ in range(5)))

    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    event = await store.get(event_id)
    assert event is not None
    assert event.attempts == 1


@pytest.mark.asyncio
async def test_concurrent_fetch_due_retries_never_double_claims(
    database: Database,
    store: QueuedEventStore,
    clock,
) -> None:
    ids = {await _seed(database, clock, status="failed", attempts=1) for _ in range(6)}

    batches = await asyncio.gather(*(store.fetch_due_retries(4, 3) for _ in range(3)))

    claimed = [event.id for batch in batches for event in batch]
    assert len(claimed) == len(set(claimed))
    assert set(claimed) == ids


@pytest.mark.asyncio
async def test_release_stale_claims(database: Database, store: QueuedEventStore, clock) -> None:
    retryable = await _seed(database, clock, status="processing", attempts=1)
    exhausted = await _seed(database, clock, status="processing", attempts=3)
    clock.advance(minutes=10)
    fresh = await _seed(database, clock, status="processing", attempts=1)

    released = await store.release_stale_claims(timedelta(minutes=5), 3)

    assert released == 2
    by_id = {event.id: event for event in await _all_events(database)}
    assert by_id[retryable].status == "pending"
    assert by_id[retryable].last_error == STALE_CLAIM_ERROR
    assert by_id[exhausted].status == "failed"
    assert by_id[exhausted].processed_at is not None
    assert by_id[fresh].status == "processing"
    assert [e.id for e in await store.fetch_pending(10)] == [retryable]


@pytest.mark.asyncio
async def test_purge_terminal_keeps_recent_and_live_events(
    database: Database,
    store: QueuedEventStore,
    clock,
) -> None:
    old_completed = await _seed(database, clock, status="completed", attempts=1, processed=True)
    old_failed = await _seed(database, clock, status="failed", attempts=3, processed=True)
    old_pending = await _seed(database, clock, status="pending")
    clock.advance(days=8)
    recent_completed = await _seed(database, clock, status="completed", attempts=1, processed=True)

    deleted = await store.purge_terminal(timedelta(days=7))

    assert deleted == 2
    remaining = {event.id for event in await _all_events(database)}
    assert remaining == {old_pending, recent_completed}
    assert old_completed not in remaining
    assert old_failed not in remaining


@pytest.mark.asyncio
async def test_count_by_status_reports_exhausted(database: Database, store: QueuedEventStore, clock) -> None:
    await _seed(database, clock, status="pending")
    await _seed(database, clock, status="pending")
    await _seed(database, clock, status="processing", attempts=1)
    await _seed(database, clock, status="completed", attempts=1, processed=True)
    await _seed(database, clock, status="failed", attempts=3, processed=True)
    await _seed(database, clock, status="failed", attempts=1, processed=True)

    stats = await store.count_by_status(3)

    assert stats.pending == 2
    assert stats.processing == 1
    assert stats.completed == 1
    assert stats.failed == 2
    assert stats.exhausted == 1
    assert stats.total == 6


@pytest.mark.asyncio
async def test_storage_errors_are_wrapped(database_url: str, clock) -> None:
    # No tables created: every statement fails inside the database.
    database = Database.from_url(database_url)
    store = QueuedEventStore(database.session_maker, clock=clock)
    try:
        with pytest.raises(QueueStorageError) as exc:
            await store.enqueue(TOPIC, TENANT, PAYLOAD)
        assert exc.value.operation == "enqueue"

        with pytest.raises(QueueStorageError):
            await store.fetch_pending(5)
    finally:
        await database.dispose()
