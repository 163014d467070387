"""Durable queue of inbound webhook events."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, Index, LargeBinary
from sqlmodel import Field, SQLModel

from webhook_intake.core.time import utcnow

RUNTIME_ANNOTATION_TYPES = (datetime,)


class QueuedEventStatus(str, Enum):
    """Lifecycle states of a queued event."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class QueuedEvent(SQLModel, table=True):
    """One verified webhook delivery awaiting (or done with) processing.

    `payload` holds the exact verified request body and is never rewritten.
    `next_attempt_at` is only set on a pending event that is waiting out a
    retry backoff; fresh events leave it empty.
    """

    __tablename__ = "queued_events"  # pyright: ignore[reportAssignmentType]
    __table_args__ = (
        Index("ix_queued_events_status_created_at", "status", "created_at"),
        Index("ix_queued_events_status_next_attempt_at", "status", "next_attempt_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    topic: str = Field(index=True)
    tenant: str = Field(index=True)
    payload: bytes = Field(sa_column=Column(LargeBinary, nullable=False))
    status: str = Field(default=QueuedEventStatus.PENDING.value, index=True)
    attempts: int = Field(default=0)
    last_error: str | None = Field(default=None)
    # Naive UTC timestamps, see core.time.utcnow.
    next_attempt_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(), nullable=True),
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(), nullable=False),
    )
    processed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(), nullable=True),
    )
