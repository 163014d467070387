"""Schemas for queue administration and ingress responses."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from sqlmodel import Field, SQLModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class IngressAccepted(SQLModel):
    """Body returned to the platform once a delivery is durably queued."""

    status: Literal["queued"] = "queued"
    id: int


class QueueStats(SQLModel):
    """Event counts per lifecycle state."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    exhausted: int = Field(
        default=0,
        description="Failed events that used every attempt (dead letters).",
    )

    @property
    def total(self) -> int:
        return self.pending + self.processing + self.completed + self.failed


class DrainSummaryRead(SQLModel):
    """Result of one on-demand queue drain."""

    processed: int
    succeeded: int
    failed: int
    skipped: int
    finished_at: datetime
