# ruff: noqa: INP001

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import pytest
import pytest_asyncio

from webhook_intake.db.session import Database
from webhook_intake.services.webhooks.queue import QueuedEventStore


@dataclass
class FakeClock:
    """Manually advanced replacement for `utcnow`."""

    now: datetime = field(default_factory=lambda: datetime(2026, 1, 1, 12, 0, 0))

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def database_url(tmp_path) -> str:
    # File-backed so each session gets its own connection.
    return f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}"


@pytest_asyncio.fixture
async def database(database_url: str) -> AsyncIterator[Database]:
    db = Database.from_url(database_url)
    await db.create_all()
    try:
        yield db
    finally:
        await db.dispose()


@pytest.fixture
def store(database: Database, clock: FakeClock) -> QueuedEventStore:
    return QueuedEventStore(database.session_maker, clock=clock)
