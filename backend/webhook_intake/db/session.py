"""Async engine and session lifecycle."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from webhook_intake import models  # noqa: F401  (registers tables on metadata)
from webhook_intake.core.logging import get_logger

logger = get_logger(__name__)


class Database:
    """Owns one engine and its session factory for the life of a process."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self.session_maker: async_sessionmaker[AsyncSession] = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_url(cls, url: str, *, echo: bool = False) -> Database:
        kwargs: dict[str, object] = {"echo": echo}
        if not url.startswith("sqlite"):
            kwargs["pool_pre_ping"] = True
        return cls(create_async_engine(url, **kwargs))

    async def create_all(self) -> None:
        """Create missing tables; development and test convenience only."""
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info("db.schema.created")

    async def dispose(self) -> None:
        await self.engine.dispose()
